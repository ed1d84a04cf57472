import logging

from celery import Celery

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger("app.tasks")

celery_app = Celery("boaz_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.beat_schedule = {
    "helpdesk-sla-sweep": {"task": "helpdesk.sla_sweep", "schedule": 300.0},
}


@celery_app.task(name="notifications.send_email")
def send_email_task(to: str, subject: str, body: str, template: str = "generic") -> str:
    from app.notifications import deliver_smtp

    deliver_smtp(to, subject, body)
    logger.info("email.sent", extra={"task_name": "notifications.send_email", "recipient": to, "action": template})
    return "sent"


@celery_app.task(name="helpdesk.sla_sweep")
def sla_sweep_task() -> dict[str, int]:
    from app.core.database import SessionLocal
    from app.helpdesk.service import helpdesk_service

    with SessionLocal() as session:
        result = helpdesk_service.run_sla_alerts(session)
    logger.info(
        "helpdesk.sla_sweep",
        extra={"task_name": "helpdesk.sla_sweep", "status": f"{result.sent}/{result.candidates}"},
    )
    return result.model_dump()
