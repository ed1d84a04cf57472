from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any

from app.context import get_correlation_id
from app.core.config import get_settings
from app.metrics import observe_email

logger = logging.getLogger("app.notifications")
sent_messages: list[dict[str, Any]] = []


def deliver_smtp(to: str, subject: str, body: str) -> None:
    settings = get_settings()
    message = EmailMessage()
    message["From"] = settings.smtp_from
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    with smtplib.SMTP(settings.smtp_host or "localhost", settings.smtp_port, timeout=10) as client:
        if settings.smtp_use_tls:
            client.starttls()
        if settings.smtp_username and settings.smtp_password:
            client.login(settings.smtp_username, settings.smtp_password)
        client.send_message(message)


def send_email(to: str, subject: str, body: str, *, template: str = "generic") -> dict[str, Any]:
    """Record an outgoing message and hand it to the configured transport.

    Delivery failures are logged and counted, never raised: the business
    operation that triggered the mail has already been committed.
    """
    settings = get_settings()
    message = {
        "to": to,
        "subject": subject,
        "body": body,
        "template": template,
        "correlation_id": get_correlation_id(),
        "queued_at": datetime.now(timezone.utc).isoformat(),
        "status": "recorded",
    }
    sent_messages.append(message)

    if settings.send_email_async:
        from app.core.celery_app import send_email_task

        try:
            send_email_task.delay(to, subject, body, template)
            message["status"] = "queued"
        except Exception as exc:
            message["status"] = "failed"
            observe_email(template, "failed")
            logger.error("email.queue_failed", extra={"recipient": to, "error": str(exc)[:500]})
            return message
    elif settings.smtp_host:
        try:
            deliver_smtp(to, subject, body)
            message["status"] = "sent"
        except (smtplib.SMTPException, OSError) as exc:
            message["status"] = "failed"
            observe_email(template, "failed")
            logger.error("email.send_failed", extra={"recipient": to, "error": str(exc)[:500]})
            return message

    observe_email(template, message["status"])
    logger.info("email.dispatched", extra={"recipient": to, "status": message["status"], "action": template})
    return message


def clear_sent_messages() -> None:
    sent_messages.clear()
