from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.business.billing.api import invoices_router, quotes_router
from app.business.expenses.api import router as expenses_router
from app.business.vendors.api import router as vendors_router
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import get_db
from app.core.rbac import ensure_permission, get_current_actor
from app.crm.api import router as crm_router
from app.helpdesk.api import router as support_router
from app.helpdesk.api import sla_router
from app.identity.api import admin_router, router as auth_router
from app.kb.api import router as kb_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.ledger.api import router as ledger_router
from app.portal.api import router as portal_router
from app.scheduler.api import public_router as scheduler_public_router
from app.scheduler.api import router as scheduler_router
from app.stratflow.api import router as stratflow_router
from app.terms.api import public_router as terms_public_router
from app.terms.api import router as terms_router

api_router = APIRouter(prefix="/api")
api_router.include_router(auth_router)
api_router.include_router(admin_router)
api_router.include_router(crm_router)
api_router.include_router(support_router)
api_router.include_router(sla_router)
api_router.include_router(kb_router)
api_router.include_router(expenses_router)
api_router.include_router(vendors_router)
api_router.include_router(terms_router)
api_router.include_router(terms_public_router)
api_router.include_router(quotes_router)
api_router.include_router(invoices_router)
api_router.include_router(ledger_router)
api_router.include_router(stratflow_router)
api_router.include_router(scheduler_router)
api_router.include_router(scheduler_public_router)
api_router.include_router(portal_router)

router = APIRouter()
router.include_router(api_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(
    request: Request,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
    if user.is_anonymous or user.token_type != "staff":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    actor = get_current_actor(request, user, db)
    ensure_permission(actor, "system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
