from app.portal.api import router
from app.portal.models import CustomerPortalUser
from app.portal.service import CustomerPortalService, portal_service

__all__ = ["router", "CustomerPortalUser", "CustomerPortalService", "portal_service"]
