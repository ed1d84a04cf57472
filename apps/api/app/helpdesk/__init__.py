from app.helpdesk.api import router, sla_router
from app.helpdesk.models import SLAContract, SupportTicket
from app.helpdesk.service import HelpdeskService, helpdesk_service

__all__ = [
    "router",
    "sla_router",
    "SupportTicket",
    "SLAContract",
    "HelpdeskService",
    "helpdesk_service",
]
