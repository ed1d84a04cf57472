from app.business.billing.api import invoices_router, quotes_router
from app.business.billing.models import BillingHistory, Invoice, Quote, QuoteApprovalRequest
from app.business.billing.service import InvoiceService, QuoteService, invoice_service, quote_service

__all__ = [
    "quotes_router",
    "invoices_router",
    "Quote",
    "QuoteApprovalRequest",
    "Invoice",
    "BillingHistory",
    "QuoteService",
    "InvoiceService",
    "quote_service",
    "invoice_service",
]
