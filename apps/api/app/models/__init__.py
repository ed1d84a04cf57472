from app.models.audit import AuditLog
from app.core.sequences import SequenceCounter
from app.identity.models import Role, User, UserRole
from app.crm.models import CRMAccount, CRMContact, CRMTask
from app.helpdesk.models import SLAContract, SupportTicket
from app.kb.models import KBArticle
from app.business.expenses.models import Expense
from app.business.vendors.models import Vendor, VendorHistory
from app.business.billing.models import BillingHistory, Invoice, Quote, QuoteApprovalRequest
from app.platform.ledger.models import JournalEntry, JournalLine, LedgerAccount, LedgerPeriod
from app.terms.models import CustomTerms, TermsReviewRequest
from app.stratflow.models import SFBoard, SFColumn, SFIssue, SFProject
from app.scheduler.models import Appointment, AppointmentType, Availability
from app.portal.models import CustomerPortalUser

__all__ = [
	"AuditLog",
	"SequenceCounter",
	"User",
	"Role",
	"UserRole",
	"CRMAccount",
	"CRMContact",
	"CRMTask",
	"SupportTicket",
	"SLAContract",
	"KBArticle",
	"Expense",
	"Vendor",
	"VendorHistory",
	"Quote",
	"QuoteApprovalRequest",
	"Invoice",
	"BillingHistory",
	"LedgerAccount",
	"LedgerPeriod",
	"JournalEntry",
	"JournalLine",
	"CustomTerms",
	"TermsReviewRequest",
	"SFProject",
	"SFBoard",
	"SFColumn",
	"SFIssue",
	"AppointmentType",
	"Availability",
	"Appointment",
	"CustomerPortalUser",
]
