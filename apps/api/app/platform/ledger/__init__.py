from app.platform.ledger.api import router
from app.platform.ledger.models import JournalEntry, JournalLine, LedgerAccount, LedgerPeriod
from app.platform.ledger.schemas import (
    JournalEntryPostRequest,
    JournalEntryRead,
    JournalEntryReverseRequest,
    JournalLineInput,
    JournalLineRead,
    LedgerAccountCreate,
    LedgerAccountRead,
    LedgerPeriodCreate,
    LedgerPeriodRead,
)
from app.platform.ledger.service import LedgerService, ledger_service

__all__ = [
    "router",
    "LedgerAccount",
    "LedgerPeriod",
    "JournalEntry",
    "JournalLine",
    "LedgerAccountCreate",
    "LedgerAccountRead",
    "LedgerPeriodCreate",
    "LedgerPeriodRead",
    "JournalEntryPostRequest",
    "JournalEntryRead",
    "JournalEntryReverseRequest",
    "JournalLineInput",
    "JournalLineRead",
    "LedgerService",
    "ledger_service",
]
