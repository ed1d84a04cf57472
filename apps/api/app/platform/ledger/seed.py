from __future__ import annotations

from sqlalchemy.orm import Session

from app.platform.ledger.schemas import LedgerAccountRead
from app.platform.ledger.service import ledger_service


CASH_ACCOUNT = "1010"

DEFAULT_CHART: list[tuple[str, str, str]] = [
    (CASH_ACCOUNT, "Cash - Operating", "asset"),
    ("1200", "Accounts Receivable", "asset"),
    ("2000", "Accounts Payable", "liability"),
    ("3000", "Owner's Equity", "equity"),
    ("4000", "Service Revenue", "revenue"),
    ("5000", "Cost of Services", "expense"),
    ("5200", "Contractor Costs", "expense"),
    ("5300", "Hosting & Infrastructure", "expense"),
    ("5400", "Third-Party Services", "expense"),
    ("6000", "Salaries & Wages", "expense"),
    ("6100", "Payroll Taxes", "expense"),
    ("6150", "Employee Benefits", "expense"),
    ("6200", "Rent", "expense"),
    ("6250", "Utilities", "expense"),
    ("6300", "Software Subscriptions", "expense"),
    ("6400", "Marketing & Advertising", "expense"),
    ("6500", "Professional Services", "expense"),
    ("6600", "Travel & Entertainment", "expense"),
    ("6700", "Insurance", "expense"),
    ("6800", "Office Supplies", "expense"),
    ("6900", "Other Expense", "expense"),
    ("7100", "Bank Fees", "expense"),
]


def seed_default_chart_of_accounts(session: Session) -> list[LedgerAccountRead]:
    return ledger_service.seed_chart_of_accounts(session, DEFAULT_CHART)
