from app.business.expenses.api import router
from app.business.expenses.models import Expense
from app.business.expenses.service import CATEGORY_MAP, ExpenseService, expense_service

__all__ = ["router", "Expense", "CATEGORY_MAP", "ExpenseService", "expense_service"]
