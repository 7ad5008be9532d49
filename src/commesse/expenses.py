"""Expense logging."""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from .models import Expense, Project, utcnow
from .rounding import ensure_utc
from .storage import LocalStore

__all__ = ["ExpenseStore", "InvalidAmount", "DEFAULT_CATEGORIES"]

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ["Meals", "Transport", "Lodging", "Other"]


class InvalidAmount(ValueError):
    """Expense amount is not a non-negative number."""


def parse_amount(value) -> Decimal:
    """Parse an amount, accepting a comma as decimal separator."""
    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip().replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise InvalidAmount(f"Not a valid amount: {value!r}") from None
    if not amount.is_finite() or amount < 0:
        raise InvalidAmount(f"Not a valid amount: {value!r}")
    return amount.quantize(Decimal("0.01"))


class ExpenseStore:
    """Logs and queries expenses. Expenses stay local to this device."""

    def __init__(self, store: LocalStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or utcnow

    def log_expense(
        self,
        amount,
        category: str,
        spent_on: Optional[date] = None,
        note: Optional[str] = None,
        project: Optional[Project] = None,
        receipt: Optional[bytes] = None,
    ) -> Expense:
        now = ensure_utc(self._clock())
        expense = Expense(
            amount=parse_amount(amount),
            category=category.strip() or DEFAULT_CATEGORIES[-1],
            date=spent_on or now.date(),
            note=(note or "").strip() or None,
            project_id=project.id if project is not None else None,
            receipt=receipt,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_expense(expense)
        logger.info(f"Logged expense {expense.id}: {expense.amount} ({expense.category})")
        return expense

    def expenses(
        self, start: date, end: date, project: Optional[Project] = None
    ) -> list[Expense]:
        """Expenses dated within [start, end], newest first."""
        return self.store.find_expenses(
            date_from=start,
            date_to=end,
            project_id=project.id if project is not None else None,
        )

    def delete_expense(self, expense_id: uuid.UUID) -> bool:
        return self.store.delete_expense(expense_id)
