"""Tests for expense logging."""

import tempfile
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from commesse.expenses import DEFAULT_CATEGORIES, ExpenseStore, InvalidAmount, parse_amount
from commesse.models import Project
from commesse.storage import LocalStore


class TestParseAmount:
    def test_comma_separator(self):
        """Test that a comma is accepted as decimal separator."""
        assert parse_amount("12,5") == Decimal("12.50")

    def test_number_and_decimal(self):
        """Test parsing numbers and Decimal values."""
        assert parse_amount(7) == Decimal("7.00")
        assert parse_amount(Decimal("3.1")) == Decimal("3.10")

    @pytest.mark.parametrize("value", ["-1", "abc", "", "NaN", "Infinity"])
    def test_rejects_invalid(self, value):
        """Test that negative and unparseable amounts are rejected."""
        with pytest.raises(InvalidAmount):
            parse_amount(value)


class TestExpenseStore:
    """Tests for ExpenseStore."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = LocalStore(db_path=Path(self.temp_dir) / "test.db")
        self.now = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
        self.expenses = ExpenseStore(self.store, clock=lambda: self.now)

    def teardown_method(self):
        self.store.close()

    def test_log_expense_defaults_to_today(self):
        """Test log expense defaults to today."""
        expense = self.expenses.log_expense("18,40", "Meals", note="  Lunch  ")

        assert expense.date == date(2025, 1, 6)
        assert expense.amount == Decimal("18.40")
        assert expense.note == "Lunch"
        assert self.store.find_expenses()[0].id == expense.id

    def test_log_expense_with_project_and_receipt(self):
        """Test log expense with project and receipt."""
        project = Project(name="Acme")
        self.store.insert_project(project)

        expense = self.expenses.log_expense(
            "42", "Lodging", spent_on=date(2025, 1, 3), project=project, receipt=b"jpeg"
        )

        assert expense.project_id == project.id
        assert self.store.find_expenses()[0].receipt == b"jpeg"

    def test_blank_category_falls_back(self):
        """Test blank category falls back."""
        expense = self.expenses.log_expense("1", "  ")

        assert expense.category == DEFAULT_CATEGORIES[-1]

    def test_negative_amount_rejected(self):
        """Test negative amount rejected."""
        with pytest.raises(InvalidAmount):
            self.expenses.log_expense("-3", "Meals")

        assert self.store.find_expenses() == []

    def test_expenses_in_range_by_project(self):
        """Test expenses in range by project."""
        project = Project(name="Acme")
        self.store.insert_project(project)
        self.expenses.log_expense("10", "Meals", spent_on=date(2025, 1, 2), project=project)
        self.expenses.log_expense("20", "Meals", spent_on=date(2025, 1, 20))
        self.expenses.log_expense("30", "Meals", spent_on=date(2025, 2, 1), project=project)

        january = self.expenses.expenses(date(2025, 1, 1), date(2025, 1, 31))
        acme = self.expenses.expenses(date(2025, 1, 1), date(2025, 1, 31), project=project)

        assert [e.amount for e in january] == [Decimal("20.00"), Decimal("10.00")]
        assert [e.amount for e in acme] == [Decimal("10.00")]

    def test_delete_expense(self):
        """Test delete expense."""
        expense = self.expenses.log_expense("10", "Meals")

        assert self.expenses.delete_expense(expense.id) is True
        assert self.expenses.delete_expense(expense.id) is False
