"""
Dashboard Models

Everything here is DERIVED data: filters the user selected and the
summaries computed from them. None of it is ever persisted.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from finance_tracker.models.finance import Transaction


class PeriodMode(str, Enum):
    """Which date window the dashboard shows."""
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"
    THIS_YEAR = "this_year"
    CUSTOM = "custom"


class DateWindow(BaseModel):
    """An inclusive [start, end] range of calendar dates."""

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class TransactionFilters(BaseModel):
    """
    Current filter selections.

    A None user/account/card filter means "no filter".
    Custom bounds are only read when period is CUSTOM.
    """

    period: PeriodMode = PeriodMode.THIS_MONTH
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    user_id: Optional[str] = None
    account_id: Optional[str] = None
    credit_card_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_custom_range(self) -> 'TransactionFilters':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class AccountBalance(BaseModel):
    account_id: str
    name: str
    balance: Decimal
    color: Optional[str] = None


class CategoryExpense(BaseModel):
    category_id: str
    amount: Decimal
    name: str
    color: str


class IncomeVsExpense(BaseModel):
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class DashboardData(BaseModel):
    """
    The recomputed aggregate view.

    total_balance and account_balances ignore the filters;
    everything else is computed from the filtered transactions.
    """

    total_balance: Decimal
    account_balances: list[AccountBalance] = Field(default_factory=list)
    category_expenses: list[CategoryExpense] = Field(default_factory=list)
    income_vs_expense: IncomeVsExpense = Field(default_factory=IncomeVsExpense)
    recent_transactions: list[Transaction] = Field(default_factory=list)
