"""Queries package."""

from finance_tracker.queries.aggregation import (
    build_dashboard,
    category_expenses,
    filter_transactions,
    find_incomplete_plans,
    goal_progress,
    income_vs_expense,
    installment_plans,
    period_window,
    recent_transactions,
)

__all__ = [
    "build_dashboard",
    "category_expenses",
    "filter_transactions",
    "find_incomplete_plans",
    "goal_progress",
    "income_vs_expense",
    "installment_plans",
    "period_window",
    "recent_transactions",
]
