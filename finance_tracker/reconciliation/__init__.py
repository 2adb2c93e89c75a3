"""Balance reconciliation package."""

from finance_tracker.reconciliation.balance import BalanceReconciler, affects_balance

__all__ = ["BalanceReconciler", "affects_balance"]
