"""Validation package."""

from finance_tracker.validation.validator import TransactionValidator, ensure_valid

__all__ = ["TransactionValidator", "ensure_valid"]
