"""Installment expansion package."""

from finance_tracker.installments.expander import (
    InstallmentExpander,
    build_child,
    installment_date,
)

__all__ = ["InstallmentExpander", "build_child", "installment_date"]
