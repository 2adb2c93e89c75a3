"""
Data Models Package

This package contains all Pydantic models used in the Finance Tracker.
All data flowing through the system must conform to these schemas.
"""

from finance_tracker.models.finance import (
    ENTITY_MODELS,
    Account,
    AmountMode,
    Category,
    CategoryType,
    CreditCard,
    EntityType,
    Goal,
    InstallmentPlanStatus,
    PaymentMethod,
    Transaction,
    TransactionRequest,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from finance_tracker.models.dashboard import (
    AccountBalance,
    CategoryExpense,
    DashboardData,
    DateWindow,
    IncomeVsExpense,
    PeriodMode,
    TransactionFilters,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Records
    "ENTITY_MODELS",
    "Account",
    "AmountMode",
    "Category",
    "CategoryType",
    "CreditCard",
    "EntityType",
    "Goal",
    "InstallmentPlanStatus",
    "PaymentMethod",
    "Transaction",
    "TransactionRequest",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    # Dashboard
    "AccountBalance",
    "CategoryExpense",
    "DashboardData",
    "DateWindow",
    "IncomeVsExpense",
    "PeriodMode",
    "TransactionFilters",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
