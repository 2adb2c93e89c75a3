"""
Core Data Models for Finance Tracker

These models define the strict schemas for every record the system keeps.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Records are Pydantic v2 models with an optional `id`.
The record store assigns the id on creation; before that it is None.
Amounts are Decimal, never float, so balances add up to the cent.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


CENTS = Decimal("0.01")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntityType(str, Enum):
    """The five record types held by the record store."""
    ACCOUNTS = "accounts"
    CREDIT_CARDS = "credit_cards"
    CATEGORIES = "categories"
    TRANSACTIONS = "transactions"
    GOALS = "goals"


class TransactionType(str, Enum):
    """Direction of money for a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class CategoryType(str, Enum):
    """
    Which transaction types a category may classify.

    BOTH categories are offered for income and expense alike.
    """
    INCOME = "income"
    EXPENSE = "expense"
    BOTH = "both"

    def accepts(self, transaction_type: TransactionType) -> bool:
        return self is CategoryType.BOTH or self.value == transaction_type.value


class PaymentMethod(str, Enum):
    """Which reference a new transaction must carry."""
    ACCOUNT = "account"
    CREDIT_CARD = "credit_card"
    NONE = "none"


class AmountMode(str, Enum):
    """
    How the entered amount of a split purchase is read.

    CRITICAL: The system never divides silently. The user picks one.
    """
    PER_INSTALLMENT = "per_installment"  # Amount is charged every month
    TOTAL = "total"                      # Amount is the full price, split in N


# =============================================================================
# RECORDS
# =============================================================================

class Account(BaseModel):
    """
    A cash-holding bucket (checking, savings, wallet, investment).

    The balance is a cached value, adjusted incrementally by the
    reconciler whenever a transaction touching this account changes.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(
        default="checking",
        min_length=1,
        max_length=50,
        description="Open string: checking, savings, wallet, investment..."
    )
    balance: Decimal = Field(default=Decimal("0"))
    color: Optional[str] = None
    icon: Optional[str] = None


class CreditCard(BaseModel):
    """A billing instrument. No running balance is kept for cards."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    limit: Decimal = Field(default=Decimal("0"), ge=0)
    due_day: int = Field(..., ge=1, le=31, description="Payment due day of month")
    close_day: int = Field(..., ge=1, le=31, description="Statement close day of month")
    color: Optional[str] = None
    icon: Optional[str] = None


class Category(BaseModel):
    """
    Classification tag for transactions.

    Default categories are shared seed data: every user sees them and
    nobody may edit or delete them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    color: str = Field(..., min_length=1)
    icon: Optional[str] = None
    is_default: bool = False
    created_by: Optional[str] = None


class Transaction(BaseModel):
    """
    A single income or expense entry.

    Installment purchases are stored as one parent (current_installment=1)
    and N-1 children pointing at it through parent_transaction_id.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    amount: Annotated[
        Decimal,
        Field(gt=0, decimal_places=2, description="Always positive; type gives the sign")
    ]
    type: TransactionType
    category_id: str = Field(..., min_length=1)
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    account_id: Optional[str] = None
    credit_card_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    # Installment metadata
    installments: Optional[int] = Field(default=None, ge=1)
    current_installment: Optional[int] = Field(default=None, ge=1)
    parent_transaction_id: Optional[str] = None

    # Whether this record's effect is reflected in its account balance
    balance_applied: bool = False

    @model_validator(mode='after')
    def validate_installment_index(self) -> 'Transaction':
        if self.current_installment and self.installments:
            if self.current_installment > self.installments:
                raise ValueError("Current installment cannot exceed the installment count")
        return self

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign it has on an account balance."""
        return self.amount if self.type == TransactionType.INCOME else -self.amount

    @property
    def is_installment_child(self) -> bool:
        return self.parent_transaction_id is not None

    @property
    def is_installment_parent(self) -> bool:
        return (
            not self.is_installment_child
            and (self.installments or 1) > 1
        )

    @property
    def base_description(self) -> str:
        """Description without the " (i/N)" suffix children carry."""
        suffix = f" ({self.current_installment}/{self.installments})"
        if self.is_installment_child and self.description.endswith(suffix):
            return self.description[: -len(suffix)]
        return self.description


class Goal(BaseModel):
    """A savings target tracked by current vs. target amount."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    deadline: date
    color: Optional[str] = None
    icon: Optional[str] = None

    @property
    def progress(self) -> Decimal:
        """Progress towards the target as a percentage clamped to [0, 100]."""
        if self.target_amount <= 0:
            return Decimal("0")
        value = self.current_amount / self.target_amount * 100
        return min(Decimal("100"), max(Decimal("0"), value))


ENTITY_MODELS: dict[EntityType, type[BaseModel]] = {
    EntityType.ACCOUNTS: Account,
    EntityType.CREDIT_CARDS: CreditCard,
    EntityType.CATEGORIES: Category,
    EntityType.TRANSACTIONS: Transaction,
    EntityType.GOALS: Goal,
}


# =============================================================================
# TRANSACTION REQUEST (what the user submits)
# =============================================================================

class TransactionRequest(BaseModel):
    """
    A transaction as entered by the user, before validation.

    CRITICAL: This is PROPOSED data, NOT verified.
    Most fields are optional so the validator can say exactly
    which one is missing instead of failing on construction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    type: TransactionType = TransactionType.EXPENSE
    category_id: Optional[str] = None
    date: date
    description: str = ""
    payment_method: PaymentMethod = PaymentMethod.NONE
    account_id: Optional[str] = None
    credit_card_id: Optional[str] = None
    notes: Optional[str] = None
    installments: int = 1
    amount_mode: AmountMode = AmountMode.PER_INSTALLMENT

    def installment_amount(self) -> Decimal:
        """
        Amount carried by every installment record.

        In TOTAL mode the entered price is divided by the installment
        count and rounded half-up to cents. Otherwise the entered amount
        is used as is; the validator rejects sub-cent amounts.
        """
        if self.amount is None:
            raise ValueError("Request has no amount")
        if self.amount_mode == AmountMode.TOTAL and self.installments > 1:
            return (self.amount / self.installments).quantize(CENTS, rounding=ROUND_HALF_UP)
        return self.amount

    def to_transaction(self, user_id: str) -> Transaction:
        """Build the first (or only) record of this request."""
        split = self.installments > 1
        return Transaction(
            user_id=user_id,
            amount=self.installment_amount(),
            type=self.type,
            category_id=self.category_id,
            date=self.date,
            description=self.description,
            account_id=self.account_id,
            credit_card_id=self.credit_card_id,
            notes=self.notes or None,
            installments=self.installments if split else None,
            current_installment=1 if split else None,
        )


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'out_of_range')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Outcome of validating one user submission."""

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def failed_fields(self) -> list[str]:
        return [issue.field for issue in self.issues if issue.severity == "error"]


# =============================================================================
# INSTALLMENT PLAN STATUS (repair/listing pass)
# =============================================================================

class InstallmentPlanStatus(BaseModel):
    """Which records of one split purchase exist and which are missing."""

    parent_id: str
    description: str
    installments: int = Field(..., ge=2)
    present: list[int] = Field(default_factory=list)
    missing: list[int] = Field(default_factory=list)
    account_id: Optional[str] = None
    balance_applied: bool = False

    @property
    def is_complete(self) -> bool:
        return not self.missing

    @property
    def needs_repair(self) -> bool:
        """Children are missing, or the parent never reached its account balance."""
        return not self.is_complete or (self.account_id is not None and not self.balance_applied)
