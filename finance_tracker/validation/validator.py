"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages, both BEFORE
any record store call:

STAGE 1 - FIELD VALIDATION:
- Amount present, positive and below the configured maximum
- Description present and not too long
- Category present
- The reference required by the payment method is present
- Installment count within [1, max_installments]

STAGE 2 - CONSISTENCY VALIDATION (needs the loaded categories):
- The category's type accepts the transaction's type

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
It reports every problem, by field, so the user can correct them.
Whether a referenced record still exists is not checked here: the ledger
reports that as NotFoundError.
"""

from decimal import Decimal
from typing import Optional

from finance_tracker.config import get_settings
from finance_tracker.config.settings import AppSettings
from finance_tracker.errors import ValidationError
from finance_tracker.models.finance import (
    CENTS,
    AmountMode,
    Category,
    PaymentMethod,
    Transaction,
    TransactionRequest,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)


class TransactionValidator:
    """Validates transaction requests and edited transactions."""

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _validate_amount(self, amount: Optional[Decimal]) -> list[ValidationIssue]:
        issues = []
        max_amount = Decimal(str(self._settings.max_transaction_amount))

        if amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
            ))
        elif amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
            ))
        elif amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message=f"Amount cannot exceed {max_amount}",
            ))
        elif amount != amount.quantize(CENTS):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount cannot have more than 2 decimal places",
            ))
        return issues

    def _validate_description(self, description: Optional[str]) -> list[ValidationIssue]:
        limit = self._settings.max_description_length
        if not description or not description.strip():
            return [ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
            )]
        if len(description) > limit:
            return [ValidationIssue(
                field="description",
                issue_type="out_of_range",
                message=f"Description cannot be longer than {limit} characters",
            )]
        return []

    def _validate_installments(self, installments: int) -> list[ValidationIssue]:
        maximum = self._settings.max_installments
        if installments < 1 or installments > maximum:
            return [ValidationIssue(
                field="installments",
                issue_type="out_of_range",
                message=f"Installments must be between 1 and {maximum}",
            )]
        return []

    def _validate_payment(self, request: TransactionRequest) -> list[ValidationIssue]:
        if request.payment_method == PaymentMethod.ACCOUNT and not request.account_id:
            return [ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="Select an account for this payment method",
            )]
        if request.payment_method == PaymentMethod.CREDIT_CARD and not request.credit_card_id:
            return [ValidationIssue(
                field="credit_card_id",
                issue_type="missing",
                message="Select a credit card for this payment method",
            )]
        return []

    def _validate_category_type(
        self,
        category_id: str,
        transaction_type: TransactionType,
        categories: list[Category],
    ) -> list[ValidationIssue]:
        category = next((c for c in categories if c.id == category_id), None)
        if category is not None and not category.type.accepts(transaction_type):
            return [ValidationIssue(
                field="category_id",
                issue_type="type_mismatch",
                message=(
                    f"Category '{category.name}' is for {category.type.value}, "
                    f"not {transaction_type.value}"
                ),
            )]
        return []

    def validate_request(
        self,
        request: TransactionRequest,
        categories: Optional[list[Category]] = None,
    ) -> ValidationResult:
        """
        Validate a new transaction as submitted by the user.

        Args:
            request: The submitted draft
            categories: Loaded categories, for the consistency stage

        Returns:
            ValidationResult with every issue found
        """
        issues = []

        # Stage 1: fields
        issues.extend(self._validate_amount(request.amount))
        issues.extend(self._validate_description(request.description))
        if not request.category_id:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="missing",
                message="Category is required",
            ))
        issues.extend(self._validate_payment(request))
        issues.extend(self._validate_installments(request.installments))

        if (
            not issues
            and request.amount_mode == AmountMode.TOTAL
            and request.installment_amount() <= 0
        ):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount is too small to split into this many installments",
            ))

        # Stage 2: consistency, only if the fields are sound
        if not issues and categories is not None:
            issues.extend(self._validate_category_type(
                request.category_id, request.type, categories
            ))

        return ValidationResult(issues=issues)

    def validate_transaction(
        self,
        transaction: Transaction,
        categories: Optional[list[Category]] = None,
    ) -> ValidationResult:
        """
        Validate an edited transaction.

        The model already enforces a positive amount and required fields;
        this adds the configured limits and the category type check.
        Installment children are checked on their description without
        the " (i/N)" suffix.
        """
        issues = []
        issues.extend(self._validate_amount(transaction.amount))
        issues.extend(self._validate_description(transaction.base_description))
        if transaction.installments is not None:
            issues.extend(self._validate_installments(transaction.installments))

        if not issues and categories is not None:
            issues.extend(self._validate_category_type(
                transaction.category_id, transaction.type, categories
            ))

        return ValidationResult(issues=issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid:
            return "All checks passed."

        lines = ["Please fix the following:"]
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"  - {issue.message}")
        return "\n".join(lines)


def ensure_valid(result: ValidationResult) -> None:
    """Raise ValidationError if the result holds any error."""
    if result.has_errors:
        raise ValidationError([i for i in result.issues if i.severity == "error"])
