"""
Error Taxonomy

Every failure the ledger reports is one of these. None of them is fatal
to the process: each is scoped to the single user action that raised it.

- ValidationError: rejected before any side effect
- ReferentialIntegrityError: deletion (or edit of protected data) refused,
  nothing changed
- PersistenceError: a record store round trip failed; says whether the
  action partially applied
- NotFoundError: a referenced record no longer exists
- AuthenticationError: no user is signed in
"""

from typing import Optional

from finance_tracker.models.finance import ValidationIssue


class FinanceError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(FinanceError):
    """Malformed or out-of-range input, caught before persistence."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        fields = ", ".join(issue.field for issue in issues) or "input"
        super().__init__(f"Invalid {fields}: " + "; ".join(i.message for i in issues))

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


class ReferentialIntegrityError(FinanceError):
    """Deletion (or edit) refused because dependent records exist or the record is protected."""

    def __init__(self, entity_type: str, entity_id: str, reason: str, action: str = "delete"):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        self.action = action
        super().__init__(f"Cannot {action} {entity_type} {entity_id}: {reason}")


class PersistenceError(FinanceError):
    """
    A record store round trip failed.

    partially_applied tells the caller whether earlier steps of the same
    action were already written; created_ids lists records that now exist
    because of it.
    """

    def __init__(
        self,
        message: str,
        partially_applied: bool = False,
        created_ids: Optional[list[str]] = None,
    ):
        self.partially_applied = partially_applied
        self.created_ids = list(created_ids or [])
        super().__init__(message)


class NotFoundError(FinanceError):
    """A referenced record does not exist (anymore)."""

    def __init__(self, entity_type: str, entity_id: Optional[str]):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class AuthenticationError(FinanceError):
    """No user is signed in."""
    pass
