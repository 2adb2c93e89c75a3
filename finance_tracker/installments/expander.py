"""
Installment Expansion Engine

Turns one split purchase into N monthly transaction records:
a parent (installment 1, original date) and N-1 children pointing at it.

DESIGN DECISION: Records are written SEQUENTIALLY, one round trip each.
The parent must exist before any child, because every child carries the
parent's id. Children follow in order, so a failure leaves a clean prefix
(1..k) that the repair pass can complete later.

DATE RULE: installment i falls (i-1) calendar months after the ORIGINAL
date, never after the previous installment. A day that does not exist in
the target month is clamped to the month's last day:
31 Jan 2024 -> 29 Feb 2024 -> 31 Mar 2024.

This engine only writes records. It never touches account balances:
the caller runs balance reconciliation once the whole plan exists.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

import structlog
from dateutil.relativedelta import relativedelta

from finance_tracker.audit import AuditLogger
from finance_tracker.errors import PersistenceError
from finance_tracker.models.finance import EntityType, Transaction
from finance_tracker.services.storage import RecordStoreInterface, StorageError


logger = structlog.get_logger(__name__)


def installment_date(base: date, index: int) -> date:
    """
    Date of the index-th installment (1-based) of a plan starting on base.

    relativedelta clamps to the end of shorter months.
    """
    return base + relativedelta(months=index - 1)


def build_child(parent: Transaction, index: int) -> Transaction:
    """
    Build (but don't persist) child installment `index` of a parent.

    Children copy the parent's amount, type, category, references and notes.
    They never affect an account balance, so balance_applied stays False.
    """
    total = parent.installments
    return Transaction(
        user_id=parent.user_id,
        amount=parent.amount,
        type=parent.type,
        category_id=parent.category_id,
        date=installment_date(parent.date, index),
        description=f"{parent.description} ({index}/{total})",
        account_id=parent.account_id,
        credit_card_id=parent.credit_card_id,
        notes=parent.notes,
        installments=total,
        current_installment=index,
        parent_transaction_id=parent.id,
        balance_applied=False,
    )


class InstallmentExpander:
    """
    Persists split purchases through the record store.

    GUARANTEES:
    - Parent first, then children 2..N in order
    - Never more than one round trip in flight
    - No rollback: whatever was created stays, and is reported
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger

    async def create_single(self, transaction: Transaction) -> Transaction:
        """Persist a transaction that is not split."""
        try:
            return await self._store.create(EntityType.TRANSACTIONS, transaction)
        except StorageError as e:
            raise PersistenceError(f"Failed to save transaction: {e}") from e

    async def expand(
        self,
        parent: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Persist the parent and all of its children.

        Args:
            parent: First installment, with installments = N > 1 and
                    current_installment = 1. Its amount is per installment.
            correlation_id: Ties the audit events of this purchase together

        Returns:
            All N persisted records, parent first

        Raises:
            PersistenceError: partially_applied is False if the parent
                could not be saved (nothing was written), True if some
                child failed (created_ids lists what exists).
        """
        total = parent.installments

        try:
            saved_parent = await self._store.create(
                EntityType.TRANSACTIONS,
                parent.model_copy(update={"balance_applied": False}),
            )
        except StorageError as e:
            raise PersistenceError(f"Failed to save installment 1/{total}: {e}") from e

        logger.info(
            "installment_parent_created",
            parent_id=saved_parent.id,
            installments=total,
        )

        created = [saved_parent]
        created.extend(await self._create_children(
            saved_parent,
            range(2, total + 1),
            already_created=[saved_parent.id],
            correlation_id=correlation_id,
        ))
        return created

    async def create_missing(
        self,
        parent: Transaction,
        indexes: Iterable[int],
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Persist the given child installments of an existing parent.

        Used by the repair pass. Indexes are created in ascending order.
        """
        return await self._create_children(
            parent,
            sorted(i for i in indexes if i >= 2),
            already_created=[],
            correlation_id=correlation_id,
        )

    async def _create_children(
        self,
        parent: Transaction,
        indexes: Iterable[int],
        already_created: list[str],
        correlation_id: Optional[UUID],
    ) -> list[Transaction]:
        created_ids = list(already_created)
        children = []
        for index in indexes:
            child = build_child(parent, index)
            try:
                saved = await self._store.create(EntityType.TRANSACTIONS, child)
            except StorageError as e:
                message = f"Failed to save installment {index}/{parent.installments}: {e}"
                if self._audit_logger:
                    await self._audit_logger.log_installment_plan_incomplete(
                        parent_id=parent.id,
                        installments=parent.installments,
                        created_ids=created_ids,
                        error_message=message,
                        correlation_id=correlation_id,
                    )
                raise PersistenceError(
                    message,
                    partially_applied=bool(created_ids),
                    created_ids=created_ids,
                ) from e
            created_ids.append(saved.id)
            children.append(saved)
        return children
