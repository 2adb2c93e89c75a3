"""
Balance Reconciliation

Keeps each account's cached balance consistent with its transactions.

DESIGN DECISION: Balances are adjusted INCREMENTALLY, never recomputed.
Each adjustment is one record store round trip on the account, starting
from the most recent balance known to the application state. The state
is updated after every successful round trip, so a reverse followed by
an apply on the same account composes correctly.

WHAT AFFECTS A BALANCE:
- Only transactions with an account_id
- Never installment children (only the parent of a plan counts)
- Reversal only removes an effect that was actually applied,
  as recorded by the transaction's balance_applied marker

A failed round trip raises PersistenceError. The caller decides whether
the surrounding action was partially applied.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from finance_tracker.audit import AuditLogger
from finance_tracker.errors import NotFoundError, PersistenceError
from finance_tracker.models.finance import Account, EntityType, Transaction
from finance_tracker.services.storage import RecordStoreInterface, StorageError
from finance_tracker.state import AppState


def affects_balance(transaction: Transaction) -> bool:
    """Whether a transaction of this shape moves its account balance."""
    return transaction.account_id is not None and not transaction.is_installment_child


class BalanceReconciler:
    """
    Applies and reverses transaction effects on account balances.

    Card-only transactions and installment children are no-ops.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        state: AppState,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._state = state
        self._audit_logger = audit_logger

    async def adjust(
        self,
        account_id: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Add delta to an account's balance and persist it.

        Raises:
            NotFoundError: the account is not in the loaded state
            PersistenceError: the account update failed
        """
        account = self._state.find_account(account_id)
        if account is None:
            raise NotFoundError(EntityType.ACCOUNTS.value, account_id)

        updated = account.model_copy(update={"balance": account.balance + delta})
        try:
            await self._store.update(EntityType.ACCOUNTS, account_id, updated)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_balance_adjustment_failed(
                    account_id=account_id,
                    delta=str(delta),
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise PersistenceError(f"Failed to update balance of account {account_id}: {e}") from e

        self._state.replace_account(updated)

        if self._audit_logger:
            await self._audit_logger.log_balance_adjusted(
                account_id=account_id,
                old_balance=str(account.balance),
                new_balance=str(updated.balance),
                correlation_id=correlation_id,
            )
        return updated

    async def apply(
        self,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Apply a transaction's effect to its account.

        Returns True if a balance changed.
        """
        if not affects_balance(transaction):
            return False
        await self.adjust(transaction.account_id, transaction.signed_amount, correlation_id)
        return True

    async def reverse(
        self,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Remove a previously applied effect from its account.

        Returns True if a balance changed.
        """
        if not (transaction.balance_applied and affects_balance(transaction)):
            return False
        await self.adjust(transaction.account_id, -transaction.signed_amount, correlation_id)
        return True

    @staticmethod
    def applies_on_update(original: Transaction, new: Transaction) -> bool:
        """
        Whether the edited version of a transaction should affect its account.

        A plan parent still waiting for the repair pass (it has an account
        but its effect was never applied) stays pending after an edit.
        """
        if not affects_balance(new):
            return False
        pending_parent = (
            original.is_installment_parent
            and original.account_id is not None
            and not original.balance_applied
        )
        return not pending_parent
