"""
Main Orchestrator for Finance Tracker

This module ties together all the components and defines the
end-to-end flows for:
1. Session (sign in -> bulk load -> sign out)
2. Records (accounts, credit cards, categories, goals)
3. Transactions (validate -> expand installments -> reconcile balance ->
   refetch -> recompute the dashboard)

DESIGN DECISION: The ledger enforces the boundaries:
- Nothing is written before validation passes
- Every mutation is a sequence of awaited round trips, one at a time
- Every step is audited, every user action has a correlation id
- After every confirmed mutation the full collections are refetched,
  and derived views are recomputed from them

BALANCE MARKER: a transaction is written with balance_applied set BEFORE
its effect is applied to the account. If applying then fails, the marker
is cleared again (best effort), so the stored marker keeps matching the
stored balance and the repair pass can find what is missing.
"""

import asyncio
from datetime import date
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.config import get_settings
from finance_tracker.config.settings import AppSettings
from finance_tracker.errors import (
    AuthenticationError,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
    ValidationError,
)
from finance_tracker.installments import InstallmentExpander
from finance_tracker.models.dashboard import DashboardData, PeriodMode, TransactionFilters
from finance_tracker.models.finance import (
    Account,
    Category,
    CreditCard,
    EntityType,
    Goal,
    InstallmentPlanStatus,
    Transaction,
    TransactionRequest,
    ValidationIssue,
)
from finance_tracker.queries import aggregation
from finance_tracker.reconciliation import BalanceReconciler, affects_balance
from finance_tracker.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    RecordNotFoundError,
    RecordStoreInterface,
    StorageError,
)
from finance_tracker.state import AppState
from finance_tracker.validation import TransactionValidator, ensure_valid


logger = structlog.get_logger(__name__)

# Fields shared by every record of an installment plan
SERIES_FIELDS = ("amount", "type", "category_id", "account_id", "credit_card_id", "notes")

# Linkage fields are structural and never changed by an edit
LINKAGE_FIELDS = ("user_id", "installments", "current_installment", "parent_transaction_id")


class FinanceLedger:
    """
    The household ledger.

    Owns the application state and runs every user action against the
    record store.

    GUARANTEES:
    - Account balance == opening balance + signed amounts of the
      transactions whose balance_applied marker is set
    - Installment children never move a balance
    - Deleting a transaction never touches its siblings
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        state: Optional[AppState] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._settings = settings or get_settings().app
        self._store = store
        self._state = state or AppState(
            recent_limit=self._settings.recent_transactions_limit,
            unknown_category_name=self._settings.unknown_category_name,
            unknown_category_color=self._settings.unknown_category_color,
        )
        self._audit_logger = audit_logger
        self._validator = validator or TransactionValidator(self._settings)
        self._expander = InstallmentExpander(store, audit_logger)
        self._reconciler = BalanceReconciler(store, self._state, audit_logger)

    @property
    def state(self) -> AppState:
        return self._state

    # =========================================================================
    # SESSION
    # =========================================================================

    def _require_user(self) -> str:
        if not self._state.current_user:
            raise AuthenticationError("No user is signed in")
        return self._state.current_user

    async def sign_in(self, user_id: str) -> None:
        """Make user_id the current user and load their data."""
        if not user_id:
            raise AuthenticationError("A user id is required to sign in")

        self._state.clear()
        self._state.current_user = user_id
        self._store.set_user(user_id, household=self._settings.household_view)

        if self._audit_logger:
            await self._audit_logger.log_signed_in(user_id)

        await self.load()

    async def sign_out(self) -> None:
        """Forget the current user and every loaded record."""
        user_id = self._state.current_user
        self._state.clear()
        if self._audit_logger and user_id:
            await self._audit_logger.log_signed_out(user_id)

    async def load(self) -> bool:
        """
        Fetch all five collections concurrently and replace the state.

        Returns False if a newer load started while this one was in
        flight; its results are then discarded.
        """
        self._require_user()
        token = self._state.begin_load()

        results = await asyncio.gather(
            *(self._store.list_records(entity_type) for entity_type in EntityType),
            return_exceptions=True,
        )
        errors = [
            (entity_type, result)
            for entity_type, result in zip(EntityType, results)
            if isinstance(result, BaseException)
        ]
        for entity_type, error in errors:
            if isinstance(error, StorageError):
                await self._persistence_failed(
                    "load", entity_type.value, error, partially_applied=False
                )
            elif self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(error).__name__,
                    error_message=str(error),
                    details={"operation": "load", "entity_type": entity_type.value},
                )
        unexpected = [error for _, error in errors if not isinstance(error, StorageError)]
        if unexpected:
            raise unexpected[0]
        if errors:
            entity_type, first = errors[0]
            raise PersistenceError(
                f"Failed to load {len(errors)} collection(s), first {entity_type.value}: {first}"
            ) from first

        snapshot = dict(zip(EntityType, results))
        if not self._state.apply_load(token, snapshot):
            if self._audit_logger:
                await self._audit_logger.log_stale_load_discarded(
                    token, self._state.load_generation
                )
            return False

        if self._audit_logger:
            await self._audit_logger.log_data_loaded(
                {entity_type.value: len(records) for entity_type, records in snapshot.items()},
                token,
            )
        return True

    async def _refresh(self, created_ids: Optional[list[str]] = None) -> None:
        """Refetch after a confirmed mutation."""
        try:
            await self.load()
        except PersistenceError as e:
            raise PersistenceError(
                f"Changes were saved, but reloading data failed: {e}",
                partially_applied=True,
                created_ids=created_ids,
            ) from e

    # =========================================================================
    # FILTERS AND DERIVED VIEWS
    # =========================================================================

    def _set_filters(self, **changes: Any) -> TransactionFilters:
        data = {**self._state.filters.model_dump(), **changes}
        try:
            self._state.filters = TransactionFilters.model_validate(data)
        except SchemaError as e:
            raise ValidationError([
                ValidationIssue(
                    field=".".join(str(p) for p in err["loc"]) or "filters",
                    issue_type="invalid_value",
                    message=err["msg"],
                )
                for err in e.errors()
            ]) from e
        return self._state.filters

    def set_period(self, period: PeriodMode) -> TransactionFilters:
        return self._set_filters(period=period)

    def set_date_range(self, start: date, end: date) -> TransactionFilters:
        """Switch to a custom period with inclusive bounds."""
        if start and end and end < start:
            raise ValidationError([ValidationIssue(
                field="end_date",
                issue_type="out_of_range",
                message="End date cannot be before start date",
            )])
        return self._set_filters(period=PeriodMode.CUSTOM, start_date=start, end_date=end)

    def set_user_filter(self, user_id: Optional[str]) -> TransactionFilters:
        return self._set_filters(user_id=user_id)

    def set_account_filter(self, account_id: Optional[str]) -> TransactionFilters:
        return self._set_filters(account_id=account_id)

    def set_credit_card_filter(self, credit_card_id: Optional[str]) -> TransactionFilters:
        return self._set_filters(credit_card_id=credit_card_id)

    def filtered_transactions(self) -> list[Transaction]:
        return self._state.filtered_transactions()

    def dashboard(self) -> Optional[DashboardData]:
        return self._state.dashboard()

    # =========================================================================
    # AUDIT HELPERS
    # =========================================================================

    async def _persistence_failed(
        self,
        operation: str,
        entity_type: str,
        error: Exception,
        partially_applied: bool,
        correlation_id: Optional[UUID] = None,
        entity_id: Optional[str] = None,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_persistence_failed(
                operation=operation,
                entity_type=entity_type,
                error_message=str(error),
                partially_applied=partially_applied,
                correlation_id=correlation_id,
                entity_id=entity_id,
            )

    async def _validation_failed(
        self,
        entity_type: str,
        issues: list[ValidationIssue],
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                entity_type=entity_type,
                issues=[issue.model_dump() for issue in issues],
                correlation_id=correlation_id,
            )

    async def _refuse_deletion(
        self,
        entity_type: EntityType,
        entity_id: str,
        reason: str,
        correlation_id: UUID,
        action: str = "delete",
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_deletion_refused(
                entity_type=entity_type.value,
                entity_id=entity_id,
                reason=reason,
                correlation_id=correlation_id,
            )
        raise ReferentialIntegrityError(entity_type.value, entity_id, reason, action=action)

    # =========================================================================
    # GENERIC RECORDS (accounts, credit cards, categories, goals)
    # =========================================================================

    async def _create_record(self, entity_type: EntityType, record: BaseModel) -> BaseModel:
        correlation_id = create_correlation_id()
        try:
            saved = await self._store.create(entity_type, record)
        except StorageError as e:
            await self._persistence_failed("create", entity_type.value, e, False, correlation_id)
            raise PersistenceError(f"Failed to save {entity_type.value}: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_record_created(
                entity_type=entity_type.value,
                entity_id=saved.id,
                name=getattr(saved, "name", ""),
                correlation_id=correlation_id,
            )
        await self._refresh([saved.id])
        return saved

    async def _update_record(self, entity_type: EntityType, record: BaseModel) -> BaseModel:
        correlation_id = create_correlation_id()
        if not record.id:
            raise NotFoundError(entity_type.value, None)
        try:
            await self._store.update(entity_type, record.id, record)
        except RecordNotFoundError as e:
            raise NotFoundError(entity_type.value, record.id) from e
        except StorageError as e:
            await self._persistence_failed(
                "update", entity_type.value, e, False, correlation_id, record.id
            )
            raise PersistenceError(f"Failed to update {entity_type.value}: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_record_updated(
                entity_type=entity_type.value,
                entity_id=record.id,
                name=getattr(record, "name", ""),
                correlation_id=correlation_id,
            )
        await self._refresh()
        return record

    async def _delete_record(
        self,
        entity_type: EntityType,
        record_id: str,
        correlation_id: UUID,
    ) -> None:
        try:
            await self._store.delete(entity_type, record_id)
        except RecordNotFoundError as e:
            raise NotFoundError(entity_type.value, record_id) from e
        except StorageError as e:
            await self._persistence_failed(
                "delete", entity_type.value, e, False, correlation_id, record_id
            )
            raise PersistenceError(f"Failed to delete {entity_type.value}: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_record_deleted(
                entity_type=entity_type.value,
                entity_id=record_id,
                correlation_id=correlation_id,
            )
        await self._refresh()

    # Accounts ----------------------------------------------------------------

    async def add_account(self, account: Account) -> Account:
        user_id = self._require_user()
        return await self._create_record(
            EntityType.ACCOUNTS,
            account.model_copy(update={"user_id": account.user_id or user_id}),
        )

    async def update_account(self, account: Account) -> Account:
        self._require_user()
        if self._state.find_account(account.id) is None:
            raise NotFoundError(EntityType.ACCOUNTS.value, account.id)
        return await self._update_record(EntityType.ACCOUNTS, account)

    async def delete_account(self, account_id: str) -> None:
        """Delete an account. Refused while any transaction references it."""
        self._require_user()
        correlation_id = create_correlation_id()
        if self._state.find_account(account_id) is None:
            raise NotFoundError(EntityType.ACCOUNTS.value, account_id)
        if any(t.account_id == account_id for t in self._state.transactions):
            await self._refuse_deletion(
                EntityType.ACCOUNTS, account_id, "transactions reference this account", correlation_id
            )
        await self._delete_record(EntityType.ACCOUNTS, account_id, correlation_id)

    # Credit cards ------------------------------------------------------------

    async def add_credit_card(self, card: CreditCard) -> CreditCard:
        user_id = self._require_user()
        return await self._create_record(
            EntityType.CREDIT_CARDS,
            card.model_copy(update={"user_id": card.user_id or user_id}),
        )

    async def update_credit_card(self, card: CreditCard) -> CreditCard:
        self._require_user()
        if self._state.find_credit_card(card.id) is None:
            raise NotFoundError(EntityType.CREDIT_CARDS.value, card.id)
        return await self._update_record(EntityType.CREDIT_CARDS, card)

    async def delete_credit_card(self, card_id: str) -> None:
        """Delete a credit card. Refused while any transaction references it."""
        self._require_user()
        correlation_id = create_correlation_id()
        if self._state.find_credit_card(card_id) is None:
            raise NotFoundError(EntityType.CREDIT_CARDS.value, card_id)
        if any(t.credit_card_id == card_id for t in self._state.transactions):
            await self._refuse_deletion(
                EntityType.CREDIT_CARDS, card_id, "transactions reference this card", correlation_id
            )
        await self._delete_record(EntityType.CREDIT_CARDS, card_id, correlation_id)

    # Categories --------------------------------------------------------------

    async def add_category(self, category: Category) -> Category:
        """Create a personal category. Only seed data can be a default."""
        user_id = self._require_user()
        return await self._create_record(
            EntityType.CATEGORIES,
            category.model_copy(update={"created_by": user_id, "is_default": False}),
        )

    async def update_category(self, category: Category) -> Category:
        self._require_user()
        existing = self._state.find_category(category.id)
        if existing is None:
            raise NotFoundError(EntityType.CATEGORIES.value, category.id)
        if existing.is_default:
            await self._refuse_deletion(
                EntityType.CATEGORIES,
                category.id,
                "default categories cannot be changed",
                create_correlation_id(),
                action="edit",
            )
        return await self._update_record(
            EntityType.CATEGORIES,
            category.model_copy(update={"created_by": existing.created_by, "is_default": False}),
        )

    async def delete_category(self, category_id: str) -> None:
        """Delete a category. Refused for defaults and while referenced."""
        self._require_user()
        correlation_id = create_correlation_id()
        category = self._state.find_category(category_id)
        if category is None:
            raise NotFoundError(EntityType.CATEGORIES.value, category_id)
        if category.is_default:
            await self._refuse_deletion(
                EntityType.CATEGORIES, category_id, "default categories cannot be deleted", correlation_id
            )
        if any(t.category_id == category_id for t in self._state.transactions):
            await self._refuse_deletion(
                EntityType.CATEGORIES, category_id, "transactions reference this category", correlation_id
            )
        await self._delete_record(EntityType.CATEGORIES, category_id, correlation_id)

    # Goals -------------------------------------------------------------------

    async def add_goal(self, goal: Goal) -> Goal:
        user_id = self._require_user()
        return await self._create_record(
            EntityType.GOALS,
            goal.model_copy(update={"user_id": goal.user_id or user_id}),
        )

    async def update_goal(self, goal: Goal) -> Goal:
        self._require_user()
        if self._state.find_goal(goal.id) is None:
            raise NotFoundError(EntityType.GOALS.value, goal.id)
        return await self._update_record(EntityType.GOALS, goal)

    async def delete_goal(self, goal_id: str) -> None:
        self._require_user()
        if self._state.find_goal(goal_id) is None:
            raise NotFoundError(EntityType.GOALS.value, goal_id)
        await self._delete_record(EntityType.GOALS, goal_id, create_correlation_id())

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def _check_references(
        self,
        category_id: Optional[str],
        account_id: Optional[str],
        credit_card_id: Optional[str],
    ) -> None:
        """Every referenced record must exist in the loaded state."""
        if category_id and self._state.find_category(category_id) is None:
            raise NotFoundError(EntityType.CATEGORIES.value, category_id)
        if account_id and self._state.find_account(account_id) is None:
            raise NotFoundError(EntityType.ACCOUNTS.value, account_id)
        if credit_card_id and self._state.find_credit_card(credit_card_id) is None:
            raise NotFoundError(EntityType.CREDIT_CARDS.value, credit_card_id)

    async def _set_marker(self, transaction: Transaction, applied: bool) -> Transaction:
        marked = transaction.model_copy(update={"balance_applied": applied})
        await self._store.update(EntityType.TRANSACTIONS, transaction.id, marked)
        return marked

    async def _apply_marked(
        self,
        transaction: Transaction,
        correlation_id: UUID,
        created_ids: list[str],
    ) -> None:
        """
        Apply the effect of a transaction already stored with its marker set.

        On failure the marker is cleared again so it matches the balance,
        and the collections are reloaded so the saved record is visible.
        """
        try:
            await self._reconciler.apply(transaction, correlation_id)
        except (PersistenceError, NotFoundError) as e:
            try:
                await self._set_marker(transaction, False)
            except StorageError as marker_error:
                await self._persistence_failed(
                    "clear_balance_marker",
                    EntityType.TRANSACTIONS.value,
                    marker_error,
                    True,
                    correlation_id,
                    transaction.id,
                )
            await self._persistence_failed(
                "apply_balance", EntityType.ACCOUNTS.value, e, True, correlation_id, transaction.account_id
            )
            await self._reload_after_failure()
            raise PersistenceError(
                f"Transaction saved, but the account balance was not updated: {e}",
                partially_applied=True,
                created_ids=created_ids,
            ) from e

    async def _reconcile_parent(
        self,
        parent: Transaction,
        correlation_id: UUID,
        created_ids: list[str],
    ) -> None:
        """Mark a complete plan's parent, then apply its effect."""
        try:
            marked = await self._set_marker(parent, True)
        except StorageError as e:
            await self._persistence_failed(
                "set_balance_marker", EntityType.TRANSACTIONS.value, e, True, correlation_id, parent.id
            )
            await self._reload_after_failure()
            raise PersistenceError(
                f"Installments saved, but the account balance was not updated: {e}",
                partially_applied=True,
                created_ids=created_ids,
            ) from e
        await self._apply_marked(marked, correlation_id, created_ids)

    async def add_transaction(self, request: TransactionRequest) -> list[Transaction]:
        """
        Record a new transaction, split into installments if requested.

        FLOW:
        1. Validate the request (nothing is written if this fails)
        2. Persist one record, or the parent and its children
        3. Apply the effect to the account (plan parent only)
        4. Refetch everything

        Returns:
            The persisted records, parent first
        """
        user_id = self._require_user()
        correlation_id = create_correlation_id()

        result = self._validator.validate_request(request, self._state.categories)
        if result.has_errors:
            await self._validation_failed(EntityType.TRANSACTIONS.value, result.issues, correlation_id)
            ensure_valid(result)
        self._check_references(request.category_id, request.account_id, request.credit_card_id)

        transaction = request.to_transaction(user_id)

        if not transaction.is_installment_parent:
            transaction = transaction.model_copy(
                update={"balance_applied": affects_balance(transaction)}
            )
            try:
                saved = await self._expander.create_single(transaction)
            except PersistenceError as e:
                await self._persistence_failed(
                    "create", EntityType.TRANSACTIONS.value, e, False, correlation_id
                )
                raise
            if self._audit_logger:
                await self._audit_logger.log_transaction_created(
                    transaction_id=saved.id,
                    description=saved.description,
                    amount=str(saved.amount),
                    correlation_id=correlation_id,
                )
            if saved.balance_applied:
                await self._apply_marked(saved, correlation_id, [saved.id])
            await self._refresh([saved.id])
            return [saved]

        try:
            created = await self._expander.expand(transaction, correlation_id)
        except PersistenceError as e:
            await self._persistence_failed(
                "create_installments",
                EntityType.TRANSACTIONS.value,
                e,
                e.partially_applied,
                correlation_id,
            )
            if e.partially_applied:
                await self._reload_after_failure()
            raise

        parent = created[0]
        created_ids = [t.id for t in created]
        if self._audit_logger:
            await self._audit_logger.log_installment_plan_created(
                parent_id=parent.id,
                installments=parent.installments,
                amount=str(parent.amount),
                correlation_id=correlation_id,
            )

        if affects_balance(parent):
            await self._reconcile_parent(parent, correlation_id, created_ids)

        await self._refresh(created_ids)
        return created

    async def _reload_after_failure(self) -> None:
        """Best-effort refetch so partially written records become visible."""
        try:
            await self.load()
        except PersistenceError as e:
            logger.warning("reload_after_failure_failed", error=str(e))

    async def _update_one(
        self,
        original: Transaction,
        edited: Transaction,
        correlation_id: UUID,
    ) -> Transaction:
        """
        Reverse, persist, apply: the three steps of editing one record.

        Raises:
            PersistenceError: partially_applied tells whether the stored
                balance or record changed before the failure
        """
        edited = self._with_linkage(original, edited)
        applies = self._reconciler.applies_on_update(original, edited)
        edited = edited.model_copy(update={"balance_applied": applies})

        # Step 1: take the original effect off its account
        try:
            reversed_original = await self._reconciler.reverse(original, correlation_id)
        except PersistenceError as e:
            await self._persistence_failed(
                "reverse_balance", EntityType.ACCOUNTS.value, e, False, correlation_id, original.account_id
            )
            raise

        # Step 2: persist the edited record
        try:
            await self._store.update(EntityType.TRANSACTIONS, original.id, edited)
        except StorageError as e:
            restored = await self._restore(original, reversed_original, correlation_id)
            await self._persistence_failed(
                "update", EntityType.TRANSACTIONS.value, e, not restored, correlation_id, original.id
            )
            if isinstance(e, RecordNotFoundError):
                raise NotFoundError(EntityType.TRANSACTIONS.value, original.id) from e
            raise PersistenceError(
                f"Failed to update transaction: {e}",
                partially_applied=not restored,
            ) from e

        # Step 3: put the new effect on its (possibly different) account
        if applies:
            await self._apply_marked(edited, correlation_id, [])

        return edited

    async def _restore(
        self,
        original: Transaction,
        was_reversed: bool,
        correlation_id: UUID,
    ) -> bool:
        """Re-apply a reversed effect after a failed write. True if consistent."""
        if not was_reversed:
            return True
        try:
            await self._reconciler.apply(original, correlation_id)
        except (PersistenceError, NotFoundError) as e:
            logger.warning("balance_restore_failed", transaction_id=original.id, error=str(e))
            return False
        return True

    def _find_for_edit(self, transaction_id: Optional[str]) -> Transaction:
        original = self._state.find_transaction(transaction_id)
        if original is None:
            raise NotFoundError(EntityType.TRANSACTIONS.value, transaction_id)
        return original

    def _with_linkage(self, original: Transaction, edited: Transaction) -> Transaction:
        return edited.model_copy(
            update={field: getattr(original, field) for field in LINKAGE_FIELDS}
        )

    async def _validate_edit(
        self, original: Transaction, transaction: Transaction, correlation_id: UUID
    ) -> None:
        result = self._validator.validate_transaction(
            self._with_linkage(original, transaction), self._state.categories
        )
        if result.has_errors:
            await self._validation_failed(EntityType.TRANSACTIONS.value, result.issues, correlation_id)
            ensure_valid(result)
        self._check_references(
            transaction.category_id, transaction.account_id, transaction.credit_card_id
        )

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Edit ONE transaction.

        Siblings of an installment plan are left untouched; use
        update_installment_series to change the whole plan.
        """
        self._require_user()
        correlation_id = create_correlation_id()
        original = self._find_for_edit(transaction.id)
        await self._validate_edit(original, transaction, correlation_id)

        updated = await self._update_one(original, transaction, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_transaction_updated(
                transaction_id=updated.id,
                changes=_changes(original, updated),
                correlation_id=correlation_id,
            )
        await self._refresh()
        return updated

    async def update_installment_series(self, transaction: Transaction) -> list[Transaction]:
        """
        Apply an edit to every record of the plan `transaction` belongs to.

        Siblings are matched by parent_transaction_id. Amount, type,
        category, account, card, notes and the description are copied;
        each record keeps its own date and " (i/N)" suffix, except the
        edited record, which also takes its new date.
        """
        self._require_user()
        correlation_id = create_correlation_id()
        original = self._find_for_edit(transaction.id)
        await self._validate_edit(original, transaction, correlation_id)

        siblings = self._state.installment_siblings(original)
        siblings.sort(key=lambda t: t.current_installment or 1)
        shared = {field: getattr(transaction, field) for field in SERIES_FIELDS}
        base = self._with_linkage(original, transaction).base_description

        updated = []
        for sibling in siblings:
            changes = dict(shared)
            if sibling.is_installment_child:
                changes["description"] = f"{base} ({sibling.current_installment}/{sibling.installments})"
            else:
                changes["description"] = base
            if sibling.id == original.id:
                changes["date"] = transaction.date
            try:
                updated.append(await self._update_one(
                    sibling, sibling.model_copy(update=changes), correlation_id
                ))
            except PersistenceError as e:
                if updated:
                    await self._reload_after_failure()
                    raise PersistenceError(
                        f"Installment series only partly updated: {e}",
                        partially_applied=True,
                    ) from e
                raise

            if self._audit_logger:
                await self._audit_logger.log_transaction_updated(
                    transaction_id=sibling.id,
                    changes=_changes(sibling, updated[-1]),
                    correlation_id=correlation_id,
                )

        await self._refresh()
        return updated

    async def delete_transaction(self, transaction_id: str) -> None:
        """
        Delete ONE transaction: reverse its effect, then remove it.

        Deleting a plan parent does not delete its children.
        """
        self._require_user()
        correlation_id = create_correlation_id()
        original = self._find_for_edit(transaction_id)

        try:
            reversed_original = await self._reconciler.reverse(original, correlation_id)
        except PersistenceError as e:
            await self._persistence_failed(
                "reverse_balance", EntityType.ACCOUNTS.value, e, False, correlation_id, original.account_id
            )
            raise

        try:
            await self._store.delete(EntityType.TRANSACTIONS, transaction_id)
        except StorageError as e:
            restored = await self._restore(original, reversed_original, correlation_id)
            await self._persistence_failed(
                "delete", EntityType.TRANSACTIONS.value, e, not restored, correlation_id, transaction_id
            )
            if isinstance(e, RecordNotFoundError):
                raise NotFoundError(EntityType.TRANSACTIONS.value, transaction_id) from e
            raise PersistenceError(
                f"Failed to delete transaction: {e}",
                partially_applied=not restored,
            ) from e

        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )
        await self._refresh()

    # =========================================================================
    # INSTALLMENT REPAIR
    # =========================================================================

    def find_incomplete_plans(self) -> list[InstallmentPlanStatus]:
        """Plans with missing children or a balance effect never applied."""
        return aggregation.find_incomplete_plans(self._state.transactions)

    async def repair_installment_plan(self, parent_id: str) -> list[Transaction]:
        """
        Complete a split purchase whose creation stopped halfway.

        Creates the missing children (same date rule as creation), then
        applies the parent's balance effect if it was never applied.

        Returns:
            The children created by this repair
        """
        self._require_user()
        correlation_id = create_correlation_id()

        parent = self._state.find_transaction(parent_id)
        if parent is None or not parent.is_installment_parent:
            raise NotFoundError("installment plan", parent_id)
        plan = next(
            p for p in aggregation.installment_plans(self._state.transactions)
            if p.parent_id == parent_id
        )
        self._check_references(None, parent.account_id, None)

        try:
            created = await self._expander.create_missing(parent, plan.missing, correlation_id)
        except PersistenceError as e:
            await self._persistence_failed(
                "repair_installments",
                EntityType.TRANSACTIONS.value,
                e,
                e.partially_applied,
                correlation_id,
                parent_id,
            )
            if e.partially_applied:
                await self._reload_after_failure()
            raise

        created_ids = [t.id for t in created]
        if affects_balance(parent) and not parent.balance_applied:
            await self._reconcile_parent(parent, correlation_id, created_ids)

        if self._audit_logger:
            await self._audit_logger.log_installment_plan_repaired(
                parent_id=parent_id,
                created=[t.current_installment for t in created],
                correlation_id=correlation_id,
            )
        await self._refresh(created_ids)
        return created


def _changes(original: Transaction, updated: Transaction) -> dict[str, str]:
    """Field-by-field diff for the audit log."""
    before = original.model_dump(mode="json")
    after = updated.model_dump(mode="json")
    return {
        field: f"{before[field]} -> {after[field]}"
        for field in after
        if before.get(field) != after[field]
    }


def create_app_components(
    use_storage: bool = True,
) -> tuple[FinanceLedger, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run on the in-memory store.
                    The spreadsheet is opened here; if it is not
                    configured or cannot be reached, the in-memory
                    store is used instead.

    Returns:
        (ledger, sheets_client)
    """
    sheets_client = None
    store: RecordStoreInterface
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            # Retries happen here, never inside a record operation
            sheets_client.connect()
            store = GoogleSheetsRecordStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            store = InMemoryRecordStore()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        store = InMemoryRecordStore()
        audit_logger = AuditLogger()  # Local-only logging

    ledger = FinanceLedger(store=store, audit_logger=audit_logger)
    return ledger, sheets_client
