"""
Tests for the FinanceLedger flows.

Every test runs against the in-memory store with "today" fixed, signed in
as alice. store.operations shows exactly which round trips were made.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from finance_tracker.audit import AuditLogger
from finance_tracker.errors import (
    AuthenticationError,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
    ValidationError,
)
from finance_tracker.models.audit import AuditEventBuilder, AuditEventType
from finance_tracker.models.dashboard import PeriodMode
from finance_tracker.models.finance import (
    Account,
    AmountMode,
    Category,
    CategoryType,
    CreditCard,
    EntityType,
    Goal,
    PaymentMethod,
    TransactionType,
)
from finance_tracker.orchestrator import FinanceLedger, create_app_components
from finance_tracker.services.storage import (
    ConnectionError as StorageConnectionError,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
)


async def events_of(audit_storage, event_type: AuditEventType) -> list:
    events = await audit_storage.get_recent_events(limit=1000)
    return [e for e in events if e.event_type == event_type]


def writes(store) -> list[tuple]:
    """Round trips other than reads, in order."""
    return [op for op in store.operations if op[0] != "list"]


@pytest.mark.asyncio
class TestSession:
    """Tests for sign-in, loading and sign-out."""

    async def test_actions_require_sign_in(self, store, seed, settings, make_request):
        """Test that nothing runs without a current user."""
        ledger = FinanceLedger(store=store, settings=settings)

        with pytest.raises(AuthenticationError):
            await ledger.load()
        with pytest.raises(AuthenticationError):
            await ledger.add_transaction(make_request())
        with pytest.raises(AuthenticationError):
            await ledger.sign_in("")
        assert store.operations == []

    async def test_sign_in_loads_household_records(self, ledger, seed):
        """Test that every member's records load, categories stay scoped."""
        state = ledger.state
        assert state.current_user == "alice"
        assert {a.id for a in state.accounts} == {
            seed["checking"], seed["savings"], seed["bob_wallet"]
        }
        assert {c.id for c in state.categories} == {seed["salary"], seed["food"], seed["misc"]}
        assert [c.id for c in state.credit_cards] == [seed["card"]]

    async def test_other_member_sees_own_categories_only(self, ledger, seed):
        """Test that bob sees alice's records but not her custom category."""
        await ledger.sign_in("bob")
        state = ledger.state
        assert state.find_account(seed["checking"]) is not None
        assert {c.id for c in state.categories} == {seed["salary"], seed["food"]}
        assert [c.id for c in state.credit_cards] == [seed["card"]]

    async def test_personal_view(self, store, seed, settings):
        """Test that turning the household view off scopes records to the owner."""
        ledger = FinanceLedger(
            store=store, settings=settings.model_copy(update={"household_view": False})
        )
        await ledger.sign_in("bob")
        state = ledger.state
        assert [a.id for a in state.accounts] == [seed["bob_wallet"]]
        assert {c.id for c in state.categories} == {seed["salary"], seed["food"]}
        assert state.credit_cards == []

    async def test_load_fetches_every_collection(self, ledger, store):
        """Test one list per entity type."""
        await ledger.load()
        assert sorted(op[1].value for op in store.operations) == sorted(
            entity_type.value for entity_type in EntityType
        )

    async def test_sign_out_clears_state(self, ledger, audit_storage):
        """Test that signing out forgets everything."""
        await ledger.sign_out()

        assert ledger.state.current_user is None
        assert ledger.state.accounts == []
        assert ledger.state.transactions == []
        assert await events_of(audit_storage, AuditEventType.USER_SIGNED_OUT)
        with pytest.raises(AuthenticationError):
            await ledger.load()

    async def test_stale_load_is_discarded(self, ledger, audit_storage):
        """Test that an older load finishing late does not overwrite a newer one."""
        first, second = await asyncio.gather(ledger.load(), ledger.load())

        assert first is False
        assert second is True
        assert len(ledger.state.accounts) == 3
        assert await events_of(audit_storage, AuditEventType.STALE_LOAD_DISCARDED)

    async def test_sign_out_during_load(self, ledger):
        """Test that a load in flight at sign-out never repopulates state."""
        loaded, _ = await asyncio.gather(ledger.load(), ledger.sign_out())

        assert loaded is False
        assert ledger.state.accounts == []
        assert ledger.state.current_user is None

    async def test_failed_load_raises(self, ledger, store):
        """Test that a failed fetch is a persistence error with nothing applied."""
        store.fail_on("list", EntityType.GOALS)
        with pytest.raises(PersistenceError) as exc_info:
            await ledger.load()
        assert exc_info.value.partially_applied is False
        assert len(ledger.state.accounts) == 3

    async def test_every_failed_collection_is_reported(self, ledger, store, audit_storage):
        """Test that concurrent list failures are all collected and audited."""
        store.fail_on("list", EntityType.ACCOUNTS)
        store.fail_on("list", EntityType.GOALS)

        with pytest.raises(PersistenceError) as exc_info:
            await ledger.load()

        assert "2 collection(s)" in str(exc_info.value)
        failed = await events_of(audit_storage, AuditEventType.PERSISTENCE_FAILED)
        assert {e.entity_type for e in failed} == {"accounts", "goals"}

    async def test_unexpected_load_error_is_audited(self, settings, audit_storage):
        """Test that a non-storage error propagates after a system error event."""

        class BrokenGoalsStore(InMemoryRecordStore):
            async def list_records(self, entity_type):
                if entity_type == EntityType.GOALS:
                    raise RuntimeError("goal row parser crashed")
                return await super().list_records(entity_type)

        ledger = FinanceLedger(
            store=BrokenGoalsStore(),
            audit_logger=AuditLogger(audit_storage),
            settings=settings,
        )

        with pytest.raises(RuntimeError):
            await ledger.sign_in("alice")

        [event] = await events_of(audit_storage, AuditEventType.SYSTEM_ERROR)
        assert event.error_message == "goal row parser crashed"
        assert event.details == {"operation": "load", "entity_type": "goals"}
        assert ledger.state.accounts == []


@pytest.mark.asyncio
class TestFiltersAndDashboard:
    """Tests for filter selections and the derived dashboard."""

    async def test_default_period_is_this_month(self, ledger, make_request):
        """Test that only March shows by default."""
        await ledger.add_transaction(make_request(date=date(2024, 2, 10), description="Feb"))
        await ledger.add_transaction(make_request(date=date(2024, 3, 10), description="Mar"))

        assert [t.description for t in ledger.filtered_transactions()] == ["Mar"]

        ledger.set_period(PeriodMode.LAST_MONTH)
        assert [t.description for t in ledger.filtered_transactions()] == ["Feb"]

        ledger.set_period(PeriodMode.THIS_YEAR)
        assert len(ledger.filtered_transactions()) == 2

    async def test_custom_range(self, ledger, make_request):
        """Test inclusive custom bounds."""
        await ledger.add_transaction(make_request(date=date(2024, 2, 10), description="Feb"))
        await ledger.add_transaction(make_request(date=date(2024, 3, 10), description="Mar"))

        filters = ledger.set_date_range(date(2024, 2, 10), date(2024, 2, 10))
        assert filters.period == PeriodMode.CUSTOM
        assert [t.description for t in ledger.filtered_transactions()] == ["Feb"]

    async def test_inverted_range_rejected(self, ledger):
        """Test that end before start is a validation error."""
        with pytest.raises(ValidationError) as exc_info:
            ledger.set_date_range(date(2024, 3, 10), date(2024, 3, 1))
        assert exc_info.value.fields == ["end_date"]
        assert ledger.state.filters.period == PeriodMode.THIS_MONTH

    async def test_account_and_card_filters(self, ledger, seed, make_request):
        """Test secondary filters on the loaded transactions."""
        await ledger.add_transaction(make_request(description="Checking"))
        await ledger.add_transaction(make_request(description="Savings", account_id=seed["savings"]))
        await ledger.add_transaction(make_request(
            description="Card",
            payment_method=PaymentMethod.CREDIT_CARD,
            account_id=None,
            credit_card_id=seed["card"],
        ))

        ledger.set_account_filter(seed["savings"])
        assert [t.description for t in ledger.filtered_transactions()] == ["Savings"]

        ledger.set_account_filter(None)
        ledger.set_credit_card_filter(seed["card"])
        assert [t.description for t in ledger.filtered_transactions()] == ["Card"]

    async def test_user_filter_selects_member(self, ledger, seed, make_request):
        """Test narrowing the household view to one member's transactions."""
        await ledger.sign_in("bob")
        await ledger.add_transaction(make_request(
            description="Bob lunch", account_id=seed["bob_wallet"]
        ))
        await ledger.sign_in("alice")
        await ledger.add_transaction(make_request(description="Alice lunch"))

        assert {t.description for t in ledger.filtered_transactions()} == {
            "Bob lunch", "Alice lunch"
        }

        ledger.set_user_filter("bob")
        assert [t.description for t in ledger.filtered_transactions()] == ["Bob lunch"]

        ledger.set_user_filter("alice")
        assert [t.description for t in ledger.filtered_transactions()] == ["Alice lunch"]

        ledger.set_user_filter("carol")
        assert ledger.filtered_transactions() == []

    async def test_dashboard_after_mutations(self, ledger, seed, make_request):
        """Test that the dashboard reflects each confirmed change."""
        await ledger.add_transaction(make_request(amount=Decimal("30.00")))
        await ledger.add_transaction(make_request(
            amount=Decimal("200.00"),
            type=TransactionType.INCOME,
            category_id=seed["salary"],
            description="Salary",
        ))

        dashboard = ledger.dashboard()
        assert dashboard.total_balance == Decimal("820.00")
        assert dashboard.income_vs_expense.income == Decimal("200.00")
        assert dashboard.income_vs_expense.expense == Decimal("30.00")
        assert [(c.name, c.amount) for c in dashboard.category_expenses] == [
            ("Food", Decimal("30.00"))
        ]
        assert len(dashboard.recent_transactions) == 2

    async def test_dashboard_empty_for_new_household(self, settings):
        """Test that a household with no records gets no dashboard."""
        ledger = FinanceLedger(store=InMemoryRecordStore(), settings=settings)
        await ledger.sign_in("carol")
        assert ledger.dashboard() is None


@pytest.mark.asyncio
class TestRecords:
    """Tests for accounts, cards, categories and goals."""

    async def test_add_account_owned_by_current_user(self, ledger, audit_storage):
        """Test that a new account belongs to alice and shows up in state."""
        saved = await ledger.add_account(Account(name="Wallet", type="wallet"))

        assert saved.user_id == "alice"
        assert ledger.state.find_account(saved.id) is not None
        assert await events_of(audit_storage, AuditEventType.RECORD_CREATED)

    async def test_update_account(self, ledger, seed, store):
        """Test renaming an account."""
        account = ledger.state.find_account(seed["checking"])
        await ledger.update_account(account.model_copy(update={"name": "Main"}))
        assert store.get(EntityType.ACCOUNTS, seed["checking"]).name == "Main"
        assert ledger.state.find_account(seed["checking"]).name == "Main"

    async def test_update_unknown_account(self, ledger):
        """Test that an account outside the state is not found."""
        with pytest.raises(NotFoundError):
            await ledger.update_account(Account(id="missing", name="Ghost"))

    async def test_referenced_account_cannot_be_deleted(
        self, ledger, seed, make_request, store, audit_storage
    ):
        """Test the referential guard on accounts."""
        await ledger.add_transaction(make_request())
        store.operations.clear()

        with pytest.raises(ReferentialIntegrityError) as exc_info:
            await ledger.delete_account(seed["checking"])

        assert exc_info.value.action == "delete"
        assert writes(store) == []
        assert store.get(EntityType.ACCOUNTS, seed["checking"]) is not None
        assert await events_of(audit_storage, AuditEventType.DELETION_REFUSED)

    async def test_unreferenced_account_deleted(self, ledger, seed, store):
        """Test deleting an account nothing points at."""
        await ledger.delete_account(seed["savings"])
        assert store.get(EntityType.ACCOUNTS, seed["savings"]) is None
        assert ledger.state.find_account(seed["savings"]) is None

    async def test_referenced_card_cannot_be_deleted(self, ledger, seed, make_request, store):
        """Test the referential guard on credit cards."""
        await ledger.add_transaction(make_request(
            payment_method=PaymentMethod.CREDIT_CARD,
            account_id=None,
            credit_card_id=seed["card"],
        ))
        with pytest.raises(ReferentialIntegrityError):
            await ledger.delete_credit_card(seed["card"])
        assert store.get(EntityType.CREDIT_CARDS, seed["card"]) is not None

    async def test_add_and_delete_card(self, ledger, store):
        """Test the card lifecycle."""
        card = await ledger.add_credit_card(CreditCard(name="Amex", due_day=15, close_day=8))
        assert card.user_id == "alice"
        await ledger.delete_credit_card(card.id)
        assert store.get(EntityType.CREDIT_CARDS, card.id) is None

    async def test_default_category_is_protected(self, ledger, seed, store):
        """Test that shared categories can be neither edited nor deleted."""
        food = ledger.state.find_category(seed["food"])

        with pytest.raises(ReferentialIntegrityError) as exc_info:
            await ledger.update_category(food.model_copy(update={"name": "Meals"}))
        assert exc_info.value.action == "edit"

        with pytest.raises(ReferentialIntegrityError):
            await ledger.delete_category(seed["food"])

        assert store.get(EntityType.CATEGORIES, seed["food"]).name == "Food"

    async def test_referenced_category_cannot_be_deleted(self, ledger, seed, make_request):
        """Test the referential guard on categories."""
        await ledger.add_transaction(make_request(category_id=seed["misc"]))
        with pytest.raises(ReferentialIntegrityError):
            await ledger.delete_category(seed["misc"])

    async def test_custom_category_lifecycle(self, ledger, store):
        """Test that personal categories are owned and never defaults."""
        saved = await ledger.add_category(
            Category(name="Pets", type=CategoryType.EXPENSE, color="#123456", is_default=True)
        )
        assert saved.created_by == "alice"
        assert saved.is_default is False

        await ledger.update_category(saved.model_copy(update={"name": "Dogs"}))
        assert store.get(EntityType.CATEGORIES, saved.id).name == "Dogs"

        await ledger.delete_category(saved.id)
        assert ledger.state.find_category(saved.id) is None

    async def test_goal_lifecycle(self, ledger, store):
        """Test goals can be added, updated and deleted."""
        goal = await ledger.add_goal(Goal(
            name="Trip", target_amount=Decimal("1000"), deadline=date(2024, 12, 1)
        ))
        await ledger.update_goal(goal.model_copy(update={"current_amount": Decimal("250")}))
        assert ledger.state.find_goal(goal.id).progress == Decimal("25")

        await ledger.delete_goal(goal.id)
        assert store.get(EntityType.GOALS, goal.id) is None

        with pytest.raises(NotFoundError):
            await ledger.delete_goal(goal.id)

    async def test_failed_create_reports_nothing_applied(self, ledger, store):
        """Test a failed account create."""
        store.fail_on("create", EntityType.ACCOUNTS)
        with pytest.raises(PersistenceError) as exc_info:
            await ledger.add_account(Account(name="Wallet"))
        assert exc_info.value.partially_applied is False
        assert len(ledger.state.accounts) == 3


@pytest.mark.asyncio
class TestAddTransaction:
    """Tests for adding transactions."""

    @pytest.mark.parametrize("overrides, field", [
        ({"amount": None}, "amount"),
        ({"amount": Decimal("0")}, "amount"),
        ({"amount": Decimal("1000000000.00")}, "amount"),
        ({"amount": Decimal("10.005")}, "amount"),
        ({"description": "   "}, "description"),
        ({"description": "x" * 101}, "description"),
        ({"category_id": None}, "category_id"),
        ({"account_id": None}, "account_id"),
        ({"installments": 49}, "installments"),
        ({"installments": 0}, "installments"),
    ])
    async def test_invalid_request_writes_nothing(
        self, ledger, store, audit_storage, make_request, overrides, field
    ):
        """Test that validation fails before any round trip."""
        with pytest.raises(ValidationError) as exc_info:
            await ledger.add_transaction(make_request(**overrides))

        assert field in exc_info.value.fields
        assert store.operations == []
        assert await events_of(audit_storage, AuditEventType.VALIDATION_FAILED)

    async def test_category_type_mismatch(self, ledger, seed, store, make_request):
        """Test that an income cannot use an expense-only category."""
        with pytest.raises(ValidationError) as exc_info:
            await ledger.add_transaction(make_request(type=TransactionType.INCOME))
        assert exc_info.value.fields == ["category_id"]
        assert store.operations == []

    async def test_both_category_accepts_either_type(self, ledger, seed, make_request):
        """Test a category usable for income and expense."""
        await ledger.add_transaction(make_request(category_id=seed["misc"]))
        await ledger.add_transaction(make_request(
            category_id=seed["misc"], type=TransactionType.INCOME
        ))
        assert len(ledger.state.transactions) == 2

    async def test_unknown_reference(self, ledger, store, make_request):
        """Test that a reference missing from state is not found."""
        with pytest.raises(NotFoundError):
            await ledger.add_transaction(make_request(account_id="missing"))
        assert store.operations == []

    async def test_single_transaction_round_trips(self, ledger, seed, store, make_request):
        """Test create, balance update, then a full refetch."""
        [saved] = await ledger.add_transaction(make_request())

        assert writes(store) == [
            ("create", EntityType.TRANSACTIONS, saved.id),
            ("update", EntityType.ACCOUNTS, seed["checking"]),
        ]
        assert len([op for op in store.operations if op[0] == "list"]) == len(EntityType)
        assert ledger.state.find_transaction(saved.id).user_id == "alice"

    async def test_installments_affect_balance_once(
        self, ledger, seed, store, make_request, balance_of
    ):
        """Test that a plan moves its account by one installment amount."""
        records = await ledger.add_transaction(make_request(
            amount=Decimal("100.00"),
            date=date(2024, 1, 15),
            description="Sofa",
            installments=3,
        ))

        assert [r.date for r in records] == [
            date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 15)
        ]
        assert [r.description for r in records] == ["Sofa", "Sofa (2/3)", "Sofa (3/3)"]
        assert balance_of(seed["checking"]) == Decimal("0.00")

        parent = records[0]
        assert writes(store) == [
            ("create", EntityType.TRANSACTIONS, parent.id),
            ("create", EntityType.TRANSACTIONS, records[1].id),
            ("create", EntityType.TRANSACTIONS, records[2].id),
            ("update", EntityType.TRANSACTIONS, parent.id),
            ("update", EntityType.ACCOUNTS, seed["checking"]),
        ]
        assert store.get(EntityType.TRANSACTIONS, parent.id).balance_applied is True
        assert not store.get(EntityType.TRANSACTIONS, records[1].id).balance_applied
        assert ledger.find_incomplete_plans() == []

    async def test_total_mode_divides_amount(self, ledger, seed, make_request, balance_of):
        """Test that total mode splits the price."""
        records = await ledger.add_transaction(make_request(
            amount=Decimal("100.00"),
            installments=3,
            amount_mode=AmountMode.TOTAL,
        ))
        assert all(r.amount == Decimal("33.33") for r in records)
        assert balance_of(seed["checking"]) == Decimal("66.67")

    async def test_card_installments_touch_no_account(self, ledger, seed, store, make_request):
        """Test a split card purchase."""
        records = await ledger.add_transaction(make_request(
            payment_method=PaymentMethod.CREDIT_CARD,
            account_id=None,
            credit_card_id=seed["card"],
            installments=4,
        ))
        assert len(records) == 4
        assert all(op == ("create", EntityType.TRANSACTIONS, op[2]) for op in writes(store))
        assert ledger.find_incomplete_plans() == []

    async def test_correlation_id_shared_by_one_action(self, ledger, make_request, audit_storage):
        """Test that the events of one add are tied together."""
        await ledger.add_transaction(make_request())

        [created] = await events_of(audit_storage, AuditEventType.TRANSACTION_CREATED)
        [adjusted] = await events_of(audit_storage, AuditEventType.BALANCE_ADJUSTED)
        assert created.correlation_id is not None
        assert created.correlation_id == adjusted.correlation_id


@pytest.mark.asyncio
class TestInstallmentRepair:
    """Tests for partial plans and the repair pass."""

    async def test_partial_plan_reported_and_repaired(
        self, ledger, seed, store, make_request, balance_of, audit_storage
    ):
        """Test a plan that failed on installment 2 of 3."""
        store.fail_on("create", EntityType.TRANSACTIONS, nth=2)

        with pytest.raises(PersistenceError) as exc_info:
            await ledger.add_transaction(make_request(
                amount=Decimal("100.00"), date=date(2024, 1, 15), installments=3
            ))

        error = exc_info.value
        assert error.partially_applied is True
        assert len(error.created_ids) == 1
        assert balance_of(seed["checking"]) == Decimal("100.00")

        [plan] = ledger.find_incomplete_plans()
        assert plan.parent_id == error.created_ids[0]
        assert plan.missing == [2, 3]

        created = await ledger.repair_installment_plan(plan.parent_id)

        assert [c.current_installment for c in created] == [2, 3]
        assert [c.date for c in created] == [date(2024, 2, 15), date(2024, 3, 15)]
        assert balance_of(seed["checking"]) == Decimal("0.00")
        assert store.get(EntityType.TRANSACTIONS, plan.parent_id).balance_applied is True
        assert ledger.find_incomplete_plans() == []
        assert await events_of(audit_storage, AuditEventType.INSTALLMENT_PLAN_REPAIRED)

    async def test_unapplied_balance_repaired(self, ledger, seed, store, make_request, balance_of):
        """Test a complete plan whose balance update failed."""
        store.fail_on("update", EntityType.ACCOUNTS)

        with pytest.raises(PersistenceError) as exc_info:
            await ledger.add_transaction(make_request(amount=Decimal("100.00"), installments=2))
        assert exc_info.value.partially_applied is True
        assert balance_of(seed["checking"]) == Decimal("100.00")

        [plan] = ledger.find_incomplete_plans()
        assert plan.is_complete
        assert plan.balance_applied is False

        created = await ledger.repair_installment_plan(plan.parent_id)
        assert created == []
        assert balance_of(seed["checking"]) == Decimal("0.00")
        assert ledger.find_incomplete_plans() == []

    async def test_repair_requires_a_parent(self, ledger, make_request):
        """Test that only plan parents can be repaired."""
        [single] = await ledger.add_transaction(make_request())
        with pytest.raises(NotFoundError):
            await ledger.repair_installment_plan(single.id)
        with pytest.raises(NotFoundError):
            await ledger.repair_installment_plan("missing")


@pytest.mark.asyncio
class TestEditAndDelete:
    """Tests for editing and deleting transactions."""

    async def _plan(self, ledger, make_request):
        return await ledger.add_transaction(make_request(
            amount=Decimal("100.00"),
            date=date(2024, 1, 15),
            description="Sofa",
            installments=3,
        ))

    async def test_edit_touches_one_record(self, ledger, store, make_request):
        """Test that editing an installment leaves its siblings alone."""
        parent, child2, child3 = await self._plan(ledger, make_request)

        current = ledger.state.find_transaction(child2.id)
        await ledger.update_transaction(current.model_copy(update={"amount": Decimal("80.00")}))

        assert store.get(EntityType.TRANSACTIONS, child2.id).amount == Decimal("80.00")
        assert store.get(EntityType.TRANSACTIONS, parent.id).amount == Decimal("100.00")
        assert store.get(EntityType.TRANSACTIONS, child3.id).amount == Decimal("100.00")

    async def test_edit_keeps_plan_linkage(self, ledger, store, make_request):
        """Test that an edit cannot detach a child from its plan."""
        parent, child2, _ = await self._plan(ledger, make_request)

        current = ledger.state.find_transaction(child2.id)
        await ledger.update_transaction(current.model_copy(update={
            "parent_transaction_id": None,
            "current_installment": 1,
            "user_id": "bob",
        }))

        stored = store.get(EntityType.TRANSACTIONS, child2.id)
        assert stored.parent_transaction_id == parent.id
        assert stored.current_installment == 2
        assert stored.user_id == "alice"

    async def test_edit_child_never_moves_balance(self, ledger, seed, make_request, balance_of):
        """Test that child edits keep the plan's single effect."""
        _, child2, _ = await self._plan(ledger, make_request)

        current = ledger.state.find_transaction(child2.id)
        await ledger.update_transaction(current.model_copy(update={"amount": Decimal("80.00")}))
        assert balance_of(seed["checking"]) == Decimal("0.00")

    async def test_series_update(self, ledger, seed, store, make_request, balance_of):
        """Test propagating an edit to every installment of a plan."""
        parent, child2, child3 = await self._plan(ledger, make_request)

        current = ledger.state.find_transaction(child2.id)
        updated = await ledger.update_installment_series(current.model_copy(update={
            "amount": Decimal("120.00"),
            "description": "Couch",
            "date": date(2024, 2, 20),
            "notes": "blue",
        }))

        assert len(updated) == 3
        stored = [store.get(EntityType.TRANSACTIONS, t.id) for t in (parent, child2, child3)]
        assert [t.amount for t in stored] == [Decimal("120.00")] * 3
        assert [t.description for t in stored] == ["Couch", "Couch (2/3)", "Couch (3/3)"]
        assert [t.date for t in stored] == [
            date(2024, 1, 15), date(2024, 2, 20), date(2024, 3, 15)
        ]
        assert all(t.notes == "blue" for t in stored)
        assert balance_of(seed["checking"]) == Decimal("-20.00")

    async def test_delete_parent_keeps_children(self, ledger, seed, store, make_request, balance_of):
        """Test that deleting one installment deletes only that record."""
        parent, child2, child3 = await self._plan(ledger, make_request)

        await ledger.delete_transaction(parent.id)

        assert store.get(EntityType.TRANSACTIONS, parent.id) is None
        assert store.get(EntityType.TRANSACTIONS, child2.id) is not None
        assert store.get(EntityType.TRANSACTIONS, child3.id) is not None
        assert balance_of(seed["checking"]) == Decimal("100.00")

    async def test_delete_child_keeps_balance(self, ledger, seed, make_request, balance_of):
        """Test that a child carries no effect to reverse."""
        _, child2, _ = await self._plan(ledger, make_request)
        await ledger.delete_transaction(child2.id)
        assert balance_of(seed["checking"]) == Decimal("0.00")

    async def test_invalid_edit_writes_nothing(self, ledger, seed, store, make_request):
        """Test that an edit is validated before any round trip."""
        [saved] = await ledger.add_transaction(make_request())
        store.operations.clear()

        current = ledger.state.find_transaction(saved.id)
        with pytest.raises(ValidationError):
            await ledger.update_transaction(current.model_copy(update={
                "type": TransactionType.INCOME,
            }))
        with pytest.raises(ValidationError) as exc_info:
            await ledger.update_transaction(current.model_copy(update={
                "description": "x" * 150,
            }))
        assert exc_info.value.fields == ["description"]
        assert store.operations == []

    async def test_unknown_transaction(self, ledger, make_request):
        """Test edits and deletes of records not in state."""
        [saved] = await ledger.add_transaction(make_request())
        ghost = saved.model_copy(update={"id": "missing"})

        with pytest.raises(NotFoundError):
            await ledger.update_transaction(ghost)
        with pytest.raises(NotFoundError):
            await ledger.delete_transaction("missing")


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_in_memory_components(self):
        """Test wiring without Google Sheets."""
        ledger, sheets_client = create_app_components(use_storage=False)
        assert sheets_client is None
        assert isinstance(ledger, FinanceLedger)
        assert isinstance(ledger._store, InMemoryRecordStore)

    def test_falls_back_when_sheets_unconfigured(self, monkeypatch):
        """Test the fallback when Sheets settings are missing."""
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        ledger, sheets_client = create_app_components(use_storage=True)
        assert sheets_client is None
        assert isinstance(ledger._store, InMemoryRecordStore)

    def test_connects_before_any_record_operation(self, monkeypatch, tmp_path):
        """Test that the spreadsheet is opened once, by the factory."""
        credentials = tmp_path / "credentials.json"
        credentials.write_text("{}")
        monkeypatch.setenv("GOOGLE_SHEETS_CREDENTIALS_PATH", str(credentials))
        monkeypatch.setenv("GOOGLE_SHEETS_SPREADSHEET_ID", "sheet-id")
        connected = []
        monkeypatch.setattr(GoogleSheetsClient, "connect", lambda self: connected.append(self))

        ledger, sheets_client = create_app_components(use_storage=True)

        assert connected == [sheets_client]
        assert isinstance(ledger._store, GoogleSheetsRecordStore)

    def test_falls_back_when_sheets_unreachable(self, monkeypatch, tmp_path):
        """Test the fallback when the spreadsheet cannot be opened."""
        credentials = tmp_path / "credentials.json"
        credentials.write_text("{}")
        monkeypatch.setenv("GOOGLE_SHEETS_CREDENTIALS_PATH", str(credentials))
        monkeypatch.setenv("GOOGLE_SHEETS_SPREADSHEET_ID", "sheet-id")

        def refuse(self):
            raise StorageConnectionError("Spreadsheet not found: sheet-id")

        monkeypatch.setattr(GoogleSheetsClient, "connect", refuse)

        ledger, sheets_client = create_app_components(use_storage=True)

        assert sheets_client is None
        assert isinstance(ledger._store, InMemoryRecordStore)


@pytest.mark.asyncio
async def test_audit_logger_survives_storage_failure():
    """Test that a failing audit store never breaks the action."""

    class BrokenStorage:
        async def append_event(self, event):
            raise RuntimeError("sheet unavailable")

    logger = AuditLogger(BrokenStorage())
    assert await logger.log(AuditEventBuilder.user_signed_in("alice")) is False
