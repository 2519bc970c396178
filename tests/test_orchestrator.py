"""
Tests for the ledger service.

These walk the end-to-end flows through the public API: validation,
splitting, commit, retry on conflicts and auditing.
"""

import logging
import threading

import pytest

from splitledger.audit import AuditLogger
from splitledger.config import RetrySettings, get_settings
from splitledger.errors import (
    ConcurrencyConflictError,
    ForbiddenError,
    InvalidAmountError,
    NotAMemberError,
    NotFoundError,
    SplitMismatchError,
    ValidationError,
)
from splitledger.models.audit import AuditEventType
from splitledger.models.ledger import CustomSplit, EqualSplit, ExpenseCategory
from splitledger.orchestrator import LedgerService, create_ledger_service
from splitledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    SQLAuditStorage,
    SQLLedgerStorage,
)


@pytest.fixture
def friends(service):
    """Alice creates a group and adds Bob and Carol."""
    alice = service.register_user("Alice", "alice@example.com")
    bob = service.register_user("Bob", "bob@example.com")
    carol = service.register_user("Carol", "carol@example.com")
    group = service.create_group("Goa Trip", creator_id=alice.id)
    service.add_member(group.id, bob.id, actor_id=alice.id)
    service.add_member(group.id, carol.id, actor_id=alice.id)
    return group, alice, bob, carol


def balances_by_name(service, group, *users):
    names = {user.id: user.name for user in users}
    return {names[b.user_id]: b.balance for b in service.get_group_balances(group.id)}


def event_types(audit_storage):
    return [e.event_type for e in reversed(audit_storage.get_recent_events(limit=1000))]


class TestScenarios:
    """The canonical end-to-end scenarios."""

    def test_equal_split_balances(self, service, friends):
        """Test Alice pays 9000 for three."""
        group, alice, bob, carol = friends
        expense = service.record_expense(
            group.id, alice.id, "Dinner", 9000, [alice.id, bob.id, carol.id]
        )

        detail = service.get_expense(expense.id)
        assert [s.amount for s in detail.splits] == [3000, 3000, 3000]
        assert balances_by_name(service, group, alice, bob, carol) == {
            "Alice": 6000,
            "Bob": -3000,
            "Carol": -3000,
        }

    def test_remainder_split(self, service, friends):
        """Test 10000 over three gives 3334, 3333, 3333."""
        group, alice, bob, carol = friends
        expense = service.record_expense(
            group.id, alice.id, "Hotel", 10000, [alice.id, bob.id, carol.id]
        )
        assert [s.amount for s in service.get_expense(expense.id).splits] == [3334, 3333, 3333]

    def test_edit_permissions_and_rescale(self, service, friends, audit_storage):
        """Test Bob cannot edit Alice's expense; Alice's edit rescales."""
        group, alice, bob, carol = friends
        expense = service.record_expense(
            group.id, alice.id, "Dinner", 9000, [alice.id, bob.id, carol.id]
        )

        with pytest.raises(ForbiddenError):
            service.update_expense_amount(expense.id, 12000, editor_id=bob.id)
        assert event_types(audit_storage)[-1] == AuditEventType.MUTATION_REJECTED

        service.update_expense_amount(expense.id, 12000, editor_id=alice.id)
        detail = service.get_expense(expense.id)
        assert detail.expense.amount == 12000
        assert detail.split_total == 12000
        assert event_types(audit_storage)[-1] == AuditEventType.EXPENSE_UPDATED

    def test_delete_settles_everyone(self, service, friends):
        """Test deleting the only expense brings every balance back to zero."""
        group, alice, bob, carol = friends
        expense = service.record_expense(
            group.id, alice.id, "Dinner", 9000, [alice.id, bob.id, carol.id]
        )

        service.delete_expense(expense.id, editor_id=alice.id)

        assert all(b.is_settled for b in service.get_group_balances(group.id))
        with pytest.raises(NotFoundError):
            service.get_expense(expense.id)


class TestRecordExpense:
    """Tests for the record flow."""

    def test_custom_split(self, service, friends):
        """Test a custom split that adds up."""
        group, alice, bob, carol = friends
        expense = service.record_expense(
            group.id,
            alice.id,
            "Cab",
            1000,
            [alice.id, bob.id],
            split_mode=CustomSplit(amounts={alice.id: 200, bob.id: 800}),
            category=ExpenseCategory.TRANSPORTATION,
        )
        detail = service.get_expense(expense.id)
        assert [s.amount for s in detail.splits] == [200, 800]
        assert detail.expense.category == ExpenseCategory.TRANSPORTATION

    def test_custom_split_mismatch_stores_nothing(self, service, friends, audit_storage):
        """Test a split that is one unit short."""
        group, alice, bob, carol = friends
        with pytest.raises(SplitMismatchError) as exc_info:
            service.record_expense(
                group.id,
                alice.id,
                "Cab",
                1000,
                [alice.id, bob.id],
                split_mode=CustomSplit(amounts={alice.id: 500, bob.id: 499}),
            )
        assert exc_info.value.diff == -1
        assert service.list_group_expenses(group.id) == []
        assert event_types(audit_storage)[-1] == AuditEventType.MUTATION_REJECTED

    def test_non_member_actor(self, service, friends):
        """Test an outsider cannot record into the group."""
        group, alice, bob, carol = friends
        eve = service.register_user("Eve", "eve@example.com")
        with pytest.raises(NotAMemberError):
            service.record_expense(group.id, alice.id, "Cab", 1000, [alice.id], actor_id=eve.id)

    def test_non_member_participant(self, service, friends):
        """Test an outsider cannot be split into the expense."""
        group, alice, bob, carol = friends
        eve = service.register_user("Eve", "eve@example.com")
        with pytest.raises(NotAMemberError):
            service.record_expense(group.id, alice.id, "Cab", 1000, [alice.id, eve.id])

    def test_invalid_amount(self, service, friends):
        """Test a zero amount."""
        group, alice, bob, carol = friends
        with pytest.raises(InvalidAmountError):
            service.record_expense(group.id, alice.id, "Cab", 0, [alice.id])

    def test_no_participants(self, service, friends):
        """Test an empty participant list."""
        group, alice, bob, carol = friends
        with pytest.raises(ValidationError):
            service.record_expense(group.id, alice.id, "Cab", 100, [])

    def test_malformed_amount(self, service, friends):
        """Test an amount that isn't a number at all."""
        group, alice, bob, carol = friends
        with pytest.raises(ValidationError):
            service.record_expense(group.id, alice.id, "Cab", "lots", [alice.id])

    @pytest.mark.parametrize("amount", [9000.0, True])
    def test_non_integer_amount_stores_nothing(self, service, friends, amount):
        """Test a float or bool amount is rejected rather than coerced."""
        group, alice, bob, carol = friends
        with pytest.raises(InvalidAmountError):
            service.record_expense(group.id, alice.id, "Cab", amount, [alice.id, bob.id])
        assert service.list_group_expenses(group.id) == []

    def test_unexpected_failure_is_audited(self, service, friends, audit_storage, monkeypatch):
        """Test a non-ledger exception is logged as a system error and re-raised."""
        group, alice, bob, carol = friends

        def broken(**kwargs):
            raise RuntimeError("disk unplugged")

        monkeypatch.setattr(service.store, "record_expense", broken)

        with pytest.raises(RuntimeError):
            service.record_expense(group.id, alice.id, "Cab", 1000, [alice.id])

        event = audit_storage.get_recent_events(limit=1)[0]
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.error_message == "disk unplugged"
        assert event.details == {"operation": "record_expense"}

    def test_unknown_group(self, service, friends):
        """Test recording into a missing group."""
        from uuid import uuid4

        group, alice, bob, carol = friends
        with pytest.raises(NotFoundError):
            service.record_expense(uuid4(), alice.id, "Cab", 100, [alice.id])

    def test_audit_event_for_recorded_expense(self, service, friends, audit_storage):
        """Test the recorded event carries the formatted amount and actor."""
        group, alice, bob, carol = friends
        expense = service.record_expense(group.id, alice.id, "Dinner", 9000, [alice.id, bob.id])

        events = audit_storage.get_events_by_entity("expense", expense.id)
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.EXPENSE_RECORDED
        assert events[0].details["amount"] == "₹90.00"
        assert events[0].details["split_count"] == 2
        assert events[0].actor_id == alice.id


class TestGroupsAndMembers:
    """Tests for the membership flows."""

    def test_add_member_by_email_registers_user(self, service, friends, audit_storage):
        """Test an unknown email joins as a new user."""
        group, alice, bob, carol = friends
        membership = service.add_member_by_email(group.id, "dave@example.com", actor_id=alice.id)

        dave = service.get_user(membership.user_id)
        assert dave.email == "dave@example.com"
        assert [u.name for u in service.list_group_members(group.id)] == [
            "Alice", "Bob", "Carol", "dave",
        ]
        assert event_types(audit_storage)[-2:] == [
            AuditEventType.USER_REGISTERED,
            AuditEventType.MEMBER_ADDED,
        ]

    def test_outsider_cannot_add_members(self, service, friends):
        """Test the actor must already be in the group."""
        group, alice, bob, carol = friends
        eve = service.register_user("Eve", "eve@example.com")
        with pytest.raises(NotAMemberError):
            service.add_member(group.id, eve.id, actor_id=eve.id)

    def test_delete_group(self, service, friends):
        """Test creator-only deletion."""
        group, alice, bob, carol = friends
        service.record_expense(group.id, alice.id, "Dinner", 9000, [alice.id, bob.id, carol.id])

        with pytest.raises(ForbiddenError):
            service.delete_group(group.id, actor_id=bob.id)

        service.delete_group(group.id, actor_id=alice.id)
        with pytest.raises(NotFoundError):
            service.get_group_balances(group.id)
        assert service.list_user_groups(bob.id) == []

    def test_dashboard(self, service, friends):
        """Test list_user_groups summaries and the aggregate balance."""
        group, alice, bob, carol = friends
        service.record_expense(group.id, bob.id, "Fuel", 600, [alice.id, bob.id, carol.id])

        summaries = service.list_user_groups(alice.id)

        assert len(summaries) == 1
        assert summaries[0].group.id == group.id
        assert summaries[0].member_count == 3
        assert summaries[0].total_expenses == 600
        assert summaries[0].user_balance == -200
        assert service.get_user_balance(bob.id, group.id) == 400
        assert service.get_user_aggregate_balance(alice.id) == -200

    def test_edit_expense_fields(self, service, friends, audit_storage):
        """Test a combined edit and its audit record."""
        group, alice, bob, carol = friends
        expense = service.record_expense(group.id, alice.id, "Dinner", 9000, [alice.id, bob.id])

        updated = service.edit_expense(
            expense.id, alice.id, description="Late dinner", category="food", amount=9001
        )

        assert updated.description == "Late dinner"
        assert updated.category == ExpenseCategory.FOOD
        assert service.get_expense(expense.id).split_total == 9001
        event = audit_storage.get_recent_events(limit=1)[0]
        assert event.event_type == AuditEventType.EXPENSE_UPDATED
        assert set(event.details["changes"]) == {"version", "description", "category", "amount"}


class TestConcurrency:
    """Tests for conflict retries and concurrent writers."""

    def test_conflict_is_retried(self, service, friends, audit_storage, monkeypatch):
        """Test a lost version check is retried from scratch."""
        group, alice, bob, carol = friends
        expense = service.record_expense(group.id, alice.id, "Dinner", 9000, [alice.id, bob.id])

        real_update = service.store.update_expense_amount
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise ConcurrencyConflictError("lost the race")
            return real_update(*args, **kwargs)

        monkeypatch.setattr(service.store, "update_expense_amount", flaky)

        updated = service.update_expense_amount(expense.id, 10000, editor_id=alice.id)

        assert len(calls) == 2
        assert updated.amount == 10000
        assert AuditEventType.CONCURRENCY_RETRY in event_types(audit_storage)

    def test_conflict_gives_up_after_max_attempts(self, service, friends, audit_storage, monkeypatch):
        """Test the last conflict is re-raised and audited."""
        group, alice, bob, carol = friends
        expense = service.record_expense(group.id, alice.id, "Dinner", 9000, [alice.id, bob.id])
        calls = []

        def always_conflicts(*args, **kwargs):
            calls.append(args)
            raise ConcurrencyConflictError("lost the race")

        monkeypatch.setattr(service.store, "update_expense_amount", always_conflicts)

        with pytest.raises(ConcurrencyConflictError):
            service.update_expense_amount(expense.id, 10000, editor_id=alice.id)

        assert len(calls) == 3
        assert event_types(audit_storage)[-1] == AuditEventType.MUTATION_REJECTED
        assert service.get_expense(expense.id).expense.amount == 9000

    @pytest.mark.parametrize("backend", ["memory", "sql"])
    def test_threaded_edits_stay_consistent(self, backend, tmp_path):
        """Test concurrent amount edits never leave splits out of step."""
        if backend == "memory":
            storage = InMemoryLedgerStorage()
        else:
            storage = SQLLedgerStorage(f"sqlite:///{tmp_path / 'ledger.db'}")
        service = LedgerService(
            storage,
            audit_logger=AuditLogger(InMemoryAuditStorage()),
            retry_settings=RetrySettings(max_attempts=5, wait_min_seconds=0, wait_max_seconds=0),
        )

        alice = service.register_user("Alice", "alice@example.com")
        bob = service.register_user("Bob", "bob@example.com")
        carol = service.register_user("Carol", "carol@example.com")
        group = service.create_group("Trip", creator_id=alice.id)
        service.add_member(group.id, bob.id, actor_id=alice.id)
        service.add_member(group.id, carol.id, actor_id=alice.id)
        expense = service.record_expense(
            group.id, alice.id, "Dinner", 9000, [alice.id, bob.id, carol.id]
        )

        errors = []
        edits_per_thread = 10
        amounts = [1000 + 7 * n for n in range(4)]

        def editor(base):
            try:
                for step in range(edits_per_thread):
                    service.update_expense_amount(expense.id, base + step, editor_id=alice.id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=editor, args=(base,)) for base in amounts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        detail = service.get_expense(expense.id)
        assert detail.split_total == detail.expense.amount
        assert detail.expense.version == 1 + len(amounts) * edits_per_thread
        assert sum(b.balance for b in service.get_group_balances(group.id)) == 0
        storage.close()


class TestServiceFactory:
    """Tests for create_ledger_service."""

    def test_default_is_in_memory(self, monkeypatch):
        """Test the memory backend is the default."""
        monkeypatch.delenv("LEDGER_STORAGE_BACKEND", raising=False)
        get_settings.cache_clear()

        service = create_ledger_service()

        assert isinstance(service.store.storage, InMemoryLedgerStorage)
        assert isinstance(service.audit_logger.storage, InMemoryAuditStorage)

    def test_sql_backend_from_environment(self, monkeypatch, tmp_path):
        """Test LEDGER_STORAGE_* selects and configures the SQL backend."""
        monkeypatch.setenv("LEDGER_STORAGE_BACKEND", "sql")
        monkeypatch.setenv("LEDGER_STORAGE_DATABASE_URL", f"sqlite:///{tmp_path / 'ledger.db'}")
        get_settings.cache_clear()

        service = create_ledger_service()
        alice = service.register_user("Alice", "alice@example.com")

        assert isinstance(service.store.storage, SQLLedgerStorage)
        assert isinstance(service.audit_logger.storage, SQLAuditStorage)
        events = service.audit_logger.storage.get_events_by_entity("user", alice.id)
        assert [e.event_type for e in events] == [AuditEventType.USER_REGISTERED]
        service.store.storage.close()

    def test_audit_can_be_disabled(self, monkeypatch):
        """Test AUDIT_ENABLED=false keeps the audit log empty."""
        monkeypatch.setenv("AUDIT_ENABLED", "false")
        get_settings.cache_clear()

        service = create_ledger_service()
        service.register_user("Alice", "alice@example.com")

        assert service.audit_logger.storage.get_recent_events() == []

    def test_invalid_configuration_rejected(self, monkeypatch):
        """Test a settings section that fails to load stops the factory."""
        monkeypatch.setenv("LEDGER_RETRY_MAX_ATTEMPTS", "0")
        get_settings.cache_clear()

        with pytest.raises(ValidationError, match="retry"):
            create_ledger_service()

    def test_debug_mode_lowers_log_level(self, monkeypatch):
        """Test DEBUG_MODE overrides LOG_LEVEL."""
        monkeypatch.setenv("DEBUG_MODE", "true")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        get_settings.cache_clear()

        create_ledger_service()

        assert logging.getLogger("splitledger").level == logging.DEBUG


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
