"""Integration tests for the Retention Reaper."""

import asyncio

import pytest
from sqlalchemy import func, select, text

from custodian.core.audit import AuditLogger
from custodian.core.exceptions import (
    InvariantViolationError,
    LifecycleValidationError,
    PurgeCycleInProgressError,
)
from custodian.db.models import (
    SYSTEM_ACTOR,
    Contact,
    ContactLog,
    Customer,
    Facility,
    User,
    UserSession,
    Warehouse,
    WarehouseAllocation,
)
from custodian.lifecycle.types import EntityKind
from custodian.retention.reaper import (
    ReaperConfig,
    RetentionReaper,
    get_retention_reaper,
    initialize_retention_reaper,
)


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestRetentionWindow:
    @pytest.mark.asyncio
    async def test_only_expired_instances_are_purged(self, reaper, seed, deleted_ago):
        expired = await seed.warehouse(**deleted_ago(181))
        recent = await seed.warehouse(**deleted_ago(10))
        live = await seed.warehouse()

        report = await reaper.run_purge_cycle()

        assert report.purged_ids == {("warehouse", expired.id)}
        assert report.failures == []
        assert await seed.get(Warehouse, expired.id) is None
        assert await seed.get(Warehouse, recent.id) is not None
        assert await seed.get(Warehouse, live.id) is not None

    @pytest.mark.asyncio
    async def test_retention_override(self, reaper, seed, deleted_ago):
        recent = await seed.warehouse(**deleted_ago(10))

        report = await reaper.run_purge_cycle(retention_days=7)

        assert report.retention_days == 7
        assert report.purged_ids == {("warehouse", recent.id)}

    @pytest.mark.asyncio
    async def test_explicit_now(self, reaper, seed, deleted_ago, now):
        warehouse = await seed.warehouse(**deleted_ago(10))

        report = await reaper.run_purge_cycle(now=now.replace(year=now.year + 1))

        assert report.purged_ids == {("warehouse", warehouse.id)}

    @pytest.mark.asyncio
    async def test_negative_retention_rejected(self, reaper):
        with pytest.raises(LifecycleValidationError) as exc_info:
            await reaper.run_purge_cycle(retention_days=-1)

        assert exc_info.value.field == "retention_days"
        assert not reaper.is_running_cycle

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, reaper, now):
        report = await reaper.run_purge_cycle()

        assert report.purged == []
        assert report.skipped == []
        assert report.started_at == now
        assert report.finished_at is not None


class TestCascade:
    @pytest.mark.asyncio
    async def test_customer_cascade(self, reaper, seed, session_factory, deleted_ago):
        warehouse = await seed.warehouse()
        user = await seed.user()
        customer = await seed.customer(is_test_data=True, **deleted_ago(200, actor="user_3"))
        contact = await seed.contact(customer)
        await seed.contact_log(customer, user, contact=contact)
        await seed.contact_log(customer, user)
        await seed.facility(customer)
        await seed.allocation(customer, warehouse)

        report = await reaper.run_purge_cycle()

        assert report.purged_ids == {("customer", customer.id)}
        assert report.purged[0].cascaded == {
            "contact_log": 2,
            "contacts": 1,
            "facilities": 1,
            "warehouse_allocations": 1,
            "contracts": 0,
        }
        assert await seed.get(Customer, customer.id) is None
        for model in (Contact, ContactLog, Facility, WarehouseAllocation):
            assert await count_rows(session_factory, model) == 0
        # Shared parents of the removed rows survive
        assert await seed.get(Warehouse, warehouse.id) is not None
        assert await seed.get(User, user.id) is not None

    @pytest.mark.asyncio
    async def test_purge_is_audited(self, reaper, seed, session_factory, deleted_ago, now):
        user = await seed.user(is_test_data=True, **deleted_ago(365, actor="user_3"))
        await seed.session(user)

        report = await reaper.run_purge_cycle()

        async with session_factory() as session:
            events = await AuditLogger(session).query_events(entity_id=user.id, action="purge")

        assert len(events) == 1
        event = events[0]
        assert event.kind == "user"
        assert event.actor == SYSTEM_ACTOR
        assert event.reason == "retention window of 180 days elapsed"
        assert event.event_data == {
            "cycle_id": str(report.cycle_id),
            "cascaded": {"user_sessions": 1, "contact_log": 0, "warehouses": 0},
            "deleted_by": "user_3",
        }
        assert await count_rows(session_factory, UserSession) == 0


class TestReverification:
    @pytest.mark.asyncio
    async def test_footprint_added_after_delete_keeps_instance(self, reaper, seed, deleted_ago):
        customer = await seed.customer(**deleted_ago(200))
        await seed.contract(customer)

        report = await reaper.run_purge_cycle()

        assert report.purged == []
        assert [(s.kind, s.entity_id, s.reason) for s in report.skipped] == [
            ("customer", customer.id, "has contracts")
        ]
        assert await seed.get(Customer, customer.id) is not None

    @pytest.mark.asyncio
    async def test_governed_child_blocks_parent(self, reaper, seed, deleted_ago):
        customer = await seed.customer(is_test_data=True, **deleted_ago(200))
        contract = await seed.contract(customer, status="expired")

        report = await reaper.run_purge_cycle()

        assert report.purged == []
        assert report.skipped[0].reason == f"contract {contract.id} must be preserved"
        assert await seed.get(Customer, customer.id) is not None

    @pytest.mark.asyncio
    async def test_deleted_child_of_live_parent_is_kept(self, reaper, seed, deleted_ago):
        customer = await seed.customer()
        facility = await seed.facility(customer, **deleted_ago(200))

        report = await reaper.run_purge_cycle()

        assert report.skipped[0].entity_id == facility.id
        assert report.skipped[0].reason == (
            "belongs to active/retired customer (preserve as history)"
        )
        assert await seed.get(Facility, facility.id) is not None

    @pytest.mark.asyncio
    async def test_children_purged_before_parents(self, reaper, seed, deleted_ago):
        customer = await seed.customer(**deleted_ago(200))
        contact = await seed.contact(customer, **deleted_ago(200))

        report = await reaper.run_purge_cycle()

        assert [(item.kind, item.entity_id) for item in report.purged] == [
            ("contact", contact.id),
            ("customer", customer.id),
        ]
        assert report.purged[1].cascaded["contacts"] == 0


class TestUserReferences:
    @pytest.mark.asyncio
    async def test_test_user_logs_are_removed_with_the_user(
        self, reaper, seed, session_factory, deleted_ago
    ):
        customer = await seed.customer()
        colleague = await seed.user()
        author = await seed.user(is_test_data=True, **deleted_ago(200))
        await seed.contact_log(customer, author)
        await seed.contact_log(customer, author)
        kept = await seed.contact_log(customer, colleague)

        dry = await reaper.run_purge_cycle(dry_run=True)
        live = await reaper.run_purge_cycle()

        assert dry.purged_ids == live.purged_ids == {("user", author.id)}
        assert live.failures == []
        assert live.purged[0].cascaded["contact_log"] == 2
        assert await seed.get(User, author.id) is None
        assert await seed.get(ContactLog, kept.id) is not None
        assert await count_rows(session_factory, ContactLog) == 1
        assert await seed.get(Customer, customer.id) is not None

    @pytest.mark.asyncio
    async def test_managed_warehouse_is_detached(self, reaper, seed, deleted_ago):
        manager = await seed.user(is_test_data=True, **deleted_ago(200))
        warehouse = await seed.warehouse(manager_id=manager.id)
        version = (await seed.get(Warehouse, warehouse.id)).version

        dry = await reaper.run_purge_cycle(dry_run=True)
        live = await reaper.run_purge_cycle()

        assert dry.purged_ids == live.purged_ids == {("user", manager.id)}
        assert live.failures == []
        assert live.purged[0].cascaded["warehouses"] == 1
        assert await seed.get(User, manager.id) is None
        stored = await seed.get(Warehouse, warehouse.id)
        assert stored.manager_id is None
        assert stored.deleted is False
        assert stored.version == version + 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_store_failure_does_not_abort_cycle(
        self, reaper, seed, session_factory, deleted_ago, monkeypatch
    ):
        author = await seed.user(is_test_data=True, **deleted_ago(200))
        await seed.session(author)
        expired = await seed.warehouse(**deleted_ago(200))
        cascade = reaper._cascade

        async def broken_user_cascade(session, definition, entity_id, dry_run):
            removed = await cascade(session, definition, entity_id, dry_run)
            if definition.kind == EntityKind.USER:
                await session.execute(text("DELETE FROM no_such_table"))
            return removed

        monkeypatch.setattr(reaper, "_cascade", broken_user_cascade)

        report = await reaper.run_purge_cycle()

        assert report.purged_ids == {("warehouse", expired.id)}
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert (failure.kind, failure.entity_id) == ("user", author.id)
        assert failure.error_type == "OperationalError"
        assert "no such table" in failure.message
        # The failed transaction rolled back entirely
        assert await seed.get(User, author.id) is not None
        assert await count_rows(session_factory, UserSession) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "error_type", "message", "traced"),
        [
            (RuntimeError("cascade bug"), "RuntimeError", "RuntimeError: cascade bug", True),
            (
                InvariantViolationError("warehouse", None, "illegal state"),
                "InvariantViolationError",
                "InvariantViolationError: illegal state",
                False,
            ),
        ],
    )
    async def test_unexpected_error_does_not_abort_cycle(
        self, reaper, seed, deleted_ago, monkeypatch, error, error_type, message, traced
    ):
        logged = []
        monkeypatch.setattr(
            "custodian.retention.reaper.log_exception",
            lambda logger, exc, **kwargs: logged.append((exc, kwargs)),
        )
        warehouse = await seed.warehouse(**deleted_ago(200))
        user = await seed.user(is_test_data=True, **deleted_ago(200))
        cascade = reaper._cascade

        async def failing_warehouse_cascade(session, definition, entity_id, dry_run):
            if definition.kind == EntityKind.WAREHOUSE:
                raise error
            return await cascade(session, definition, entity_id, dry_run)

        monkeypatch.setattr(reaper, "_cascade", failing_warehouse_cascade)

        report = await reaper.run_purge_cycle()

        assert report.purged_ids == {("user", user.id)}
        assert [(f.kind, f.entity_id) for f in report.failures] == [("warehouse", warehouse.id)]
        assert report.failures[0].error_type == error_type
        assert report.failures[0].message == message
        assert await seed.get(Warehouse, warehouse.id) is not None
        expected_log = [(error, {"kind": "warehouse", "entity_id": warehouse.id})]
        assert logged == (expected_log if traced else [])

    @pytest.mark.asyncio
    async def test_transaction_timeout(self, session_factory, seed, deleted_ago, now, monkeypatch):
        warehouse = await seed.warehouse(**deleted_ago(200))
        reaper = RetentionReaper(
            session_factory,
            config=ReaperConfig(retention_days=180, transaction_timeout_seconds=0.05),
            clock=lambda: now,
        )

        async def slow_cascade(*args, **kwargs):
            await asyncio.sleep(5)
            return {}

        monkeypatch.setattr(reaper, "_cascade", slow_cascade)

        report = await reaper.run_purge_cycle()

        assert report.purged == []
        assert len(report.failures) == 1
        assert report.failures[0].error_type == "TimeoutError"
        assert report.failures[0].message == "TimeoutError: transaction timed out"
        assert await seed.get(Warehouse, warehouse.id) is not None


class TestDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, reaper, seed, session_factory, deleted_ago):
        customer = await seed.customer(is_test_data=True, **deleted_ago(200))
        await seed.contact(customer)
        warehouse = await seed.warehouse(**deleted_ago(181))

        report = await reaper.run_purge_cycle(dry_run=True)

        assert report.dry_run is True
        assert report.purged_ids == {("customer", customer.id), ("warehouse", warehouse.id)}
        customer_item = next(item for item in report.purged if item.kind == "customer")
        assert customer_item.cascaded["contacts"] == 1
        assert await seed.get(Customer, customer.id) is not None
        assert await count_rows(session_factory, Contact) == 1
        async with session_factory() as session:
            assert await AuditLogger(session).query_events(action="purge") == []

    @pytest.mark.asyncio
    async def test_dry_run_predicts_live_run(self, reaper, seed, deleted_ago):
        customer = await seed.customer(**deleted_ago(200))
        await seed.contact(customer, **deleted_ago(190))
        await seed.warehouse(**deleted_ago(181))
        await seed.warehouse(**deleted_ago(20))
        kept = await seed.customer(**deleted_ago(300))
        await seed.contract(kept)

        dry = await reaper.run_purge_cycle(dry_run=True)
        live = await reaper.run_purge_cycle()

        assert dry.purged_ids == live.purged_ids
        assert len(live.purged_ids) == 3
        assert [s.entity_id for s in dry.skipped] == [s.entity_id for s in live.skipped]


class TestCycleLock:
    @pytest.mark.asyncio
    async def test_concurrent_cycle_rejected(self, reaper, monkeypatch):
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking(definition, report):
            started.set()
            await release.wait()

        monkeypatch.setattr(reaper, "_process_kind", blocking)

        task = asyncio.create_task(reaper.run_purge_cycle())
        await started.wait()
        assert reaper.is_running_cycle

        with pytest.raises(PurgeCycleInProgressError):
            await reaper.run_purge_cycle()

        release.set()
        await task
        assert not reaper.is_running_cycle


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory, seed, deleted_ago, now):
        warehouse = await seed.warehouse(**deleted_ago(200))
        reaper = RetentionReaper(
            session_factory,
            config=ReaperConfig(retention_days=180, interval_seconds=3600),
            clock=lambda: now,
        )

        await reaper.start()
        await reaper.start()
        assert reaper._loop_task is not None
        await reaper.stop()

        assert reaper._loop_task is None
        # The first cycle waits for a full interval
        assert await seed.get(Warehouse, warehouse.id) is not None

    @pytest.mark.asyncio
    async def test_loop_survives_overlapping_cycle(self, session_factory, now, monkeypatch):
        reaper = RetentionReaper(
            session_factory, config=ReaperConfig(interval_seconds=0), clock=lambda: now
        )
        attempts = []
        ran = asyncio.Event()

        async def overlapping_cycle():
            attempts.append(1)
            if len(attempts) >= 2:
                ran.set()
            raise PurgeCycleInProgressError()

        monkeypatch.setattr(reaper, "run_purge_cycle", overlapping_cycle)

        await reaper.start()
        await asyncio.wait_for(ran.wait(), timeout=5)
        await reaper.stop()

        assert len(attempts) >= 2

    @pytest.mark.asyncio
    async def test_loop_survives_failing_cycle(self, session_factory, now, monkeypatch):
        reaper = RetentionReaper(
            session_factory, config=ReaperConfig(interval_seconds=0), clock=lambda: now
        )
        logged = []
        ran = asyncio.Event()

        async def failing_cycle():
            if len(logged) >= 2:
                ran.set()
            raise RuntimeError("store unreachable")

        monkeypatch.setattr(reaper, "run_purge_cycle", failing_cycle)
        monkeypatch.setattr(
            "custodian.retention.reaper.log_exception",
            lambda logger, exc, **kwargs: logged.append((str(exc), kwargs)),
        )

        await reaper.start()
        await asyncio.wait_for(ran.wait(), timeout=5)
        await reaper.stop()

        assert logged[0] == ("store unreachable", {"context": "purge_loop"})


@pytest.mark.asyncio
async def test_initialize_global_reaper(session_factory, monkeypatch):
    monkeypatch.setattr("custodian.retention.reaper._reaper", None)
    config = ReaperConfig(retention_days=30)

    reaper = initialize_retention_reaper(session_factory, config=config)

    assert get_retention_reaper() is reaper
    assert reaper.config.retention_days == 30
