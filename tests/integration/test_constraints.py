"""Integration tests for lifecycle invariants at the storage boundary.

The flush hook covers ORM writes; the CHECK constraints hold even for
Core statements that bypass the ORM entirely.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from custodian.core.exceptions import InvariantViolationError
from custodian.db.models import Contact, Customer, Facility, Role, User, Warehouse
from custodian.lifecycle.constraints import validate_lifecycle_state
from custodian.lifecycle.registry import get_registry


class TestFlushValidator:
    @pytest.mark.asyncio
    async def test_terminated_customer_cannot_be_deleted(self, session_factory, seed, now):
        customer = await seed.customer(status="terminated", retired_at=now)

        async with session_factory() as session:
            stored = await session.get(Customer, customer.id)
            stored.deleted = True
            stored.deleted_at = now

            with pytest.raises(InvariantViolationError, match="both deleted and terminated"):
                await session.flush()

    @pytest.mark.asyncio
    async def test_retired_role_cannot_be_unretired(self, session_factory, seed, now):
        role = await seed.role(retired=True, retired_at=now, retired_by="user_1")

        async with session_factory() as session:
            stored = await session.get(Role, role.id)
            stored.retired = False
            stored.retired_at = None

            with pytest.raises(InvariantViolationError, match="preserved instances are permanent"):
                await session.flush()

    @pytest.mark.asyncio
    async def test_archived_facility_cannot_be_unarchived(self, session_factory, seed, now):
        facility = await seed.facility(await seed.customer(), archived_at=now)

        async with session_factory() as session:
            stored = await session.get(Facility, facility.id)
            stored.archived_at = None

            with pytest.raises(InvariantViolationError, match="permanent"):
                await session.flush()

    @pytest.mark.asyncio
    async def test_system_user_cannot_be_deleted(self, session_factory, seed, now):
        user = await seed.user(is_system=True)

        async with session_factory() as session:
            stored = await session.get(User, user.id)
            stored.deleted = True
            stored.deleted_at = now

            with pytest.raises(InvariantViolationError, match="immutable user"):
                await session.flush()

    @pytest.mark.asyncio
    async def test_deleted_needs_timestamp(self, session_factory, seed):
        warehouse = await seed.warehouse()

        async with session_factory() as session:
            stored = await session.get(Warehouse, warehouse.id)
            stored.deleted = True

            with pytest.raises(InvariantViolationError, match="deleted_at"):
                await session.flush()

    @pytest.mark.asyncio
    async def test_new_rows_are_validated(self, session_factory, now):
        async with session_factory() as session:
            session.add(
                Warehouse(
                    code="WH900",
                    name="Bad",
                    status="retired",
                    retired_at=now,
                    deleted=True,
                    deleted_at=now,
                )
            )

            with pytest.raises(InvariantViolationError):
                await session.flush()

    @pytest.mark.asyncio
    async def test_unrelated_edits_pass(self, session_factory, seed, now):
        customer = await seed.customer(status="terminated", retired_at=now)

        async with session_factory() as session:
            async with session.begin():
                stored = await session.get(Customer, customer.id)
                stored.name = "Renamed Ltd"

        assert (await seed.get(Customer, customer.id)).name == "Renamed Ltd"


class TestCheckConstraints:
    @pytest.mark.asyncio
    async def test_core_update_cannot_delete_terminated_customer(self, session_factory, seed, now):
        customer = await seed.customer(status="terminated", retired_at=now)
        table = Customer.__table__

        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                await session.execute(
                    update(table)
                    .where(table.c.id == customer.id)
                    .values(deleted=True, deleted_at=now)
                )

    @pytest.mark.asyncio
    async def test_core_update_cannot_retire_deleted_warehouse(
        self, session_factory, seed, deleted_ago, now
    ):
        warehouse = await seed.warehouse(**deleted_ago(2))
        table = Warehouse.__table__

        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                await session.execute(
                    update(table)
                    .where(table.c.id == warehouse.id)
                    .values(status="retired", retired_at=now)
                )

    @pytest.mark.asyncio
    async def test_core_update_cannot_retire_system_role(self, session_factory, seed, now):
        role = await seed.role(is_system=True)
        table = Role.__table__

        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                await session.execute(
                    update(table).where(table.c.id == role.id).values(retired=True, retired_at=now)
                )

    @pytest.mark.asyncio
    async def test_core_update_needs_deleted_at(self, session_factory, seed):
        contact = await seed.contact(await seed.customer())
        table = Contact.__table__

        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                await session.execute(
                    update(table).where(table.c.id == contact.id).values(deleted=True)
                )


class TestValidateLifecycleState:
    def test_accepts_live_instance(self):
        definition = get_registry().get("warehouse")

        validate_lifecycle_state(definition, Warehouse(id="wh_1", status="active", deleted=False))

    def test_rejects_deleted_and_preserved(self, now):
        definition = get_registry().get("warehouse")
        warehouse = Warehouse(
            id="wh_1", status="retired", retired_at=now, deleted=True, deleted_at=now
        )

        with pytest.raises(InvariantViolationError) as exc_info:
            validate_lifecycle_state(definition, warehouse)

        assert exc_info.value.kind == "warehouse"
        assert exc_info.value.entity_id == "wh_1"

    def test_rejects_flag_without_timestamp(self):
        definition = get_registry().get("user")

        with pytest.raises(InvariantViolationError, match="disabled_at"):
            validate_lifecycle_state(definition, User(id="user_1", disabled=True))

    def test_rejects_inactive_without_timestamp(self):
        definition = get_registry().get("contact")

        with pytest.raises(InvariantViolationError, match="deactivated_at"):
            validate_lifecycle_state(definition, Contact(id="contact_1", active=False))

    def test_rejects_preserved_system_role(self, now):
        definition = get_registry().get("role")

        with pytest.raises(InvariantViolationError, match="system roles cannot be retired"):
            validate_lifecycle_state(
                definition, Role(id="role_1", is_system=True, retired=True, retired_at=now)
            )
