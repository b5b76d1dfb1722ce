"""Pytest fixtures for Custodian tests."""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from custodian.config.settings import Settings
from custodian.db.config import create_session_factory, enable_sqlite_foreign_keys
from custodian.db.models import (
    Base,
    Contact,
    ContactLog,
    Contract,
    Customer,
    Facility,
    Role,
    User,
    UserSession,
    Warehouse,
    WarehouseAllocation,
    WarehouseZone,
)
from custodian.lifecycle.controller import ControllerConfig, TransitionController
from custodian.retention.reaper import ReaperConfig, RetentionReaper

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def test_settings() -> Settings:
    """Create settings for testing."""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        ENVIRONMENT="test",
        log_level="DEBUG",
        retention_days=180,
        metrics_enabled=False,
    )


# =============================================================================
# Database fixtures
# =============================================================================


async def create_test_engine(path: Path) -> AsyncEngine:
    """File-backed SQLite engine so concurrent sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    enable_sqlite_foreign_keys(engine)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_wal(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine with the full schema."""
    engine = await create_test_engine(tmp_path / "custodian.db")
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the constraint validator installed."""
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def now() -> datetime:
    """The fixed clock reading shared by controller and reaper fixtures."""
    return NOW


@pytest.fixture
def controller(session_factory: async_sessionmaker[AsyncSession]) -> TransitionController:
    """Transition controller with a fixed clock."""
    return TransitionController(
        session_factory, config=ControllerConfig(conflict_retries=1), clock=lambda: NOW
    )


@pytest.fixture
def reaper(session_factory: async_sessionmaker[AsyncSession]) -> RetentionReaper:
    """Retention reaper with a fixed clock and a 180-day window."""
    return RetentionReaper(
        session_factory,
        config=ReaperConfig(retention_days=180, transaction_timeout_seconds=10.0),
        clock=lambda: NOW,
    )


# =============================================================================
# Seed data
# =============================================================================


class Seeder:
    """Inserts fixture rows, each in its own committed transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def add(self, *objs: Any) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add_all(objs)

    async def get(self, model: type, entity_id: str) -> Any:
        async with self.session_factory() as session:
            return await session.get(model, entity_id)

    async def user(self, **kwargs: Any) -> User:
        n = self._next()
        user = User(email=f"user{n}@example.com", name=f"User {n}", **kwargs)
        await self.add(user)
        return user

    async def role(self, **kwargs: Any) -> Role:
        n = self._next()
        role = Role(code=f"role_{n}", name=f"Role {n}", **kwargs)
        await self.add(role)
        return role

    async def warehouse(self, **kwargs: Any) -> Warehouse:
        n = self._next()
        warehouse = Warehouse(code=f"WH{n:03d}", name=f"Warehouse {n}", **kwargs)
        await self.add(warehouse)
        return warehouse

    async def customer(self, **kwargs: Any) -> Customer:
        n = self._next()
        customer = Customer(name=f"Customer {n}", slug=f"customer-{n}", **kwargs)
        await self.add(customer)
        return customer

    async def contact(self, customer: Customer, **kwargs: Any) -> Contact:
        n = self._next()
        contact = Contact(
            customer_id=customer.id, first_name="Pat", last_name=f"Lee {n}", **kwargs
        )
        await self.add(contact)
        return contact

    async def facility(self, customer: Customer, **kwargs: Any) -> Facility:
        n = self._next()
        facility = Facility(customer_id=customer.id, name=f"Plant {n}", **kwargs)
        await self.add(facility)
        return facility

    async def contract(self, customer: Customer, **kwargs: Any) -> Contract:
        n = self._next()
        contract = Contract(customer_id=customer.id, name=f"Rate card {n}", **kwargs)
        await self.add(contract)
        return contract

    async def contact_log(
        self,
        customer: Customer,
        user: User,
        contact: Contact | None = None,
        **kwargs: Any,
    ) -> ContactLog:
        entry = ContactLog(
            customer_id=customer.id,
            contact_id=contact.id if contact else None,
            logged_by_user_id=user.id,
            contact_type="call",
            occurred_at=NOW - timedelta(days=30),
            **kwargs,
        )
        await self.add(entry)
        return entry

    async def allocation(self, customer: Customer, warehouse: Warehouse) -> WarehouseAllocation:
        allocation = WarehouseAllocation(customer_id=customer.id, warehouse_id=warehouse.id)
        await self.add(allocation)
        return allocation

    async def zone(self, warehouse: Warehouse, zone_code: str = "A1") -> WarehouseZone:
        zone = WarehouseZone(warehouse_id=warehouse.id, zone_code=zone_code, capacity_pallets=40)
        await self.add(zone)
        return zone

    async def session(self, user: User) -> UserSession:
        record = UserSession(user_id=user.id, expires_at=NOW + timedelta(hours=8))
        await self.add(record)
        return record


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    """Row factory bound to the test database."""
    return Seeder(session_factory)


def deleted_days_ago(days: int, actor: str = "user_admin") -> dict[str, Any]:
    """Soft-delete columns for an instance deleted ``days`` before ``NOW``."""
    return {
        "deleted": True,
        "deleted_at": NOW - timedelta(days=days),
        "deleted_by": actor,
        "deleted_reason": "cleanup",
    }


@pytest.fixture
def deleted_ago():
    """Factory for soft-delete columns relative to the fixed clock."""
    return deleted_days_ago
