"""Database configuration and session management."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.pool import NullPool

from custodian.config.settings import Settings, get_settings
from custodian.lifecycle.constraints import install_constraint_validator
from custodian.utils.exceptions import ConfigurationError

# Async drivers the engine is tested against
SUPPORTED_DRIVERS = frozenset({"sqlite+aiosqlite", "postgresql+asyncpg"})

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """Turn on foreign key enforcement for every new SQLite connection.

    SQLite ships with referential integrity disabled; the purge cascade
    relies on the store refusing dangling child rows.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine(settings: Settings | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine for the configured store.

    Args:
        settings: Settings to read DATABASE_URL and pool sizing from
        **kwargs: Extra keyword arguments for ``create_async_engine``

    Returns:
        Configured AsyncEngine

    Raises:
        ConfigurationError: If DATABASE_URL does not name a supported async driver
    """
    settings = settings or get_settings()
    drivername = make_url(settings.DATABASE_URL).drivername
    if drivername not in SUPPORTED_DRIVERS:
        raise ConfigurationError(f"Unsupported database driver: {drivername}")

    options: dict = {"echo": settings.DEBUG}
    if settings.ENVIRONMENT == "test":
        options["poolclass"] = NullPool
    elif not settings.DATABASE_URL.startswith("sqlite"):
        options["pool_size"] = settings.DATABASE_POOL_SIZE
        options["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    options.update(kwargs)

    engine = create_async_engine(settings.DATABASE_URL, **options)
    enable_sqlite_foreign_keys(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory with the lifecycle constraint validator installed."""
    install_constraint_validator()
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def get_engine() -> AsyncEngine:
    """Get the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the process-wide session factory, creating it on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory

