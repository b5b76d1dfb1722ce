"""Retention Reaper.

This module provides the RetentionReaper class that:
- Finds soft-deleted instances past the retention window
- Re-verifies each candidate against current store state
- Hard-deletes the instance and its dependent rows in one transaction
- Records an audit entry for every purge inside that same transaction
"""

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from custodian.config.settings import Settings, get_settings
from custodian.core.audit import AuditLogger
from custodian.core.exceptions import (
    LifecycleValidationError,
    PurgeCycleInProgressError,
    TransactionFailureError,
)
from custodian.core.logging import LogContext, get_logger, log_exception
from custodian.db.models import SYSTEM_ACTOR, AuditAction
from custodian.lifecycle.classifier import Classifier
from custodian.lifecycle.registry import EntityDefinition, EntityRegistry, get_registry
from custodian.lifecycle.types import Clock, utc_now
from custodian.observability.metrics import observe_purge_cycle
from custodian.retention.types import PurgedItem, PurgeFailure, PurgeReport, SkippedItem
from custodian.utils.exceptions import CustodianError

logger = get_logger(__name__)

InstanceOutcome = PurgedItem | SkippedItem | None

# Failures logged without a traceback
_EXPECTED_FAILURES = (SQLAlchemyError, TimeoutError, CustodianError)


def _describe_failure(exc: Exception) -> str:
    """One-line description of why an instance's purge aborted."""
    if isinstance(exc, TimeoutError) and not exc.args:
        return "transaction timed out"
    if isinstance(exc, SQLAlchemyError | CustodianError) and exc.args:
        return str(exc.args[0])
    return str(exc) or type(exc).__name__


@dataclass
class ReaperConfig:
    """Configuration for the RetentionReaper."""

    retention_days: int = 180
    """Days an instance must stay soft-deleted before it may be purged."""

    transaction_timeout_seconds: float = 30.0
    """Upper bound on one instance's cascade transaction."""

    max_concurrency: int = 1
    """Instances of the same kind processed concurrently within a cycle."""

    batch_size: int = 500
    """Maximum candidates read per kind per cycle."""

    interval_seconds: int = 86400
    """Delay between cycles of the background loop."""

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ReaperConfig":
        settings = settings or get_settings()
        return cls(
            retention_days=settings.retention_days,
            transaction_timeout_seconds=settings.purge_transaction_timeout_seconds,
            max_concurrency=settings.purge_max_concurrency,
            batch_size=settings.purge_batch_size,
            interval_seconds=settings.purge_interval_seconds,
        )


class RetentionReaper:
    """Purges soft-deleted, never-preserved instances after the retention window.

    Cycles are serialized: requesting a cycle while one is running raises
    ``PurgeCycleInProgressError``. One instance failing never aborts the
    cycle; it is reported in ``PurgeReport.failures``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: EntityRegistry | None = None,
        config: ReaperConfig | None = None,
        clock: Clock | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry or get_registry()
        self.config = config or ReaperConfig.from_settings()
        self.clock = clock or utc_now

        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        # Background task
        self._loop_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_running_cycle(self) -> bool:
        return self._lock.locked()

    async def run_purge_cycle(
        self,
        now: datetime | None = None,
        retention_days: int | None = None,
        dry_run: bool = False,
    ) -> PurgeReport:
        """Run one purge cycle.

        Args:
            now: Evaluation time (default: the reaper's clock)
            retention_days: Override the configured retention window
            dry_run: Walk and report without issuing any write

        Returns:
            PurgeReport listing purged, skipped and failed instances

        Raises:
            PurgeCycleInProgressError: If another cycle is still running
            LifecycleValidationError: If ``retention_days`` is negative
        """
        if self._lock.locked():
            raise PurgeCycleInProgressError()

        async with self._lock:
            now = now or self.clock()
            days = self.config.retention_days if retention_days is None else retention_days
            if days < 0:
                raise LifecycleValidationError(
                    field="retention_days", message="retention_days must not be negative"
                )

            report = PurgeReport(
                started_at=now,
                cutoff=now - timedelta(days=days),
                retention_days=days,
                dry_run=dry_run,
            )

            with LogContext(cycle_id=str(report.cycle_id), dry_run=dry_run):
                with observe_purge_cycle(dry_run) as ctx:
                    logger.info(
                        "purge_cycle_started",
                        cutoff=report.cutoff.isoformat(),
                        retention_days=days,
                    )
                    for definition in self.registry.purge_sequence():
                        await self._process_kind(definition, report)

                    report.finished_at = self.clock()
                    ctx["purged"] = report.purged_by_kind()
                    ctx["failures"] = report.failures_by_kind()

                    logger.info(
                        "purge_cycle_completed",
                        purged=report.purged_count,
                        skipped=len(report.skipped),
                        failures=report.failure_count,
                    )

            return report

    # =========================================================================
    # Candidate selection
    # =========================================================================

    async def find_candidates(self, definition: EntityDefinition, cutoff: datetime) -> list[str]:
        """Ids of soft-deleted instances of a kind deleted before ``cutoff``."""
        model = definition.model
        stmt = (
            select(model.id)
            .where(model.deleted.is_(True), model.deleted_at < cutoff)
            .order_by(model.deleted_at, model.id)
            .limit(self.config.batch_size)
        )
        async with self.session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def _process_kind(self, definition: EntityDefinition, report: PurgeReport) -> None:
        candidates = await self.find_candidates(definition, report.cutoff)
        if not candidates:
            return

        logger.debug(
            "purge_candidates_found", kind=definition.kind.value, count=len(candidates)
        )
        outcomes = await asyncio.gather(
            *(self._guarded_purge(definition, entity_id, report) for entity_id in candidates)
        )
        for outcome in outcomes:
            if isinstance(outcome, PurgedItem):
                report.purged.append(outcome)
            elif isinstance(outcome, SkippedItem):
                report.skipped.append(outcome)
                logger.info(
                    "purge_instance_skipped",
                    kind=outcome.kind,
                    entity_id=outcome.entity_id,
                    reason=outcome.reason,
                )

    async def _guarded_purge(
        self, definition: EntityDefinition, entity_id: str, report: PurgeReport
    ) -> InstanceOutcome:
        kind = definition.kind.value
        async with self._semaphore:
            try:
                return await asyncio.wait_for(
                    self._purge_instance(definition, entity_id, report),
                    timeout=self.config.transaction_timeout_seconds,
                )
            except Exception as exc:
                detail = _describe_failure(exc)
                if isinstance(exc, TransactionFailureError):
                    error = exc
                else:
                    error = TransactionFailureError(
                        kind, entity_id, f"{type(exc).__name__}: {detail}"
                    )
                report.failures.append(PurgeFailure.from_error(error, exc))
                if isinstance(exc, _EXPECTED_FAILURES):
                    logger.error(
                        "purge_instance_failed",
                        kind=kind,
                        entity_id=entity_id,
                        error_type=type(exc).__name__,
                        error_message=detail,
                    )
                else:
                    log_exception(logger, exc, kind=kind, entity_id=entity_id)
                return None

    # =========================================================================
    # Per-instance transaction
    # =========================================================================

    async def _purge_instance(
        self, definition: EntityDefinition, entity_id: str, report: PurgeReport
    ) -> InstanceOutcome:
        kind = definition.kind.value
        model = definition.model

        async with self.session_factory() as session:
            async with session.begin():
                stmt = (
                    select(model)
                    .where(
                        model.id == entity_id,
                        model.deleted.is_(True),
                        model.deleted_at < report.cutoff,
                    )
                    .with_for_update()
                )
                entity = (await session.execute(stmt)).scalar_one_or_none()
                if entity is None:
                    if await session.get(model, entity_id) is None:
                        # Gone since the candidate scan
                        return None
                    return SkippedItem(kind, entity_id, "no longer eligible for purge")

                if definition.is_preserved(entity):
                    return SkippedItem(
                        kind, entity_id, f"{kind} is {definition.preserve.label}; preserved wins"
                    )

                verdict = await Classifier(session, self.registry).evaluate(definition, entity)
                if verdict.must_preserve:
                    return SkippedItem(kind, entity_id, verdict.reason)

                blocker = await self._find_blocking_child(session, definition, entity_id)
                if blocker is not None:
                    return SkippedItem(kind, entity_id, blocker)

                cascaded = await self._cascade(session, definition, entity_id, report.dry_run)
                if report.dry_run:
                    return PurgedItem(kind, entity_id, cascaded)

                deleted_by = entity.deleted_by
                result = await session.execute(
                    delete(model.__table__).where(model.__table__.c.id == entity_id)
                )
                if result.rowcount != 1:
                    raise TransactionFailureError(kind, entity_id, "parent row vanished mid-purge")

                await AuditLogger(session).log_event(
                    definition.kind,
                    entity_id,
                    AuditAction.PURGE,
                    actor=SYSTEM_ACTOR,
                    reason=f"retention window of {report.retention_days} days elapsed",
                    occurred_at=report.started_at,
                    event_data={
                        "cycle_id": str(report.cycle_id),
                        "cascaded": cascaded,
                        "deleted_by": deleted_by,
                    },
                )

        logger.info("instance_purged", kind=kind, entity_id=entity_id, cascaded=cascaded)
        return PurgedItem(kind, entity_id, cascaded)

    async def _find_blocking_child(
        self, session: AsyncSession, definition: EntityDefinition, entity_id: str
    ) -> str | None:
        """Reason a governed child forbids removing its parent, if any."""
        for relation in definition.children:
            if relation.kind is None:
                continue
            child_definition = self.registry.get(relation.kind)
            rows = await session.execute(
                select(relation.model).where(relation.foreign_key == entity_id)
            )
            for child in rows.scalars():
                if child_definition.is_preserved(child) or child_definition.is_immutable(child):
                    return f"{relation.kind.value} {child.id} must be preserved"
        return None

    async def _cascade(
        self,
        session: AsyncSession,
        definition: EntityDefinition,
        entity_id: str,
        dry_run: bool,
    ) -> dict[str, int]:
        """Remove (or, in a dry run, count) dependent rows in declared order.

        Detached rows survive with their reference cleared.
        """
        cascaded: dict[str, int] = {}
        for relation in definition.children:
            table = relation.model.__table__
            column = table.c[relation.foreign_key.key]
            if dry_run:
                stmt = select(func.count()).select_from(table).where(column == entity_id)
                count = (await session.execute(stmt)).scalar_one()
            elif relation.detach:
                values: dict[str, Any] = {column.key: None}
                if "version" in table.c:
                    values["version"] = table.c.version + 1
                result = await session.execute(
                    update(table).where(column == entity_id).values(values)
                )
                count = result.rowcount
            else:
                result = await session.execute(delete(table).where(column == entity_id))
                count = result.rowcount
            cascaded[relation.table_name] = cascaded.get(relation.table_name, 0) + count
        return cascaded

    # =========================================================================
    # Background processing
    # =========================================================================

    async def start(self) -> None:
        """Start running a purge cycle every ``interval_seconds``."""
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._background_loop())
        logger.info("retention_reaper_started", interval_seconds=self.config.interval_seconds)

    async def stop(self) -> None:
        """Stop background processing."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        logger.info("retention_reaper_stopped")

    async def _background_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.interval_seconds)
                report = await self.run_purge_cycle()
                if report.failures:
                    logger.warning("purge_cycle_had_failures", failures=report.failure_count)
            except asyncio.CancelledError:
                break
            except PurgeCycleInProgressError:
                logger.info("purge_cycle_skipped_in_progress")
            except Exception as e:
                log_exception(logger, e, context="purge_loop")


# Module-level reaper instance
_reaper: RetentionReaper | None = None


def get_retention_reaper() -> RetentionReaper:
    """Get the global retention reaper, bound to the default session factory."""
    global _reaper
    if _reaper is None:
        from custodian.db.config import get_session_factory

        _reaper = RetentionReaper(get_session_factory())
    return _reaper


def initialize_retention_reaper(
    session_factory: async_sessionmaker[AsyncSession],
    registry: EntityRegistry | None = None,
    config: ReaperConfig | None = None,
    clock: Clock | None = None,
) -> RetentionReaper:
    """Initialize the global retention reaper."""
    global _reaper
    _reaper = RetentionReaper(session_factory, registry=registry, config=config, clock=clock)
    return _reaper
