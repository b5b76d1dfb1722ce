"""Lifecycle audit logging."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from custodian.db.models.audit import AuditAction, AuditEvent


class AuditLogger:
    """Service for creating and querying lifecycle audit events.

    Audit events are immutable, append-only records of every lifecycle
    transition and purge. They are written in the caller's transaction so
    that a state change and its audit record commit or roll back together.
    """

    def __init__(self, db: AsyncSession):
        """Initialize audit logger with database session.

        Args:
            db: Async SQLAlchemy session for database operations
        """
        self.db = db

    async def log_event(
        self,
        kind: Enum | str,
        entity_id: str,
        action: AuditAction | str,
        actor: str,
        reason: str | None = None,
        occurred_at: datetime | None = None,
        event_data: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Create an immutable audit log entry.

        Args:
            kind: Entity kind the action applied to
            entity_id: Identifier of the affected instance
            action: Lifecycle action (delete, retire, purge, ...)
            actor: Who performed the action ("system" for the reaper)
            reason: Free-text justification, when one was given
            occurred_at: When the action happened (default: now)
            event_data: Structured details such as facts or cascade counts

        Returns:
            Created AuditEvent instance

        Example:
            >>> audit = AuditLogger(session)
            >>> await audit.log_event(
            ...     EntityKind.WAREHOUSE,
            ...     warehouse_id,
            ...     AuditAction.RETIRE,
            ...     actor="user_42",
            ...     reason="Site closed in Q3",
            ... )
        """
        if isinstance(kind, Enum):
            kind = kind.value
        if isinstance(action, AuditAction):
            action = action.value

        event = AuditEvent(
            kind=kind,
            entity_id=entity_id,
            action=action,
            actor=actor,
            reason=reason,
            occurred_at=occurred_at or datetime.now(timezone.utc),
            event_data=event_data or {},
        )

        self.db.add(event)
        await self.db.flush()

        return event

    async def query_events(
        self,
        kind: Enum | str | None = None,
        entity_id: str | None = None,
        action: AuditAction | str | None = None,
        actor: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Query audit events with filters.

        Args:
            kind: Filter by entity kind
            entity_id: Filter by entity
            action: Filter by lifecycle action
            actor: Filter by actor
            start_date: Filter events at or after this time
            end_date: Filter events at or before this time
            limit: Max results (max 1000)
            offset: Pagination offset

        Returns:
            List of matching audit events, newest first
        """
        if isinstance(kind, Enum):
            kind = kind.value
        if isinstance(action, AuditAction):
            action = action.value

        query = select(AuditEvent).order_by(
            AuditEvent.occurred_at.desc(),
            AuditEvent.audit_id.desc(),  # Secondary sort for equal timestamps
        )

        if kind is not None:
            query = query.where(AuditEvent.kind == kind)
        if entity_id is not None:
            query = query.where(AuditEvent.entity_id == entity_id)
        if action is not None:
            query = query.where(AuditEvent.action == action)
        if actor is not None:
            query = query.where(AuditEvent.actor == actor)
        if start_date is not None:
            query = query.where(AuditEvent.occurred_at >= start_date)
        if end_date is not None:
            query = query.where(AuditEvent.occurred_at <= end_date)

        query = query.limit(min(limit, 1000)).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())
