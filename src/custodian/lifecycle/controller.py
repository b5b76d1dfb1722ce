"""Transition Controller.

The decision surface for lifecycle changes. Each operation runs its
read-classify-write sequence in one transaction: the row is selected
``FOR UPDATE`` where the store supports it, and every governed table
carries a version column so a concurrent writer that slipped in between
read and write makes the flush fail instead of silently overwriting.
Lost races are retried from a fresh classification before surfacing as
``ConflictError``.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from custodian.config.settings import Settings, get_settings
from custodian.core.audit import AuditLogger
from custodian.core.exceptions import (
    ConflictError,
    EntityNotFoundError,
    LifecycleValidationError,
)
from custodian.core.logging import get_logger, log_transition
from custodian.db.models import AuditAction
from custodian.lifecycle.classifier import Classifier
from custodian.lifecycle.registry import EntityDefinition, EntityRegistry, get_registry
from custodian.lifecycle.types import (
    Clock,
    EntityKind,
    LifecycleAction,
    Rejection,
    TransitionResult,
    TransitionStatus,
    Verdict,
    utc_now,
)
from custodian.observability.metrics import record_conflict, record_transition

logger = get_logger(__name__)

Operation = Callable[[AsyncSession], Awaitable[TransitionResult]]


@dataclass
class ControllerConfig:
    """Configuration for the TransitionController."""

    conflict_retries: int = 1
    """Automatic re-classify-and-retry attempts after a lost race."""

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ControllerConfig":
        settings = settings or get_settings()
        return cls(conflict_retries=settings.transition_conflict_retries)


class TransitionController:
    """Performs delete, preserve and deactivate transitions.

    ``actor`` is always passed explicitly so the same controller serves
    request handlers and the batch reaper alike.

    Example:
        >>> controller = TransitionController(session_factory)
        >>> result = await controller.attempt_delete("customer", customer_id, actor="user_7")
        >>> if result.status == TransitionStatus.REJECTED:
        ...     payload = result.rejection.to_payload()  # surface as 409 with guidance
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: EntityRegistry | None = None,
        config: ControllerConfig | None = None,
        clock: Clock | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry or get_registry()
        self.config = config or ControllerConfig.from_settings()
        self.clock = clock or utc_now

    async def classify(self, kind: EntityKind | str, entity_id: str) -> Verdict:
        """Read-only classification of one instance."""
        async with self.session_factory() as session:
            return await Classifier(session, self.registry).classify(kind, entity_id)

    async def attempt_delete(
        self,
        kind: EntityKind | str,
        entity_id: str,
        actor: str,
        reason: str | None = None,
    ) -> TransitionResult:
        """Soft-delete an instance if the classifier finds no footprint.

        Children are never touched; readers hide them by filtering on the
        parent's ``deleted`` flag.

        Returns:
            APPLIED when the instance is now deleted, UNCHANGED when it
            already was, REJECTED with a preserve suggestion otherwise.

        Raises:
            EntityNotFoundError: If no instance has this id
            ConflictError: If a concurrent transition kept winning
        """
        definition = self.registry.get(kind)

        async def operation(session: AsyncSession) -> TransitionResult:
            return await self._delete(session, definition, entity_id, actor, reason)

        return await self._run(definition, entity_id, LifecycleAction.DELETE, operation)

    async def preserve(
        self,
        kind: EntityKind | str,
        entity_id: str,
        actor: str,
        reason: str | None = None,
    ) -> TransitionResult:
        """Move an instance into its permanent preserved state.

        The verb depends on the kind: customers terminate, warehouses and
        roles retire, users disable, facilities and contracts archive.

        Raises:
            EntityNotFoundError: If no instance has this id
            LifecycleValidationError: If the transition is not permitted or
                the reason is shorter than the kind requires
            ConflictError: If a concurrent transition kept winning
        """
        definition = self.registry.get(kind)

        async def operation(session: AsyncSession) -> TransitionResult:
            return await self._preserve(session, definition, entity_id, actor, reason)

        return await self._run(definition, entity_id, definition.preserve_verb, operation)

    async def deactivate(
        self,
        kind: EntityKind | str,
        entity_id: str,
        actor: str,
    ) -> TransitionResult:
        """Mark an instance inactive. Requires no reason and is reversible.

        Raises:
            EntityNotFoundError: If no instance has this id
            LifecycleValidationError: If the kind has no active toggle or the
                instance is deleted
        """
        definition = self.registry.get(kind)

        async def operation(session: AsyncSession) -> TransitionResult:
            return await self._deactivate(session, definition, entity_id, actor)

        return await self._run(definition, entity_id, LifecycleAction.DEACTIVATE, operation)

    # =========================================================================
    # Transaction handling
    # =========================================================================

    async def _run(
        self,
        definition: EntityDefinition,
        entity_id: str,
        action: LifecycleAction,
        operation: Operation,
    ) -> TransitionResult:
        kind = definition.kind.value
        attempts = self.config.conflict_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await operation(session)
            except StaleDataError:
                record_conflict(kind)
                logger.warning(
                    "transition_conflict",
                    kind=kind,
                    entity_id=entity_id,
                    action=action.value,
                    attempt=attempt,
                )
                if attempt >= attempts:
                    record_transition(kind, action.value, "conflict")
                    raise ConflictError(kind, entity_id) from None
                continue
            except EntityNotFoundError:
                record_transition(kind, action.value, "not_found")
                raise
            except LifecycleValidationError as exc:
                record_transition(kind, action.value, "invalid")
                logger.info(
                    "transition_invalid",
                    kind=kind,
                    entity_id=entity_id,
                    action=action.value,
                    field=exc.field,
                    message=exc.message,
                )
                raise

            record_transition(kind, action.value, result.status.value)
            log_transition(
                logger,
                kind=kind,
                entity_id=entity_id,
                action=action.value,
                outcome=result.status.value,
                actor=result.actor,
                reason=result.rejection.reason if result.rejection else None,
            )
            return result

        raise ConflictError(kind, entity_id)

    async def _load(self, session: AsyncSession, definition: EntityDefinition, entity_id: str):
        model = definition.model
        stmt = select(model).where(model.id == entity_id).with_for_update()
        entity = (await session.execute(stmt)).scalar_one_or_none()
        if entity is None:
            raise EntityNotFoundError(definition.kind.value, entity_id)
        return entity

    def _result(
        self,
        definition: EntityDefinition,
        entity_id: str,
        action: LifecycleAction,
        status: TransitionStatus,
        actor: str,
        **kwargs: Any,
    ) -> TransitionResult:
        return TransitionResult(
            kind=definition.kind,
            entity_id=entity_id,
            action=action,
            status=status,
            actor=actor,
            **kwargs,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    async def _delete(
        self,
        session: AsyncSession,
        definition: EntityDefinition,
        entity_id: str,
        actor: str,
        reason: str | None,
    ) -> TransitionResult:
        action = LifecycleAction.DELETE
        entity = await self._load(session, definition, entity_id)
        if getattr(entity, "deleted", False):
            return self._result(definition, entity_id, action, TransitionStatus.UNCHANGED, actor)

        verdict = await Classifier(session, self.registry).evaluate(definition, entity)
        if verdict.must_preserve:
            rejection = Rejection(
                reason=verdict.reason,
                facts=verdict.facts,
                suggestion=definition.suggestion(reason),
            )
            return self._result(
                definition, entity_id, action, TransitionStatus.REJECTED, actor, rejection=rejection
            )

        now = self.clock()
        entity.deleted = True
        entity.deleted_at = now
        entity.deleted_by = actor
        entity.deleted_reason = reason or verdict.reason
        await session.flush()

        await AuditLogger(session).log_event(
            definition.kind,
            entity_id,
            AuditAction.DELETE,
            actor=actor,
            reason=entity.deleted_reason,
            occurred_at=now,
            event_data={"facts": [fact.to_payload() for fact in verdict.facts]},
        )
        return self._result(
            definition, entity_id, action, TransitionStatus.APPLIED, actor, occurred_at=now
        )

    async def _preserve(
        self,
        session: AsyncSession,
        definition: EntityDefinition,
        entity_id: str,
        actor: str,
        reason: str | None,
    ) -> TransitionResult:
        kind = definition.kind.value
        layout = definition.preserve
        if layout is None:
            raise LifecycleValidationError(
                field="action",
                message=f"{kind} has no preserved state; deactivate instead",
                kind=kind,
                entity_id=entity_id,
            )

        entity = await self._load(session, definition, entity_id)
        if getattr(entity, "deleted", False):
            raise LifecycleValidationError(
                field="id",
                message=f"{kind} is deleted and cannot be {layout.label}",
                kind=kind,
                entity_id=entity_id,
            )
        if definition.is_preserved(entity):
            raise LifecycleValidationError(
                field="status",
                message=f"{kind} is already {layout.label}",
                kind=kind,
                entity_id=entity_id,
            )
        for guard in definition.preserve_guards:
            if guard.check(entity):
                raise LifecycleValidationError(
                    field=guard.field, message=guard.message, kind=kind, entity_id=entity_id
                )

        text = (reason or "").strip()
        if len(text) < definition.min_reason_length:
            raise LifecycleValidationError(
                field="reason",
                message=f"reason must be at least {definition.min_reason_length} characters",
                kind=kind,
                entity_id=entity_id,
            )

        now = self.clock()
        layout.apply(entity, actor, text or None, now)
        await session.flush()

        action = definition.preserve_verb
        await AuditLogger(session).log_event(
            definition.kind,
            entity_id,
            AuditAction(action.value),
            actor=actor,
            reason=text or None,
            occurred_at=now,
        )
        return self._result(
            definition, entity_id, action, TransitionStatus.APPLIED, actor, occurred_at=now
        )

    async def _deactivate(
        self,
        session: AsyncSession,
        definition: EntityDefinition,
        entity_id: str,
        actor: str,
    ) -> TransitionResult:
        kind = definition.kind.value
        layout = definition.deactivation
        if layout is None:
            raise LifecycleValidationError(
                field="action",
                message=f"{kind} does not support deactivate",
                kind=kind,
                entity_id=entity_id,
            )

        action = LifecycleAction.DEACTIVATE
        entity = await self._load(session, definition, entity_id)
        if getattr(entity, "deleted", False):
            raise LifecycleValidationError(
                field="id",
                message=f"{kind} is deleted and cannot be deactivated",
                kind=kind,
                entity_id=entity_id,
            )
        if not getattr(entity, layout.active_field):
            return self._result(definition, entity_id, action, TransitionStatus.UNCHANGED, actor)

        now = self.clock()
        setattr(entity, layout.active_field, False)
        setattr(entity, layout.at_field, now)
        setattr(entity, layout.by_field, actor)
        await session.flush()

        await AuditLogger(session).log_event(
            definition.kind, entity_id, AuditAction.DEACTIVATE, actor=actor, occurred_at=now
        )
        return self._result(
            definition, entity_id, action, TransitionStatus.APPLIED, actor, occurred_at=now
        )
