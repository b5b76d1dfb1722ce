"""Constraint Validator.

Lifecycle invariants are enforced twice at the storage boundary: as CHECK
constraints declared on each table (see ``custodian.db.models``) and by a
``before_flush`` hook that inspects every pending ORM write. The hook
covers what a CHECK cannot express portably: permanence of the preserved
state, per-kind immutability and the append-only audit log.
"""

from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from custodian.core.exceptions import InvariantViolationError
from custodian.db.models import AuditEvent
from custodian.lifecycle.registry import EntityDefinition, get_registry


def _pairing_violation(flag: bool, stamp: Any) -> bool:
    return bool(flag) != (stamp is not None)


def validate_lifecycle_state(definition: EntityDefinition, obj: Any) -> None:
    """Check one instance's lifecycle columns.

    Raises:
        InvariantViolationError: If the instance is in an illegal state
    """
    kind = definition.kind.value
    entity_id = getattr(obj, "id", None)
    deleted = bool(getattr(obj, "deleted", False))
    preserved = definition.is_preserved(obj)

    if deleted and preserved:
        raise InvariantViolationError(
            kind, entity_id, f"{kind} cannot be both deleted and {definition.preserve.label}"
        )
    if deleted and definition.is_immutable(obj):
        raise InvariantViolationError(kind, entity_id, f"immutable {kind} cannot be deleted")

    if hasattr(obj, "deleted") and _pairing_violation(deleted, obj.deleted_at):
        raise InvariantViolationError(
            kind, entity_id, "deleted_at must be set if and only if deleted is true"
        )

    layout = definition.preserve
    if layout is not None and layout.flag_field is not None:
        if _pairing_violation(preserved, getattr(obj, layout.at_field)):
            raise InvariantViolationError(
                kind,
                entity_id,
                f"{layout.at_field} must be set if and only if {kind} is {layout.label}",
            )

    deactivation = definition.deactivation
    if deactivation is not None:
        inactive = getattr(obj, deactivation.active_field) is False
        if _pairing_violation(inactive, getattr(obj, deactivation.at_field)):
            raise InvariantViolationError(
                kind,
                entity_id,
                f"{deactivation.at_field} must be set if and only if {kind} is inactive",
            )

    if preserved:
        for guard in definition.preserve_guards:
            if guard.check(obj):
                raise InvariantViolationError(kind, entity_id, guard.message)


def validate_preserve_permanence(definition: EntityDefinition, obj: Any) -> None:
    """Refuse a flush that would take an instance out of its preserved state."""
    layout = definition.preserve
    if layout is None:
        return

    state = inspect(obj)
    if layout.flag_field is not None:
        history = state.attrs[layout.flag_field].history
        was_preserved = layout.flag_value in (history.deleted or ())
    else:
        history = state.attrs[layout.at_field].history
        was_preserved = any(value is not None for value in history.deleted or ())

    if was_preserved and not layout.is_preserved(obj):
        raise InvariantViolationError(
            definition.kind.value,
            getattr(obj, "id", None),
            f"{definition.kind.value} is {layout.label}; preserved instances are permanent",
        )


def _validate_before_flush(session: Session, flush_context, instances) -> None:  # noqa: ARG001
    registry = get_registry()

    for obj in session.deleted:
        if isinstance(obj, AuditEvent):
            raise InvariantViolationError(
                "audit", str(obj.audit_id), "lifecycle audit log is append-only"
            )

    for obj in session.dirty:
        if isinstance(obj, AuditEvent) and session.is_modified(obj):
            raise InvariantViolationError(
                "audit", str(obj.audit_id), "lifecycle audit log is append-only"
            )
        definition = registry.for_model(type(obj))
        if definition is not None and session.is_modified(obj):
            validate_preserve_permanence(definition, obj)
            validate_lifecycle_state(definition, obj)

    for obj in session.new:
        definition = registry.for_model(type(obj))
        if definition is not None:
            validate_lifecycle_state(definition, obj)


def install_constraint_validator() -> None:
    """Install the flush-time validator on every ORM session.

    Safe to call more than once.
    """
    if not event.contains(Session, "before_flush", _validate_before_flush):
        event.listen(Session, "before_flush", _validate_before_flush)
