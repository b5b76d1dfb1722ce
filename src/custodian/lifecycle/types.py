"""Lifecycle type definitions.

This module defines the value types exchanged by the lifecycle engine:
- EntityKind: The governed business entity kinds
- LifecycleAction: Transitions a caller can request or be steered towards
- EvidentiaryFact / Verdict: Classifier output, recomputed on every call
- Suggestion / Rejection / TransitionResult: Transition Controller output
"""

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EntityKind(str, Enum):
    """Business entity kinds governed by the lifecycle engine."""

    CUSTOMER = "customer"
    WAREHOUSE = "warehouse"
    CONTACT = "contact"
    FACILITY = "facility"
    USER = "user"
    CONTRACT = "contract"
    ROLE = "role"


class LifecycleAction(str, Enum):
    """Lifecycle transitions.

    ``DELETE`` is the soft delete; every other member is a preserve variant
    and may appear as the suggested alternative to a rejected delete.
    """

    DELETE = "delete"
    RETIRE = "retire"
    TERMINATE = "terminate"
    DISABLE = "disable"
    ARCHIVE = "archive"
    DEACTIVATE = "deactivate"


class TransitionStatus(str, Enum):
    """Outcome of a transition request."""

    APPLIED = "applied"
    """The state change was committed."""

    REJECTED = "rejected"
    """The classifier steered the caller to a preserve action instead."""

    UNCHANGED = "unchanged"
    """The entity was already in the requested state; nothing was written."""


class _PayloadModel(BaseModel):
    """Base for collaborator-facing models rendered with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_payload(self) -> dict[str, Any]:
        """Render as a JSON-ready dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class EvidentiaryFact(_PayloadModel):
    """A named count or flag read from the store as classifier input."""

    name: str
    present: bool
    count: int | None = None

    @classmethod
    def from_count(cls, name: str, count: int) -> "EvidentiaryFact":
        return cls(name=name, present=count > 0, count=count)

    @classmethod
    def from_flag(cls, name: str, value: bool) -> "EvidentiaryFact":
        return cls(name=name, present=bool(value))


class Verdict(_PayloadModel):
    """Classifier result. Never persisted; always recomputed from the store."""

    kind: EntityKind
    entity_id: str
    must_preserve: bool
    reason: str
    facts: list[EvidentiaryFact] = Field(default_factory=list)
    suggested_action: LifecycleAction

    def fact(self, name: str) -> EvidentiaryFact | None:
        """Look up a supporting fact by name."""
        for item in self.facts:
            if item.name == name:
                return item
        return None


class Suggestion(_PayloadModel):
    """Guidance attached to a rejected delete: what to do instead."""

    action: LifecycleAction
    operation: str
    """Controller operation to call: ``preserve`` or ``deactivate``."""

    reason_field_required: bool
    min_reason_length: int
    payload: dict[str, Any] = Field(default_factory=dict)
    """Prefilled request body (target status value and reason)."""


class Rejection(_PayloadModel):
    """Structured guidance for a delete the classifier refused.

    Collaborators surface this as a 409-equivalent, never as a generic error.
    """

    reason: str
    facts: list[EvidentiaryFact] = Field(default_factory=list)
    suggestion: Suggestion


class TransitionResult(_PayloadModel):
    """Outcome of AttemptDelete, Preserve or Deactivate."""

    kind: EntityKind
    entity_id: str
    action: LifecycleAction
    status: TransitionStatus
    actor: str
    occurred_at: datetime | None = None
    rejection: Rejection | None = None

    @property
    def ok(self) -> bool:
        """Whether the entity is now in the requested state."""
        return self.status != TransitionStatus.REJECTED


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock for transition and purge timestamps."""
    return datetime.now(timezone.utc)
