"""Evidentiary facts and predicates.

Facts are read from the store up front (every fact of a kind, for
transparency). Predicates are then evaluated in priority order over the
loaded entity and its facts; the first one that resolves ends
classification.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from custodian.lifecycle.types import EvidentiaryFact

if TYPE_CHECKING:
    from custodian.lifecycle.registry import EntityDefinition

Facts = dict[str, EvidentiaryFact]


# =============================================================================
# Fact sources
# =============================================================================


class FactSource(Protocol):
    """Reads one named fact about an entity from the store."""

    name: str

    async def collect(self, session: AsyncSession, entity: Any) -> EvidentiaryFact: ...


@dataclass(frozen=True)
class CountFact:
    """Number of rows in another table that reference the entity."""

    name: str
    column: InstrumentedAttribute

    async def collect(self, session: AsyncSession, entity: Any) -> EvidentiaryFact:
        stmt = select(func.count()).select_from(self.column.class_).where(self.column == entity.id)
        count = (await session.execute(stmt)).scalar_one()
        return EvidentiaryFact.from_count(self.name, count)


@dataclass(frozen=True)
class FlagFact:
    """Boolean column on the entity itself."""

    name: str
    attribute: str

    async def collect(self, session: AsyncSession, entity: Any) -> EvidentiaryFact:  # noqa: ARG002
        return EvidentiaryFact.from_flag(self.name, getattr(entity, self.attribute))


@dataclass(frozen=True)
class ParentFlagFact:
    """Boolean column on the entity's parent row (e.g. customer.deleted)."""

    name: str
    foreign_key: str
    parent_column: InstrumentedAttribute

    async def collect(self, session: AsyncSession, entity: Any) -> EvidentiaryFact:
        parent_model = self.parent_column.class_
        stmt = select(self.parent_column).where(
            parent_model.id == getattr(entity, self.foreign_key)
        )
        value = (await session.execute(stmt)).scalar_one_or_none()
        return EvidentiaryFact.from_flag(self.name, bool(value))


# =============================================================================
# Predicates
# =============================================================================


@dataclass(frozen=True)
class Outcome:
    """A resolved predicate."""

    must_preserve: bool
    reason: str


class Predicate(Protocol):
    """One step of a kind's priority-ordered classification."""

    def evaluate(
        self, definition: "EntityDefinition", entity: Any, facts: Facts
    ) -> Outcome | None: ...


@dataclass(frozen=True)
class AlreadyPreserved:
    """An instance already in its preserved terminal state stays there."""

    def evaluate(
        self, definition: "EntityDefinition", entity: Any, facts: Facts  # noqa: ARG002
    ) -> Outcome | None:
        if definition.is_preserved(entity):
            label = definition.preserve.label if definition.preserve else "preserved"
            return Outcome(True, f"{definition.kind.value} is already {label} (preserved forever)")
        return None


@dataclass(frozen=True)
class Immutable:
    """Deletion is categorically unavailable while ``check`` holds."""

    check: Callable[[Any], bool]
    reason: str

    def evaluate(
        self, definition: "EntityDefinition", entity: Any, facts: Facts  # noqa: ARG002
    ) -> Outcome | None:
        if self.check(entity):
            return Outcome(True, self.reason)
        return None


@dataclass(frozen=True)
class MarkedAsTestData:
    """An explicit test-data flag makes the instance deletable."""

    fact: str = "is_test_data"
    reason: str = "marked as test data"

    def evaluate(
        self, definition: "EntityDefinition", entity: Any, facts: Facts  # noqa: ARG002
    ) -> Outcome | None:
        if facts[self.fact].present:
            return Outcome(False, self.reason)
        return None


@dataclass(frozen=True)
class ParentOverride:
    """Children of a deleted or test-data parent are deletable."""

    facts: tuple[str, ...] = ("parent_deleted", "parent_is_test_data")
    reason: str = "belongs to test/deleted customer"

    def evaluate(
        self, definition: "EntityDefinition", entity: Any, facts: Facts  # noqa: ARG002
    ) -> Outcome | None:
        if any(facts[name].present for name in self.facts):
            return Outcome(False, self.reason)
        return None


@dataclass(frozen=True)
class Footprint:
    """Any dependent row representing real-world participation preserves."""

    fact: str
    reason: str

    def evaluate(
        self, definition: "EntityDefinition", entity: Any, facts: Facts  # noqa: ARG002
    ) -> Outcome | None:
        if facts[self.fact].present:
            return Outcome(True, self.reason)
        return None


@dataclass(frozen=True)
class InheritParent:
    """A child with no footprint of its own inherits its live parent's history."""

    reason: str = "belongs to active/retired customer (preserve as history)"

    def evaluate(
        self, definition: "EntityDefinition", entity: Any, facts: Facts  # noqa: ARG002
    ) -> Outcome | None:
        return Outcome(True, self.reason)
