"""Retention type definitions.

This module defines the report produced by a purge cycle:
- PurgedItem: An instance removed (or, in a dry run, that would be removed)
- SkippedItem: An eligible-looking instance the re-verification kept
- PurgeFailure: An instance whose cascade transaction aborted
- PurgeReport: The full outcome of one cycle
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from uuid_utils.compat import uuid7

from custodian.core.exceptions import TransactionFailureError


@dataclass
class PurgedItem:
    """A parent instance removed together with its dependent rows."""

    kind: str
    entity_id: str
    cascaded: dict[str, int] = field(default_factory=dict)
    """Dependent rows removed per child table."""

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "entity_id": self.entity_id, "cascaded": dict(self.cascaded)}


@dataclass
class SkippedItem:
    """A candidate left in place, with the reason it was kept."""

    kind: str
    entity_id: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "entity_id": self.entity_id, "reason": self.reason}


@dataclass
class PurgeFailure:
    """A candidate whose purge transaction rolled back or timed out."""

    kind: str
    entity_id: str
    error_type: str
    message: str

    @classmethod
    def from_error(cls, error: TransactionFailureError, cause: BaseException) -> "PurgeFailure":
        return cls(
            kind=error.kind,
            entity_id=error.entity_id,
            error_type=type(cause).__name__,
            message=str(error.args[0]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "entity_id": self.entity_id,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass
class PurgeReport:
    """Outcome of one retention purge cycle.

    A dry run produces the same report a live run would, without writing.
    """

    started_at: datetime
    """When the cycle started (the ``now`` it was evaluated against)."""

    cutoff: datetime
    """Instances deleted strictly before this moment were eligible."""

    retention_days: int
    dry_run: bool = False

    cycle_id: UUID = field(default_factory=uuid7)
    finished_at: datetime | None = None

    purged: list[PurgedItem] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    failures: list[PurgeFailure] = field(default_factory=list)

    @property
    def purged_count(self) -> int:
        return len(self.purged)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def purged_ids(self) -> set[tuple[str, str]]:
        """``(kind, entity_id)`` pairs removed by this cycle."""
        return {(item.kind, item.entity_id) for item in self.purged}

    def purged_by_kind(self) -> dict[str, int]:
        return dict(Counter(item.kind for item in self.purged))

    def failures_by_kind(self) -> dict[str, int]:
        return dict(Counter(item.kind for item in self.failures))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cycle_id": str(self.cycle_id),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "cutoff": self.cutoff.isoformat(),
            "retention_days": self.retention_days,
            "dry_run": self.dry_run,
            "purged": [item.to_dict() for item in self.purged],
            "skipped": [item.to_dict() for item in self.skipped],
            "failures": [item.to_dict() for item in self.failures],
            "purged_count": self.purged_count,
            "failure_count": self.failure_count,
        }
