"""Append-only lifecycle audit log shared by every governed entity kind."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID


class AuditAction(str, Enum):
    """Lifecycle actions recorded in the audit log."""

    DELETE = "delete"
    TERMINATE = "terminate"
    RETIRE = "retire"
    DISABLE = "disable"
    ARCHIVE = "archive"
    DEACTIVATE = "deactivate"
    PURGE = "purge"


class AuditEvent(Base):
    """Immutable audit log entry for lifecycle transitions and purges.

    Rows are only ever inserted. A purge writes its entry in the same
    transaction that removes the rows, so the record survives the data.
    """

    __tablename__ = "lifecycle_audit_log"

    # UUIDv7 is time-ordered, making audit events naturally sortable by ID
    audit_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Supporting facts, cascade counts, etc.
    event_data: Mapped[dict] = mapped_column(PortableJSON(), nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint(
            "action IN ('delete', 'terminate', 'retire', 'disable', 'archive', "
            "'deactivate', 'purge')",
            name="ck_audit_action",
        ),
        Index("idx_audit_kind_entity", "kind", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_actor", "actor"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent(id={self.audit_id}, kind={self.kind}, "
            f"entity={self.entity_id}, action={self.action})>"
        )
