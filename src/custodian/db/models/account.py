"""Account models: users, their sessions, and roles."""

from datetime import datetime
from functools import partial

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, RetiredMixin, SoftDeleteMixin, TimestampMixin, new_id

SYSTEM_ACTOR = "system"
"""Actor recorded for engine-initiated transitions and the reserved system user id."""


class User(Base, TimestampMixin, SoftDeleteMixin):
    """Back-office user account.

    Test accounts with no activity are deleted; real users are disabled.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "user"))
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_test_data: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    disabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disabled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    disabled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("NOT (deleted AND disabled)", name="ck_users_deleted_or_disabled"),
        CheckConstraint("NOT (is_system AND deleted)", name="ck_users_system_not_deleted"),
        CheckConstraint(
            "(deleted AND deleted_at IS NOT NULL) OR (NOT deleted AND deleted_at IS NULL)",
            name="ck_users_deleted_at_pairing",
        ),
        CheckConstraint(
            "(disabled AND disabled_at IS NOT NULL) OR (NOT disabled AND disabled_at IS NULL)",
            name="ck_users_disabled_at_pairing",
        ),
        Index("idx_users_lifecycle", "disabled", "deleted"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, disabled={self.disabled}, deleted={self.deleted})>"


class UserSession(Base):
    """Authentication session. Any session means the user ever logged in."""

    __tablename__ = "user_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "sess"))
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_sessions_user", "user_id"),)


class Role(Base, TimestampMixin, RetiredMixin):
    """Access-control role. Roles only retire, never delete."""

    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "role"))
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    retired: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("NOT (is_system AND retired)", name="ck_roles_system_not_retired"),
        CheckConstraint(
            "(retired AND retired_at IS NOT NULL) OR (NOT retired AND retired_at IS NULL)",
            name="ck_roles_retired_at_pairing",
        ),
    )
