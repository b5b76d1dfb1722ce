"""Warehouse models: our own fulfillment facilities and their zones."""

from enum import Enum
from functools import partial

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, RetiredMixin, SoftDeleteMixin, TimestampMixin, new_id


class WarehouseStatus(str, Enum):
    """Operational status of a warehouse."""

    ACTIVE = "active"
    COMMISSIONING = "commissioning"
    OFFLINE = "offline"
    DECOMMISSIONED = "decommissioned"
    RETIRED = "retired"


class Warehouse(Base, TimestampMixin, SoftDeleteMixin, RetiredMixin):
    """Physical fulfillment facility.

    A warehouse that ever held an allocation or had zones configured is
    retired, never deleted.
    """

    __tablename__ = "warehouses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "wh"))
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WarehouseStatus.ACTIVE.value
    )
    manager_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'commissioning', 'offline', 'decommissioned', 'retired')",
            name="ck_warehouses_status",
        ),
        CheckConstraint(
            "NOT (deleted AND status = 'retired')", name="ck_warehouses_deleted_or_retired"
        ),
        CheckConstraint(
            "(deleted AND deleted_at IS NOT NULL) OR (NOT deleted AND deleted_at IS NULL)",
            name="ck_warehouses_deleted_at_pairing",
        ),
        CheckConstraint(
            "(status = 'retired') = (retired_at IS NOT NULL)",
            name="ck_warehouses_retired_at_pairing",
        ),
        Index("idx_warehouses_lifecycle", "status", "deleted", "retired_at"),
        Index("idx_warehouses_manager", "manager_id"),
    )

    def __repr__(self) -> str:
        return f"<Warehouse(id={self.id}, code={self.code}, status={self.status})>"


class WarehouseZone(Base, TimestampMixin):
    """Zone or bay layout inside a warehouse (planning evidence)."""

    __tablename__ = "warehouse_zones"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "zone"))
    warehouse_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("warehouses.id"), nullable=False
    )
    zone_code: Mapped[str] = mapped_column(String(32), nullable=False)
    capacity_pallets: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("warehouse_id", "zone_code", name="uq_zone_warehouse_code"),
        Index("idx_zones_warehouse", "warehouse_id"),
    )
