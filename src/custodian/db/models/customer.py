"""Customer-side models: customers and the records hanging off them."""

from datetime import datetime
from enum import Enum
from functools import partial

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import ArchivedMixin, Base, RetiredMixin, SoftDeleteMixin, TimestampMixin, new_id


class CustomerStatus(str, Enum):
    """Customer relationship status."""

    PROSPECT = "prospect"
    SETUP = "setup"
    ACTIVE = "active"
    PAUSED = "paused"
    TERMINATED = "terminated"


class ContractStatus(str, Enum):
    """Contract status. Only non-active contracts may be archived."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


class Customer(Base, TimestampMixin, SoftDeleteMixin, RetiredMixin):
    """Client company.

    Terminated customers are preserved forever; test or abandoned customers
    with no footprint may be soft-deleted and later purged.
    """

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "cust"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CustomerStatus.PROSPECT.value
    )
    is_test_data: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('prospect', 'setup', 'active', 'paused', 'terminated')",
            name="ck_customers_status",
        ),
        CheckConstraint(
            "NOT (deleted AND status = 'terminated')", name="ck_customers_deleted_or_terminated"
        ),
        CheckConstraint(
            "(deleted AND deleted_at IS NOT NULL) OR (NOT deleted AND deleted_at IS NULL)",
            name="ck_customers_deleted_at_pairing",
        ),
        CheckConstraint(
            "(status = 'terminated') = (retired_at IS NOT NULL)",
            name="ck_customers_retired_at_pairing",
        ),
        Index("idx_customers_lifecycle", "status", "deleted", "retired_at"),
        Index("idx_customers_deleted_at", "deleted", "deleted_at"),
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, status={self.status}, deleted={self.deleted})>"


class WarehouseAllocation(Base, TimestampMixin):
    """Customer space allocated at one of our warehouses (operational footprint)."""

    __tablename__ = "warehouse_allocations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "alloc"))
    customer_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("customers.id"), nullable=False
    )
    warehouse_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("warehouses.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    __table_args__ = (
        UniqueConstraint("customer_id", "warehouse_id", name="uq_allocation_customer_warehouse"),
        Index("idx_allocations_customer", "customer_id"),
        Index("idx_allocations_warehouse", "warehouse_id"),
    )


class Facility(Base, TimestampMixin, SoftDeleteMixin, ArchivedMixin):
    """Customer-owned building tracked for supply chain planning."""

    __tablename__ = "facilities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "fac"))
    customer_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("customers.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "NOT (deleted AND archived_at IS NOT NULL)", name="ck_facilities_deleted_or_archived"
        ),
        CheckConstraint(
            "(deleted AND deleted_at IS NOT NULL) OR (NOT deleted AND deleted_at IS NULL)",
            name="ck_facilities_deleted_at_pairing",
        ),
        Index("idx_facilities_customer", "customer_id"),
    )


class Contact(Base, TimestampMixin, SoftDeleteMixin):
    """Client team member.

    Contacts with communication history are deactivated rather than
    preserved; ``active`` is a reversible toggle.
    """

    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=partial(new_id, "contact")
    )
    customer_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("customers.id"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "(deleted AND deleted_at IS NOT NULL) OR (NOT deleted AND deleted_at IS NULL)",
            name="ck_contacts_deleted_at_pairing",
        ),
        Index("idx_contacts_customer", "customer_id"),
    )


class ContactLog(Base, TimestampMixin):
    """Communication history entry (relationship evidence)."""

    __tablename__ = "contact_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=partial(new_id, "log"))
    customer_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("customers.id"), nullable=False
    )
    contact_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("contacts.id"), nullable=True
    )
    logged_by_user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=False
    )
    contact_type: Mapped[str] = mapped_column(String(20), nullable=False, default="note")
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "contact_type IN ('call', 'email', 'meeting', 'note', 'other')",
            name="ck_contact_log_type",
        ),
        Index("idx_contact_log_customer", "customer_id"),
        Index("idx_contact_log_contact", "contact_id"),
        Index("idx_contact_log_user", "logged_by_user_id"),
    )


class Contract(Base, TimestampMixin, ArchivedMixin):
    """Pricing agreement. A legal document: never deleted, only archived."""

    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=partial(new_id, "contract")
    )
    customer_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("customers.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContractStatus.DRAFT.value
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'expired', 'terminated')", name="ck_contracts_status"
        ),
        CheckConstraint(
            "NOT (status = 'active' AND archived_at IS NOT NULL)",
            name="ck_contracts_active_not_archived",
        ),
        Index("idx_contracts_customer", "customer_id"),
    )
