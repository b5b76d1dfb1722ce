"""Initial governed-entity schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

DELETED_AT_PAIRING = (
    "(deleted AND deleted_at IS NOT NULL) OR (NOT deleted AND deleted_at IS NULL)"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def _soft_delete() -> list[sa.Column]:
    return [
        sa.Column("deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(64), nullable=True),
        sa.Column("deleted_reason", sa.Text, nullable=True),
    ]


def _audit_triple(prefix: str) -> list[sa.Column]:
    return [
        sa.Column(f"{prefix}_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(f"{prefix}_by", sa.String(64), nullable=True),
        sa.Column(f"{prefix}_reason", sa.Text, nullable=True),
    ]


def upgrade() -> None:
    # Users and roles
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_system", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_test_data", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("disabled", sa.Boolean, nullable=False, server_default=sa.false()),
        *_audit_triple("disabled"),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        *_soft_delete(),
        sa.CheckConstraint("NOT (deleted AND disabled)", name="ck_users_deleted_or_disabled"),
        sa.CheckConstraint("NOT (is_system AND deleted)", name="ck_users_system_not_deleted"),
        sa.CheckConstraint(DELETED_AT_PAIRING, name="ck_users_deleted_at_pairing"),
        sa.CheckConstraint(
            "(disabled AND disabled_at IS NOT NULL) OR (NOT disabled AND disabled_at IS NULL)",
            name="ck_users_disabled_at_pairing",
        ),
    )
    op.create_index("idx_users_lifecycle", "users", ["disabled", "deleted"])

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_sessions_user", "user_sessions", ["user_id"])

    op.create_table(
        "roles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_system", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("retired", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        *_audit_triple("retired"),
        sa.CheckConstraint("NOT (is_system AND retired)", name="ck_roles_system_not_retired"),
        sa.CheckConstraint(
            "(retired AND retired_at IS NOT NULL) OR (NOT retired AND retired_at IS NULL)",
            name="ck_roles_retired_at_pairing",
        ),
    )

    # Warehouses
    op.create_table(
        "warehouses",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("manager_id", sa.String(64), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        *_soft_delete(),
        *_audit_triple("retired"),
        sa.CheckConstraint(
            "status IN ('active', 'commissioning', 'offline', 'decommissioned', 'retired')",
            name="ck_warehouses_status",
        ),
        sa.CheckConstraint(
            "NOT (deleted AND status = 'retired')", name="ck_warehouses_deleted_or_retired"
        ),
        sa.CheckConstraint(DELETED_AT_PAIRING, name="ck_warehouses_deleted_at_pairing"),
        sa.CheckConstraint(
            "(status = 'retired') = (retired_at IS NOT NULL)",
            name="ck_warehouses_retired_at_pairing",
        ),
    )
    op.create_index("idx_warehouses_lifecycle", "warehouses", ["status", "deleted", "retired_at"])
    op.create_index("idx_warehouses_manager", "warehouses", ["manager_id"])

    op.create_table(
        "warehouse_zones",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("warehouse_id", sa.String(64), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("zone_code", sa.String(32), nullable=False),
        sa.Column("capacity_pallets", sa.Integer, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("warehouse_id", "zone_code", name="uq_zone_warehouse_code"),
    )
    op.create_index("idx_zones_warehouse", "warehouse_zones", ["warehouse_id"])

    # Customers and their records
    op.create_table(
        "customers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="prospect"),
        sa.Column("is_test_data", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        *_soft_delete(),
        *_audit_triple("retired"),
        sa.CheckConstraint(
            "status IN ('prospect', 'setup', 'active', 'paused', 'terminated')",
            name="ck_customers_status",
        ),
        sa.CheckConstraint(
            "NOT (deleted AND status = 'terminated')", name="ck_customers_deleted_or_terminated"
        ),
        sa.CheckConstraint(DELETED_AT_PAIRING, name="ck_customers_deleted_at_pairing"),
        sa.CheckConstraint(
            "(status = 'terminated') = (retired_at IS NOT NULL)",
            name="ck_customers_retired_at_pairing",
        ),
    )
    op.create_index("idx_customers_lifecycle", "customers", ["status", "deleted", "retired_at"])
    op.create_index("idx_customers_deleted_at", "customers", ["deleted", "deleted_at"])

    op.create_table(
        "warehouse_allocations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("warehouse_id", sa.String(64), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.UniqueConstraint(
            "customer_id", "warehouse_id", name="uq_allocation_customer_warehouse"
        ),
    )
    op.create_index("idx_allocations_customer", "warehouse_allocations", ["customer_id"])
    op.create_index("idx_allocations_warehouse", "warehouse_allocations", ["warehouse_id"])

    op.create_table(
        "facilities",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        *_soft_delete(),
        *_audit_triple("archived"),
        sa.CheckConstraint(
            "NOT (deleted AND archived_at IS NOT NULL)", name="ck_facilities_deleted_or_archived"
        ),
        sa.CheckConstraint(DELETED_AT_PAIRING, name="ck_facilities_deleted_at_pairing"),
    )
    op.create_index("idx_facilities_customer", "facilities", ["customer_id"])

    op.create_table(
        "contacts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_by", sa.String(64), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        *_soft_delete(),
        sa.CheckConstraint(DELETED_AT_PAIRING, name="ck_contacts_deleted_at_pairing"),
    )
    op.create_index("idx_contacts_customer", "contacts", ["customer_id"])

    op.create_table(
        "contact_log",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("contact_id", sa.String(64), sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column(
            "logged_by_user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("contact_type", sa.String(20), nullable=False, server_default="note"),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "contact_type IN ('call', 'email', 'meeting', 'note', 'other')",
            name="ck_contact_log_type",
        ),
    )
    op.create_index("idx_contact_log_customer", "contact_log", ["customer_id"])
    op.create_index("idx_contact_log_contact", "contact_log", ["contact_id"])
    op.create_index("idx_contact_log_user", "contact_log", ["logged_by_user_id"])

    op.create_table(
        "contracts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        *_audit_triple("archived"),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'expired', 'terminated')", name="ck_contracts_status"
        ),
        sa.CheckConstraint(
            "NOT (status = 'active' AND archived_at IS NOT NULL)",
            name="ck_contracts_active_not_archived",
        ),
    )
    op.create_index("idx_contracts_customer", "contracts", ["customer_id"])


def downgrade() -> None:
    op.drop_table("contracts")
    op.drop_table("contact_log")
    op.drop_table("contacts")
    op.drop_table("facilities")
    op.drop_table("warehouse_allocations")
    op.drop_table("customers")
    op.drop_table("warehouse_zones")
    op.drop_table("warehouses")
    op.drop_table("roles")
    op.drop_table("user_sessions")
    op.drop_table("users")
