"""Database models for Custodian."""

from .account import SYSTEM_ACTOR, Role, User, UserSession
from .audit import AuditAction, AuditEvent
from .base import (
    ArchivedMixin,
    Base,
    RetiredMixin,
    SoftDeleteMixin,
    TimestampMixin,
    new_id,
)
from .customer import (
    Contact,
    ContactLog,
    Contract,
    ContractStatus,
    Customer,
    CustomerStatus,
    Facility,
    WarehouseAllocation,
)
from .warehouse import Warehouse, WarehouseStatus, WarehouseZone

__all__ = [
    "Base",
    "TimestampMixin",
    "SoftDeleteMixin",
    "RetiredMixin",
    "ArchivedMixin",
    "new_id",
    "SYSTEM_ACTOR",
    "User",
    "UserSession",
    "Role",
    "AuditAction",
    "AuditEvent",
    "Customer",
    "CustomerStatus",
    "Contact",
    "ContactLog",
    "Contract",
    "ContractStatus",
    "Facility",
    "WarehouseAllocation",
    "Warehouse",
    "WarehouseStatus",
    "WarehouseZone",
]
