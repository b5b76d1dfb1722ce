"""Entity Registry.

The registry is the single place governed entity kinds are declared. Each
``EntityDefinition`` describes a kind's lifecycle capability, the facts
and predicates the Classifier evaluates for it, where its preserve marker
lives, and which dependent rows the purge cascade must remove.

Adding a kind means adding one definition here; the Classifier,
Transition Controller, Constraint Validator and Retention Reaper consume
definitions generically.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any

from sqlalchemy.orm import InstrumentedAttribute

from custodian.core.exceptions import LifecycleValidationError
from custodian.db.models import (
    AuditEvent,
    Contact,
    ContactLog,
    Contract,
    ContractStatus,
    Customer,
    CustomerStatus,
    Facility,
    Role,
    User,
    UserSession,
    Warehouse,
    WarehouseAllocation,
    WarehouseStatus,
    WarehouseZone,
)
from custodian.lifecycle.predicates import (
    AlreadyPreserved,
    CountFact,
    FactSource,
    FlagFact,
    Footprint,
    Immutable,
    InheritParent,
    MarkedAsTestData,
    ParentFlagFact,
    ParentOverride,
    Predicate,
)
from custodian.lifecycle.types import EntityKind, LifecycleAction, Suggestion

SAFE_TO_DELETE_REASON = "no footprint — safe to delete"


@dataclass(frozen=True)
class PreserveLayout:
    """Where a kind keeps its terminal preserve marker.

    Kinds either carry a dedicated marker column (``status`` set to
    ``terminated``, ``disabled`` set to true) or, with ``flag_field`` left
    unset, use the ``*_at`` timestamp itself as the marker.
    """

    label: str
    at_field: str
    by_field: str
    reason_field: str
    flag_field: str | None = None
    flag_value: Any = True

    def is_preserved(self, obj: Any) -> bool:
        if self.flag_field is not None:
            return getattr(obj, self.flag_field) == self.flag_value
        return getattr(obj, self.at_field) is not None

    def apply(self, obj: Any, actor: str, reason: str | None, now: datetime) -> None:
        if self.flag_field is not None:
            setattr(obj, self.flag_field, self.flag_value)
        setattr(obj, self.at_field, now)
        setattr(obj, self.by_field, actor)
        setattr(obj, self.reason_field, reason)

    def payload(self, reason: str | None) -> dict[str, Any]:
        """Prefilled request body for the preserve call."""
        if self.flag_field is not None:
            body: dict[str, Any] = {self.flag_field: self.flag_value}
        else:
            body = {self.label: True}
        if reason:
            body["reason"] = reason
        return body


@dataclass(frozen=True)
class DeactivationLayout:
    """Reversible ``active`` toggle used instead of a preserve marker."""

    active_field: str = "active"
    at_field: str = "deactivated_at"
    by_field: str = "deactivated_by"


@dataclass(frozen=True)
class ChildRelation:
    """Dependent rows removed with their parent at purge time.

    ``kind`` is set when the child is itself a governed kind; a preserved
    or immutable governed child blocks the parent's purge. A ``detach``
    relation keeps the row and clears its reference instead; such rows do
    not belong to the parent and stay visible when it is soft-deleted.
    """

    foreign_key: InstrumentedAttribute
    kind: EntityKind | None = None
    detach: bool = False

    @property
    def model(self) -> type:
        return self.foreign_key.class_

    @property
    def table_name(self) -> str:
        return self.model.__tablename__


@dataclass(frozen=True)
class TransitionGuard:
    """Refuses a preserve transition while ``check`` holds."""

    check: Callable[[Any], bool]
    message: str
    field: str = "status"


@dataclass(frozen=True)
class EntityDefinition:
    """Static lifecycle description of one governed entity kind."""

    kind: EntityKind
    model: type
    deletable: bool
    suggested_action: LifecycleAction
    min_reason_length: int = 0
    preserve: PreserveLayout | None = None
    deactivation: DeactivationLayout | None = None
    facts: tuple[FactSource, ...] = ()
    predicates: tuple[Predicate, ...] = ()
    children: tuple[ChildRelation, ...] = ()
    preserve_guards: tuple[TransitionGuard, ...] = ()
    immutable_when: Callable[[Any], bool] | None = None
    default_preserve_reason: str | None = None
    """Prefilled preserve reason when the caller gave none."""

    @property
    def preserve_verb(self) -> LifecycleAction:
        return self.suggested_action

    def is_preserved(self, obj: Any) -> bool:
        return self.preserve is not None and self.preserve.is_preserved(obj)

    def is_immutable(self, obj: Any) -> bool:
        """Whether the instance may never carry ``deleted = true``."""
        if not self.deletable:
            return True
        return self.immutable_when is not None and bool(self.immutable_when(obj))

    def suggestion(self, reason: str | None = None) -> Suggestion:
        """Guidance returned with a rejected delete.

        ``reason`` is the caller's own delete reason, carried over into the
        prefilled preserve payload.
        """
        if self.preserve is None:
            return Suggestion(
                action=self.suggested_action,
                operation="deactivate",
                reason_field_required=False,
                min_reason_length=0,
                payload={"active": False},
            )
        return Suggestion(
            action=self.suggested_action,
            operation="preserve",
            reason_field_required=self.min_reason_length > 0,
            min_reason_length=self.min_reason_length,
            payload=self.preserve.payload(reason or self.default_preserve_reason),
        )


class EntityRegistry:
    """Lookup table of entity definitions, in purge scan order."""

    def __init__(self, definitions: list[EntityDefinition] | None = None):
        self._definitions: dict[EntityKind, EntityDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: EntityDefinition) -> None:
        if definition.kind in self._definitions:
            raise ValueError(f"Entity kind already registered: {definition.kind.value}")
        self._definitions[definition.kind] = definition

    def get(self, kind: EntityKind | str) -> EntityDefinition:
        """Get a kind's definition.

        Raises:
            LifecycleValidationError: If the kind is not governed
        """
        try:
            return self._definitions[EntityKind(kind)]
        except (ValueError, KeyError):
            raise LifecycleValidationError(
                field="kind", message=f"unknown entity kind: {kind}"
            ) from None

    def for_model(self, model: type) -> EntityDefinition | None:
        for definition in self._definitions.values():
            if definition.model is model:
                return definition
        return None

    def purge_sequence(self) -> list[EntityDefinition]:
        """Deletable kinds in registration order (leaf kinds first)."""
        return [d for d in self._definitions.values() if d.deletable]

    def __iter__(self):
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, kind: object) -> bool:
        return kind in self._definitions


# =============================================================================
# Default definitions
# =============================================================================

_PARENT_FACTS = (
    ParentFlagFact("parent_deleted", "customer_id", Customer.deleted),
    ParentFlagFact("parent_is_test_data", "customer_id", Customer.is_test_data),
)


def _contact() -> EntityDefinition:
    return EntityDefinition(
        kind=EntityKind.CONTACT,
        model=Contact,
        deletable=True,
        suggested_action=LifecycleAction.DEACTIVATE,
        deactivation=DeactivationLayout(),
        facts=(*_PARENT_FACTS, CountFact("communication_log", ContactLog.contact_id)),
        predicates=(
            ParentOverride(),
            Footprint("communication_log", "has communication history"),
        ),
        children=(ChildRelation(ContactLog.contact_id),),
    )


def _facility() -> EntityDefinition:
    return EntityDefinition(
        kind=EntityKind.FACILITY,
        model=Facility,
        deletable=True,
        suggested_action=LifecycleAction.ARCHIVE,
        min_reason_length=10,
        preserve=PreserveLayout(
            label="archived",
            at_field="archived_at",
            by_field="archived_by",
            reason_field="archived_reason",
        ),
        facts=_PARENT_FACTS,
        predicates=(AlreadyPreserved(), ParentOverride(), InheritParent()),
    )


def _customer() -> EntityDefinition:
    return EntityDefinition(
        kind=EntityKind.CUSTOMER,
        model=Customer,
        deletable=True,
        suggested_action=LifecycleAction.TERMINATE,
        min_reason_length=10,
        preserve=PreserveLayout(
            label="terminated",
            at_field="retired_at",
            by_field="retired_by",
            reason_field="retired_reason",
            flag_field="status",
            flag_value=CustomerStatus.TERMINATED.value,
        ),
        default_preserve_reason="Customer relationship ended",
        facts=(
            FlagFact("is_test_data", "is_test_data"),
            CountFact("warehouse_allocations", WarehouseAllocation.customer_id),
            CountFact("contracts", Contract.customer_id),
            CountFact("communication_log", ContactLog.customer_id),
            CountFact("facilities", Facility.customer_id),
        ),
        predicates=(
            AlreadyPreserved(),
            MarkedAsTestData(),
            Footprint("warehouse_allocations", "has warehouse allocations"),
            Footprint("contracts", "has contracts"),
            Footprint("communication_log", "has communication history"),
            Footprint("facilities", "has facilities configured"),
        ),
        children=(
            ChildRelation(ContactLog.customer_id),
            ChildRelation(Contact.customer_id, EntityKind.CONTACT),
            ChildRelation(Facility.customer_id, EntityKind.FACILITY),
            ChildRelation(WarehouseAllocation.customer_id),
            ChildRelation(Contract.customer_id, EntityKind.CONTRACT),
        ),
    )


def _warehouse() -> EntityDefinition:
    return EntityDefinition(
        kind=EntityKind.WAREHOUSE,
        model=Warehouse,
        deletable=True,
        suggested_action=LifecycleAction.RETIRE,
        min_reason_length=10,
        preserve=PreserveLayout(
            label="retired",
            at_field="retired_at",
            by_field="retired_by",
            reason_field="retired_reason",
            flag_field="status",
            flag_value=WarehouseStatus.RETIRED.value,
        ),
        default_preserve_reason="Warehouse no longer in use",
        facts=(
            CountFact("allocations", WarehouseAllocation.warehouse_id),
            CountFact("zones", WarehouseZone.warehouse_id),
        ),
        predicates=(
            AlreadyPreserved(),
            Footprint("allocations", "has allocation history"),
            Footprint("zones", "has zones configured"),
        ),
        children=(
            ChildRelation(WarehouseZone.warehouse_id),
            ChildRelation(WarehouseAllocation.warehouse_id),
        ),
    )


def _user() -> EntityDefinition:
    return EntityDefinition(
        kind=EntityKind.USER,
        model=User,
        deletable=True,
        suggested_action=LifecycleAction.DISABLE,
        preserve=PreserveLayout(
            label="disabled",
            at_field="disabled_at",
            by_field="disabled_by",
            reason_field="disabled_reason",
            flag_field="disabled",
        ),
        facts=(
            FlagFact("is_system", "is_system"),
            FlagFact("is_test_data", "is_test_data"),
            CountFact("sessions", UserSession.user_id),
            CountFact("communication_log", ContactLog.logged_by_user_id),
            CountFact("managed_warehouses", Warehouse.manager_id),
            CountFact("lifecycle_actions", AuditEvent.actor),
        ),
        predicates=(
            AlreadyPreserved(),
            Immutable(lambda user: user.is_system, "system user cannot be deleted"),
            MarkedAsTestData(),
            Footprint("sessions", "has authenticated"),
            Footprint("communication_log", "has logged communications"),
            Footprint("managed_warehouses", "manages warehouses"),
            Footprint("lifecycle_actions", "has performed lifecycle actions (audit trail)"),
        ),
        children=(
            ChildRelation(UserSession.user_id),
            ChildRelation(ContactLog.logged_by_user_id),
            ChildRelation(Warehouse.manager_id, detach=True),
        ),
        preserve_guards=(
            TransitionGuard(
                lambda user: user.is_system, "the system user cannot be disabled", "disabled"
            ),
        ),
        immutable_when=lambda user: user.is_system,
    )


def _contract() -> EntityDefinition:
    return EntityDefinition(
        kind=EntityKind.CONTRACT,
        model=Contract,
        deletable=False,
        suggested_action=LifecycleAction.ARCHIVE,
        min_reason_length=10,
        preserve=PreserveLayout(
            label="archived",
            at_field="archived_at",
            by_field="archived_by",
            reason_field="archived_reason",
        ),
        predicates=(
            Immutable(
                lambda contract: contract.status == ContractStatus.ACTIVE.value,
                "active contract - cannot delete or archive (legal document)",
            ),
            AlreadyPreserved(),
            Immutable(
                lambda contract: True,
                "contracts are never deleted - archive instead (legal requirement)",
            ),
        ),
        preserve_guards=(
            TransitionGuard(
                lambda contract: contract.status == ContractStatus.ACTIVE.value,
                "active contracts cannot be archived; terminate or expire the contract first",
            ),
        ),
    )


def _role() -> EntityDefinition:
    return EntityDefinition(
        kind=EntityKind.ROLE,
        model=Role,
        deletable=False,
        suggested_action=LifecycleAction.RETIRE,
        min_reason_length=10,
        preserve=PreserveLayout(
            label="retired",
            at_field="retired_at",
            by_field="retired_by",
            reason_field="retired_reason",
            flag_field="retired",
        ),
        predicates=(
            Immutable(lambda role: role.is_system, "system roles cannot be deleted"),
            AlreadyPreserved(),
            Immutable(lambda role: True, "roles are never deleted - retire instead"),
        ),
        preserve_guards=(
            TransitionGuard(lambda role: role.is_system, "system roles cannot be retired"),
        ),
    )


def build_default_registry() -> EntityRegistry:
    """Build the registry of every governed kind.

    Registration order is the purge scan order: children before parents,
    so a dry run and the live run that follows see the same candidates.
    """
    return EntityRegistry(
        [_contact(), _facility(), _customer(), _warehouse(), _user(), _contract(), _role()]
    )


@lru_cache
def get_registry() -> EntityRegistry:
    """Get the process-wide default registry."""
    return build_default_registry()
