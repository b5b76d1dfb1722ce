"""Read-path visibility filters.

Soft-deleting a parent never touches its children. Any reader that lists
governed rows or their dependents applies these filters itself: the
engine exposes no listing API of its own.

Example:
    >>> stmt = select(Contact).where(Contact.customer_id == customer_id)
    >>> stmt = exclude_orphans(exclude_deleted(stmt, Contact), Contact)
"""

from typing import TypeVar

from sqlalchemy import Select, exists

from custodian.lifecycle.registry import (
    ChildRelation,
    EntityDefinition,
    EntityRegistry,
    get_registry,
)

S = TypeVar("S", bound=Select)


def exclude_deleted(stmt: S, model: type) -> S:
    """Hide soft-deleted rows of ``model``."""
    return stmt.where(model.deleted.is_(False))


def parent_relations(
    child_model: type, registry: EntityRegistry | None = None
) -> list[tuple[EntityDefinition, ChildRelation]]:
    """Every governed parent kind that owns rows of ``child_model``."""
    registry = registry or get_registry()
    return [
        (definition, relation)
        for definition in registry
        for relation in definition.children
        if relation.model is child_model and not relation.detach
    ]


def exclude_orphans(stmt: S, child_model: type, registry: EntityRegistry | None = None) -> S:
    """Hide rows of ``child_model`` whose parent is soft-deleted.

    Rows with a null parent reference stay visible.
    """
    for definition, relation in parent_relations(child_model, registry):
        parent = definition.model
        if not hasattr(parent, "deleted"):
            continue
        stmt = stmt.where(
            ~exists().where(parent.id == relation.foreign_key, parent.deleted.is_(True))
        )
    return stmt
