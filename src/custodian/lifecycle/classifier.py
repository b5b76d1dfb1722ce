"""Classifier: decides whether an entity instance may be deleted.

Verdicts are never cached or persisted. Every call reads the current
store state, so classifying twice with no intervening writes yields the
same verdict.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from custodian.core.exceptions import EntityNotFoundError
from custodian.core.logging import get_logger
from custodian.lifecycle.predicates import Facts
from custodian.lifecycle.registry import (
    SAFE_TO_DELETE_REASON,
    EntityDefinition,
    EntityRegistry,
    get_registry,
)
from custodian.lifecycle.types import EntityKind, Verdict

logger = get_logger(__name__)


class Classifier:
    """Evaluates a kind's evidentiary predicates against the store.

    All facts of the kind are collected first so the verdict can report
    them; predicates then run in priority order and the first one that
    resolves decides the verdict.

    Example:
        >>> classifier = Classifier(session)
        >>> verdict = await classifier.classify(EntityKind.CUSTOMER, customer_id)
        >>> verdict.must_preserve, verdict.reason
        (True, 'has contracts')
    """

    def __init__(self, session: AsyncSession, registry: EntityRegistry | None = None):
        self.session = session
        self.registry = registry or get_registry()

    async def classify(self, kind: EntityKind | str, entity_id: str) -> Verdict:
        """Classify one instance.

        Raises:
            LifecycleValidationError: If the kind is not governed
            EntityNotFoundError: If no instance has this id
        """
        definition = self.registry.get(kind)
        entity = await self.session.get(definition.model, entity_id)
        if entity is None:
            raise EntityNotFoundError(definition.kind.value, entity_id)
        return await self.evaluate(definition, entity)

    async def collect_facts(self, definition: EntityDefinition, entity: Any) -> Facts:
        facts: Facts = {}
        for source in definition.facts:
            facts[source.name] = await source.collect(self.session, entity)
        return facts

    async def evaluate(self, definition: EntityDefinition, entity: Any) -> Verdict:
        """Classify an already-loaded instance."""
        facts = await self.collect_facts(definition, entity)

        must_preserve, reason = False, SAFE_TO_DELETE_REASON
        for predicate in definition.predicates:
            outcome = predicate.evaluate(definition, entity, facts)
            if outcome is not None:
                must_preserve, reason = outcome.must_preserve, outcome.reason
                break

        if not must_preserve and definition.is_immutable(entity):
            # Immutable instances are never deletable, whatever the predicates say
            must_preserve = True
            reason = f"{definition.kind.value} cannot be deleted"

        verdict = Verdict(
            kind=definition.kind,
            entity_id=entity.id,
            must_preserve=must_preserve,
            reason=reason,
            facts=list(facts.values()),
            suggested_action=definition.suggested_action,
        )
        logger.debug(
            "entity_classified",
            kind=definition.kind.value,
            entity_id=entity.id,
            must_preserve=must_preserve,
            reason=reason,
        )
        return verdict
