"""Evidentiary lifecycle engine.

Components, leaf-first:
- Entity Registry: static per-kind lifecycle descriptions
- Classifier: safe-to-delete or must-preserve verdicts
- Transition Controller: delete, preserve and deactivate transitions
- Constraint Validator: flush-time lifecycle invariants
"""

from .classifier import Classifier
from .constraints import install_constraint_validator, validate_lifecycle_state
from .controller import ControllerConfig, TransitionController
from .registry import (
    SAFE_TO_DELETE_REASON,
    ChildRelation,
    DeactivationLayout,
    EntityDefinition,
    EntityRegistry,
    PreserveLayout,
    TransitionGuard,
    build_default_registry,
    get_registry,
)
from .types import (
    EntityKind,
    EvidentiaryFact,
    LifecycleAction,
    Rejection,
    Suggestion,
    TransitionResult,
    TransitionStatus,
    Verdict,
)

__all__ = [
    # Types
    "EntityKind",
    "EvidentiaryFact",
    "LifecycleAction",
    "Rejection",
    "Suggestion",
    "TransitionResult",
    "TransitionStatus",
    "Verdict",
    # Registry
    "SAFE_TO_DELETE_REASON",
    "ChildRelation",
    "DeactivationLayout",
    "EntityDefinition",
    "EntityRegistry",
    "PreserveLayout",
    "TransitionGuard",
    "build_default_registry",
    "get_registry",
    # Classifier / Controller
    "Classifier",
    "ControllerConfig",
    "TransitionController",
    # Constraints
    "install_constraint_validator",
    "validate_lifecycle_state",
]
