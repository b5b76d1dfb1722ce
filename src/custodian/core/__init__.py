"""Core services and utilities for Custodian."""

from .audit import AuditLogger
from .exceptions import (
    ConflictError,
    EntityNotFoundError,
    InvariantViolationError,
    LifecycleValidationError,
    PurgeCycleInProgressError,
    TransactionFailureError,
)
from .logging import LogContext, get_logger, log_exception, log_transition, setup_logging

__all__ = [
    # Audit
    "AuditLogger",
    # Exceptions
    "ConflictError",
    "EntityNotFoundError",
    "InvariantViolationError",
    "LifecycleValidationError",
    "PurgeCycleInProgressError",
    "TransactionFailureError",
    # Logging
    "LogContext",
    "get_logger",
    "log_exception",
    "log_transition",
    "setup_logging",
]
