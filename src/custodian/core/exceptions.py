"""Core exceptions for lifecycle transitions and retention purges."""

from typing import Any

from custodian.utils.exceptions import CustodianError


class EntityNotFoundError(CustodianError):
    """Raised when a governed entity does not exist.

    Attributes:
        kind: The entity kind that was looked up (e.g., "warehouse")
        entity_id: The identifier that was not found
    """

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id

    def __str__(self) -> str:
        return f"EntityNotFoundError: {self.args[0]}"


class ConflictError(CustodianError):
    """Raised when a concurrent transition on the same entity won the race.

    The losing caller should re-classify and retry; the operation is
    idempotent because classification always reads current state.

    Attributes:
        kind: The entity kind
        entity_id: The contested entity
    """

    def __init__(self, kind: str, entity_id: str, message: str | None = None):
        super().__init__(message or f"Concurrent transition on {kind} {entity_id}")
        self.kind = kind
        self.entity_id = entity_id

    def __str__(self) -> str:
        return f"ConflictError: {self.args[0]}"


class LifecycleValidationError(CustodianError):
    """Raised when a requested transition is not permitted.

    Covers reasons that are too short, targets that are already preserved or
    deleted, and actions the entity kind does not support.

    Attributes:
        field: The input field the caller should highlight
        message: Human-readable explanation
        kind: The entity kind
        entity_id: The entity the transition targeted
    """

    def __init__(
        self,
        field: str,
        message: str,
        kind: str | None = None,
        entity_id: str | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.message = message
        self.kind = kind
        self.entity_id = entity_id

    def __str__(self) -> str:
        return f"LifecycleValidationError({self.field}): {self.message}"

    def to_payload(self) -> dict[str, Any]:
        """Render the error as a form-friendly payload."""
        return {"field": self.field, "message": self.message}


class InvariantViolationError(CustodianError):
    """Raised at flush time when a lifecycle state would become illegal.

    Attributes:
        kind: The entity kind
        entity_id: The offending entity
    """

    def __init__(self, kind: str, entity_id: str | None, message: str):
        super().__init__(message)
        self.kind = kind
        self.entity_id = entity_id

    def __str__(self) -> str:
        return f"InvariantViolationError({self.kind} {self.entity_id}): {self.args[0]}"


class TransactionFailureError(CustodianError):
    """Raised when a purge cascade transaction aborts or times out.

    Attributes:
        kind: The entity kind being purged
        entity_id: The parent instance whose cascade failed
    """

    def __init__(self, kind: str, entity_id: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.entity_id = entity_id

    def __str__(self) -> str:
        return f"TransactionFailureError({self.kind} {self.entity_id}): {self.args[0]}"


class PurgeCycleInProgressError(CustodianError):
    """Raised when a purge cycle is requested while another is running."""

    def __init__(self, message: str = "A purge cycle is already running"):
        super().__init__(message)
