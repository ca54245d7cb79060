"""Exception hierarchy shared by the ledgers, the ordering engine and the stores.

Routers never build error responses themselves; the application registers one
handler per exception type (see ``app.py``) so every endpoint maps failures to
the same status codes.
"""

from __future__ import annotations

from typing import Any, Dict


class NotFoundError(Exception):
    """A referenced session, customer, roadmap or milestone does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" '{resource_id}'"
        msg += " not found"
        super().__init__(msg)

    @property
    def details(self) -> Dict[str, Any]:
        return {"resource": self.resource, "resource_id": self.resource_id}


class ValidationError(Exception):
    """Input was well-formed JSON but broke a business rule.

    Raised before any mutation happens. ``details`` carries field-level
    context (e.g. the milestone id and bucket of a rejected reorder entry).
    """

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, details: Dict[str, Any] | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class UnknownStageError(ValidationError):
    """A stage identifier matched no canonical stage and no legacy alias."""

    code = "unknown_stage"

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"Unknown stage '{stage}'", details={"stage": stage})


class ConflictError(Exception):
    """Creation would duplicate an existing, non-idempotent record."""

    status_code = 409
    code = "conflict"

    def __init__(self, resource: str, field: str, value: Any = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")

    @property
    def details(self) -> Dict[str, Any]:
        return {"resource": self.resource, "field": self.field, "value": self.value}


class PersistenceError(Exception):
    """The durable store failed or aborted a transaction.

    Always surfaced to the caller; the core never retries.
    """

    status_code = 500
    code = "persistence_failure"

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        msg = f"Persistence failure during {operation}"
        if cause is not None:
            msg += f": {cause.__class__.__name__}"
        super().__init__(msg)

    @property
    def details(self) -> Dict[str, Any]:
        return {"operation": self.operation}


DOMAIN_ERRORS = (NotFoundError, ValidationError, ConflictError, PersistenceError)
