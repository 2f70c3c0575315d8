"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``firesafe.utils.errors.register_error_handlers``) and get consistent
HTTP status codes everywhere.

Taxonomy:
    AuthenticationError    401  no identity supplied
    PermissionDeniedError  403  role not allowed for the operation
    NotFoundError          404  missing entity
    ConflictError          409  state-machine precondition violated
    ValidationError        422  missing / invalid field or business rule
    TransactionError       500  the atomic unit was aborted by the store

Usage:
    from firesafe.core.exceptions import ConflictError, NotFoundError

    raise NotFoundError(resource="Project", resource_id=42)
    raise ConflictError("Project must be PENDING to approve",
                        resource="Project", current_status="ACTIVE")
"""


class AuthenticationError(Exception):
    """Raised when a request carries no resolvable identity."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class PermissionDeniedError(Exception):
    """Raised when the actor's role may not perform the operation.

    Args:
        message: Human-readable explanation.
        role: The actor's role, for logs.
    """

    def __init__(self, message: str, role: str | None = None) -> None:
        self.role = role
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "WorkOrder").
        resource_id: The PK that was looked up. Included in the message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but fails a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an entity is not in the state an operation requires.

    The second caller of a one-shot transition (approve twice, verify an
    already-paid work order) always lands here. Maps to HTTP 409.

    Args:
        message: Human-readable explanation.
        resource: Model name.
        current_status: The status observed when the precondition failed.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        current_status: str | None = None,
    ) -> None:
        self.resource = resource
        self.current_status = current_status
        super().__init__(message)


class WorkIncompleteError(ConflictError):
    """Contract end-signature refused: some work orders are not COMPLETED."""

    code = "ERR_WORK_INCOMPLETE"

    def __init__(self, incomplete_ids: list[int]) -> None:
        self.work_order_ids = incomplete_ids
        super().__init__(
            f"Not all work orders are completed ({len(incomplete_ids)} outstanding)",
            resource="Contract",
        )


class WorkUnpaidError(ConflictError):
    """Contract end-signature refused: some work orders are not PAID."""

    code = "ERR_WORK_UNPAID"

    def __init__(self, unpaid_ids: list[int]) -> None:
        self.work_order_ids = unpaid_ids
        super().__init__(
            f"Not all work orders are paid ({len(unpaid_ids)} unpaid)",
            resource="Contract",
        )


class TransactionError(Exception):
    """Raised when the store aborts an atomic unit of work.

    Wraps the underlying SQLAlchemy error; nothing from the unit was committed.
    """

    def __init__(self, message: str = "Transaction aborted", cause: Exception | None = None) -> None:
        self.cause = cause
        super().__init__(message)
