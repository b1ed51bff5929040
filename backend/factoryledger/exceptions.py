"""Domain exceptions raised by the inventory and production core.

Every exception carries an HTTP status and a stable error code so the
handlers in ``factoryledger.middleware.exceptions`` can render them without
knowing the individual types.  The core never swallows these: they
propagate to the caller, and the request session rolls back.
"""

from decimal import Decimal

from fastapi import status


class FactoryLedgerException(Exception):
    """Base exception for FactoryLedger application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class InvalidInputError(FactoryLedgerException):
    """Malformed or missing input (bad quantity, empty item list, ...)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            details=details,
        )


class InvalidTransitionError(FactoryLedgerException):
    """Batch state machine guard violated; the batch is left untouched."""

    def __init__(self, batch_ref: str, current_status: str, action: str):
        self.batch_ref = batch_ref
        self.current_status = current_status
        self.action = action
        super().__init__(
            message=f"Cannot {action} batch {batch_ref} from status '{current_status}'",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_TRANSITION",
            details={"batch": batch_ref, "status": current_status, "action": action},
        )


class InsufficientStockError(FactoryLedgerException):
    """A stock account would go negative."""

    def __init__(
        self,
        account_id: str,
        requested: Decimal,
        available: Decimal,
        account_name: str | None = None,
    ):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        label = account_name or account_id
        super().__init__(
            message=(
                f"Insufficient stock for {label}: requested {requested}, "
                f"available {available}"
            ),
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INSUFFICIENT_STOCK",
            details={
                "account_id": account_id,
                "requested": str(requested),
                "available": str(available),
            },
        )


class InsufficientLotsError(FactoryLedgerException):
    """Aggregate lot supply cannot satisfy a consumption request."""

    def __init__(self, material_id: str, requested: Decimal, available: Decimal):
        self.material_id = material_id
        self.requested = requested
        self.available = available
        super().__init__(
            message=(
                f"Insufficient lot supply for material {material_id}: "
                f"requested {requested}, available {available}"
            ),
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INSUFFICIENT_LOTS",
            details={
                "material_id": material_id,
                "requested": str(requested),
                "available": str(available),
            },
        )


class ConcurrencyConflictError(FactoryLedgerException):
    """Optimistic check lost under contention; retry the whole operation."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} {identifier} was modified concurrently, please retry",
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONCURRENCY_CONFLICT",
            details={"resource": resource, "id": identifier},
        )


class ResourceNotFoundError(FactoryLedgerException):
    """Referenced account, batch, or lot does not exist."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )
