from typing import Optional

from core.retry import RetryableError, NonRetryableError


class FleetDomainError(NonRetryableError):
    """Base class for business errors surfaced to the caller as-is."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

class ValidationError(FleetDomainError):
    """Raised when input is malformed or violates a field rule."""

class NotFoundError(FleetDomainError):
    """Raised when a vehicle, block or driver does not exist."""

class ConflictError(FleetDomainError):
    """Raised when a request violates a business rule on existing state."""

class BlockOverlapError(ConflictError):
    """Raised when the requested interval intersects an active block of the same vehicle."""

class DuplicatePlateError(ConflictError):
    """Raised when the plate number is already registered."""

class BlockAlreadyCompletedError(ConflictError):
    """Raised when completing or editing a block that is already completed."""

class VehicleInUseError(ConflictError):
    """Raised when a vehicle is assigned or blocked and the operation needs it free."""


class StoreError(RetryableError):
    """Base class for failures of the underlying store itself."""

class TransientStoreError(StoreError):
    """Raised when a store call failed for infrastructure reasons (connection, timeout)."""

class ProcedureUnavailableError(StoreError):
    """Raised when a server-side procedure is not installed or cannot be invoked."""
