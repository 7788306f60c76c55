"""Custom exception classes for the application."""


class BaseAppException(Exception):
    """Base exception class for all application exceptions."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(BaseAppException):
    """Raised when there's a configuration error."""
    pass


class IdentityValidationError(BaseAppException):
    """Raised when the caller identity headers are missing or forged."""
    pass


class LedgerError(BaseAppException):
    """Base class for failures returned by ledger and catalog operations.

    ``code`` is the stable identifier used on the wire so that remote
    callers can map a response back to the same exception type.
    """

    code = "LedgerError"

    def to_dict(self) -> dict:
        """Convert to the JSON error body."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class ProductNotFoundError(LedgerError):
    """Raised when a product does not exist or belongs to another account."""
    code = "ProductNotFound"


class InvalidQuantityError(LedgerError):
    """Raised when a movement quantity is zero, negative or not an integer."""
    code = "InvalidQuantity"


class InvalidMovementTypeError(LedgerError):
    """Raised when a movement type is neither entry nor exit."""
    code = "InvalidMovementType"


class InsufficientStockError(LedgerError):
    """Raised when an exit requests more units than are on hand."""
    code = "InsufficientStock"


class InvalidProductError(LedgerError):
    """Raised when product attributes fail validation."""
    code = "InvalidProduct"


class PersistenceError(LedgerError):
    """Raised when the store could not complete a read or write."""
    code = "PersistenceFailure"


class ConcurrentUpdateError(PersistenceError):
    """Raised when another writer changed a product mid-transaction."""
    code = "ConcurrentUpdate"


class LedgerAPIError(BaseAppException):
    """Raised when the remote ledger API returns an unexpected response."""

    def __init__(self, message: str, details: dict = None, status_code: int = None):
        super().__init__(message, details)
        self.status_code = status_code


# Wire code -> exception class, used by the HTTP client.
ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        ProductNotFoundError,
        InvalidQuantityError,
        InvalidMovementTypeError,
        InsufficientStockError,
        InvalidProductError,
        PersistenceError,
        ConcurrentUpdateError,
    )
}
