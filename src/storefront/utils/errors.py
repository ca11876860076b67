"""Error taxonomy for the storefront.

Every error carries a human-readable message and a stable ``ErrorKind`` so
programmatic clients do not have to parse messages.
"""

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    INTERNAL = "internal"


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StorefrontError):
    """Raised when request input is missing or invalid."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(StorefrontError):
    """Raised when a product, variant, cart line, order or address doesn't exist."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404


class InsufficientStockError(StorefrontError):
    """Raised when a requested quantity exceeds the available stock."""

    kind = ErrorKind.INSUFFICIENT_STOCK
    status_code = 400

    def __init__(
        self,
        message: str = "Insufficient stock available",
        available: int | None = None,
    ):
        self.available = available
        super().__init__(message)


class ConflictError(StorefrontError):
    """Raised when creating something that already exists (email, review, wishlist entry)."""

    kind = ErrorKind.CONFLICT
    status_code = 400


class AuthenticationError(StorefrontError):
    """Raised when a route requires a valid bearer token and none was given."""

    kind = ErrorKind.UNAUTHORIZED
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDeniedError(StorefrontError):
    """Raised when the caller acts on behalf of another identity."""

    kind = ErrorKind.FORBIDDEN
    status_code = 403

    def __init__(self, message: str = "Not allowed"):
        super().__init__(message)


class InternalError(StorefrontError):
    """Raised for unexpected failures, including data-store errors."""

    kind = ErrorKind.INTERNAL
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
