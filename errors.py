"""Exceptions raised by the storefront core."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class NotFoundError(StorefrontError):
    """Raised when a product, cart, cart item, order or user does not exist."""

    def __init__(self, resource: str, identifier: str | None = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")


class ValidationFailed(StorefrontError):
    """Raised when a request carries a value the core cannot accept."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class EmptyCartError(StorefrontError):
    """Raised when checkout is attempted without any cart items."""

    def __init__(self):
        super().__init__("Cart is empty")


class CartConflictError(StorefrontError):
    """Raised when a cart write keeps losing to concurrent writers."""

    def __init__(self, user_id: str, attempts: int):
        self.user_id = user_id
        self.attempts = attempts
        super().__init__(f"Cart was modified concurrently; gave up after {attempts} attempts")
