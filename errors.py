"""Exceptions raised by the FreshCart checkout engine."""


class FreshCartError(Exception):
    """Base exception for all FreshCart errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Unauthenticated(FreshCartError):
    """Raised when an operation needs a signed-in shopper and there is none."""

    def __init__(self, message: str = "Please sign in to continue"):
        super().__init__(message)


class ValidationError(FreshCartError):
    """Raised for bad user input: address fields, coupon codes, quantities."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class StockConflict(FreshCartError):
    """Raised when stock is missing or short at verification or deduction time.

    `deducted` lists the (product_id, quantity_kg) pairs that were already
    deducted before the abort. They are not released automatically.
    """

    def __init__(self, message: str, shortfalls=None, deducted=None):
        self.shortfalls = list(shortfalls or [])
        self.deducted = list(deducted or [])
        super().__init__(message)


class CouponRejected(FreshCartError):
    """Raised when a caller needs a rejected coupon surfaced as an error."""


class NetworkError(FreshCartError):
    """Raised when the store cannot be reached. Safe to retry from the caller."""

    def __init__(self, message: str = "You are offline. Please check your connection."):
        super().__init__(message)


class PersistenceError(FreshCartError):
    """Raised when a write fails.

    When `deducted` is non-empty, stock has been committed without a complete
    order to account for it and an operator has to reconcile it.
    """

    def __init__(self, message: str, order_id: str = None, deducted=None):
        self.order_id = order_id
        self.deducted = list(deducted or [])
        super().__init__(message)


class NotFound(FreshCartError):
    """Raised when an order, cart line or product does not exist."""


class InvalidTransition(FreshCartError):
    """Raised when an order status change is not allowed."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current} to {target}")


class InsufficientWallet(FreshCartError):
    """Raised when the wallet balance cannot cover a debit."""
