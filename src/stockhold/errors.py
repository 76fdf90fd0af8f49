"""Custom exceptions for stockhold."""


class StockholdError(Exception):
    """Base exception for all stockhold errors."""

    pass


class NotFoundError(StockholdError):
    """Raised when a product, cart, order or cart line doesn't exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ProductUnavailableError(StockholdError):
    """Raised when a product is inactive or discontinued."""

    def __init__(self, product_id: str, name: str | None = None, status: str | None = None):
        self.product_id = product_id
        self.name = name
        self.status = status
        label = name or product_id
        msg = f"Product {label} is no longer available"
        if status:
            msg = f"{msg} (status: {status})"
        super().__init__(msg)


class InsufficientStockError(StockholdError):
    """Raised when a requested quantity exceeds what can be held or sold."""

    def __init__(
        self,
        product_id: str,
        requested: int,
        available: int,
        reserved_by_others: int | None = None,
    ):
        self.product_id = product_id
        self.requested = requested
        self.available = max(0, available)
        self.reserved_by_others = reserved_by_others
        msg = (
            f"Cannot take {requested} of product {product_id}: only "
            f"{self.available} available (short by {self.shortfall})"
        )
        if reserved_by_others is not None:
            msg = f"{msg}, {reserved_by_others} already reserved in other carts"
        super().__init__(msg)

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class InvalidArgumentError(StockholdError):
    """Raised when an argument is out of range or malformed."""

    def __init__(self, message: str):
        super().__init__(message)


class EmptyCartError(StockholdError):
    """Raised when an order is requested from an empty cart."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Cart is empty for user {user_id}")


class InvalidStateTransitionError(StockholdError):
    """Raised when an order status change is not allowed."""

    def __init__(self, order_id: str, current: str, target: str, reason: str | None = None):
        self.order_id = order_id
        self.current = current
        self.target = target
        msg = f"Order {order_id} cannot move from {current} to {target}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class PaymentFailedError(StockholdError):
    """Raised when the gateway reports a payment as failed."""

    def __init__(self, order_id: str, gateway_status: str):
        self.order_id = order_id
        self.gateway_status = gateway_status
        super().__init__(f"Payment failed for order {order_id} (gateway status: {gateway_status})")


class PaymentGatewayError(StockholdError):
    """Raised when the payment gateway errors out or times out."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Payment gateway error during {operation}: {detail}")


class ConflictError(StockholdError):
    """Raised when a concurrent writer won a race for the same resource."""

    def __init__(self, message: str):
        super().__init__(message)


class DuplicateOrderNumberError(StockholdError):
    """Raised by an order store when an order number is already taken."""

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order number already exists: {order_number}")


class AccessDeniedError(StockholdError):
    """Raised when a user acts on a cart or order they don't own."""

    def __init__(self, user_id: str | None, resource: str):
        self.user_id = user_id
        self.resource = resource
        super().__init__(f"Access denied for user {user_id} on {resource}")
