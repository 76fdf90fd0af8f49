"""Data models for stockhold."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping
import uuid

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidArgumentError
from .order_status import OrderStatus

PRODUCT_STATUSES = ("active", "inactive", "discontinued")
PAYMENT_METHODS = ("credit_card", "debit_card", "paypal", "stripe", "cash_on_delivery")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
REFUND_STATUSES = ("none", "requested", "processing", "completed", "rejected")

# Sorted (attribute, value) pairs, e.g. (("color", "red"), ("size", "M"))
VariantKey = tuple[tuple[str, str], ...]

ZERO = Decimal("0")


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_utc(value: str) -> datetime:
    """Parse an ISO 8601 string written by _utc_now."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _generate_id() -> str:
    """Generate a new document ID."""
    return str(uuid.uuid4())


def _money(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidArgumentError(f"Invalid amount '{value}'") from None
    if not amount.is_finite():
        raise InvalidArgumentError(f"Invalid amount '{value}'")
    return amount


def check_product_status(status: str) -> None:
    if status not in PRODUCT_STATUSES:
        raise InvalidArgumentError(
            f"Invalid product status '{status}' (expected one of {', '.join(PRODUCT_STATUSES)})"
        )


def _money_or_none(value: Any) -> Decimal | None:
    return None if value is None else _money(value)


def _str_or_none(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def variant_key(selected: Mapping[str, Any] | None) -> VariantKey:
    """
    Normalize selected variant attributes into an orderable key.

    Empty values are dropped so {"size": "M", "color": ""} and {"size": "M"}
    identify the same cart line.
    """
    if not selected:
        return ()
    return tuple(
        sorted((str(k), str(v)) for k, v in selected.items() if v is not None and v != "")
    )


def _clean_variants(selected: Mapping[str, Any] | None) -> dict[str, str]:
    return dict(variant_key(selected))


@dataclass
class Product:
    """A sellable item. The sole owner of its inventory count."""

    id: str
    name: str
    price: Decimal
    quantity: int = 0  # inventory.quantity
    discounted_price: Decimal | None = None
    status: str = "active"
    low_stock_threshold: int = 10
    image: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def current_price(self) -> Decimal:
        """Price snapshotted into carts and orders."""
        return self.discounted_price if self.discounted_price else self.price

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold

    @classmethod
    def create(
        cls,
        name: str,
        price: Decimal | str | float,
        quantity: int = 0,
        discounted_price: Decimal | str | float | None = None,
        status: str = "active",
        image: str | None = None,
        product_id: str | None = None,
    ) -> "Product":
        """Create a new product, validating price, quantity and status."""
        price = _money(price)
        discounted = _money_or_none(discounted_price)
        if price < ZERO or (discounted is not None and discounted < ZERO):
            raise InvalidArgumentError("Price cannot be negative")
        if quantity < 0:
            raise InvalidArgumentError("Quantity cannot be negative")
        check_product_status(status)
        return cls(
            id=product_id or _generate_id(),
            name=name,
            price=price,
            quantity=quantity,
            discounted_price=discounted,
            status=status,
            image=image,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "discounted_price": _str_or_none(self.discounted_price),
            "status": self.status,
            "inventory": {
                "quantity": self.quantity,
                "threshold": self.low_stock_threshold,
            },
            "image": self.image,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        inventory = data.get("inventory", {})
        return cls(
            id=data["id"],
            name=data["name"],
            price=_money(data["price"]),
            quantity=inventory.get("quantity", 0),
            discounted_price=_money_or_none(data.get("discounted_price")),
            status=data.get("status", "active"),
            low_stock_threshold=inventory.get("threshold", 10),
            image=data.get("image"),
            created_at=data.get("created_at", _utc_now()),
            updated_at=data.get("updated_at", _utc_now()),
        )


@dataclass
class CartItem:
    """One line of a cart. Identity is product plus normalized variants."""

    product_id: str
    quantity: int
    price: Decimal  # unit price snapshot
    selected_variants: dict[str, str] = field(default_factory=dict)
    added_at: str = field(default_factory=_utc_now)

    @property
    def key(self) -> tuple[str, VariantKey]:
        return (self.product_id, variant_key(self.selected_variants))

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": str(self.price),
            "selected_variants": dict(self.selected_variants),
            "added_at": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        return cls(
            product_id=data["product_id"],
            quantity=data["quantity"],
            price=_money(data["price"]),
            selected_variants=data.get("selected_variants", {}),
            added_at=data.get("added_at", _utc_now()),
        )


@dataclass
class Cart:
    """
    A user's (or guest session's) in-progress selection.

    Aggregates are denormalized and recomputed by every mutating method.
    """

    user_id: str | None = None
    session_id: str | None = None
    items: list[CartItem] = field(default_factory=list)
    total_items: int = 0
    total_price: Decimal = ZERO
    updated_at: str = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if bool(self.user_id) == bool(self.session_id):
            raise InvalidArgumentError("Exactly one of user_id or session_id must be provided")
        self.recalculate()

    @property
    def owner_key(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}"
        return f"session:{self.session_id}"

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find_line(
        self, product_id: str, variants: Mapping[str, Any] | None = None
    ) -> CartItem | None:
        wanted = (product_id, variant_key(variants))
        for item in self.items:
            if item.key == wanted:
                return item
        return None

    def quantity_of(self, product_id: str, variants: Mapping[str, Any] | None = None) -> int:
        """Quantity held on the exact product+variant line (0 if absent)."""
        line = self.find_line(product_id, variants)
        return line.quantity if line else 0

    def quantity_of_product(self, product_id: str) -> int:
        """Quantity held across every variant line of a product."""
        return sum(item.quantity for item in self.items if item.product_id == product_id)

    def add_line(
        self,
        product_id: str,
        quantity: int,
        price: Decimal,
        variants: Mapping[str, Any] | None = None,
    ) -> CartItem:
        """Increase an existing line (refreshing its price) or append a new one."""
        if quantity < 1:
            raise InvalidArgumentError("Quantity must be at least 1")
        line = self.find_line(product_id, variants)
        if line is not None:
            line.quantity += quantity
            line.price = price
        else:
            line = CartItem(
                product_id=product_id,
                quantity=quantity,
                price=price,
                selected_variants=_clean_variants(variants),
            )
            self.items.append(line)
        self.recalculate()
        return line

    def set_quantity(
        self,
        product_id: str,
        quantity: int,
        price: Decimal,
        variants: Mapping[str, Any] | None = None,
    ) -> CartItem:
        """Set an existing line to an absolute quantity."""
        if quantity < 1:
            raise InvalidArgumentError("Quantity must be at least 1")
        line = self.find_line(product_id, variants)
        if line is None:
            raise InvalidArgumentError(f"Product {product_id} is not in the cart")
        line.quantity = quantity
        line.price = price
        self.recalculate()
        return line

    def remove_line(self, product_id: str, variants: Mapping[str, Any] | None = None) -> bool:
        """Remove a line. Returns False if no such line exists."""
        wanted = (product_id, variant_key(variants))
        before = len(self.items)
        self.items = [item for item in self.items if item.key != wanted]
        self.recalculate()
        return len(self.items) != before

    def retain(self, keep: Callable[[CartItem], bool]) -> list[CartItem]:
        """Drop lines failing the predicate. Returns the dropped lines."""
        dropped = [item for item in self.items if not keep(item)]
        self.items = [item for item in self.items if keep(item)]
        self.recalculate()
        return dropped

    def clear(self) -> None:
        self.items = []
        self.recalculate()

    def recalculate(self) -> None:
        self.total_items = sum(item.quantity for item in self.items)
        self.total_price = sum((item.line_total for item in self.items), ZERO)
        self.updated_at = _utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "items": [item.to_dict() for item in self.items],
            "total_items": self.total_items,
            "total_price": str(self.total_price),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cart":
        cart = cls(
            user_id=data.get("user_id"),
            session_id=data.get("session_id"),
            items=[CartItem.from_dict(i) for i in data.get("items", [])],
        )
        cart.updated_at = data.get("updated_at", cart.updated_at)
        return cart


@dataclass
class OrderItem:
    """Frozen copy of a cart line taken when the order is placed."""

    product_id: str
    product_name: str
    quantity: int
    price: Decimal
    product_image: str = ""
    selected_variants: dict[str, str] = field(default_factory=dict)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "quantity": self.quantity,
            "price": str(self.price),
            "selected_variants": dict(self.selected_variants),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=data["product_id"],
            product_name=data["product_name"],
            product_image=data.get("product_image", ""),
            quantity=data["quantity"],
            price=_money(data["price"]),
            selected_variants=data.get("selected_variants", {}),
        )


@dataclass
class OrderSummary:
    """Money totals of an order. The total is always derived, never stored."""

    subtotal: Decimal
    tax: Decimal = ZERO
    shipping: Decimal = ZERO
    discount: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax + self.shipping - self.discount

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "shipping": str(self.shipping),
            "discount": str(self.discount),
            "total": str(self.total),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderSummary":
        return cls(
            subtotal=_money(data["subtotal"]),
            tax=_money(data.get("tax", 0)),
            shipping=_money(data.get("shipping", 0)),
            discount=_money(data.get("discount", 0)),
        )


@dataclass
class StatusChange:
    """One entry of the append-only status history."""

    status: OrderStatus
    timestamp: str = field(default_factory=_utc_now)
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "timestamp": self.timestamp, "note": self.note}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusChange":
        return cls(
            status=OrderStatus(data["status"]),
            timestamp=data.get("timestamp", _utc_now()),
            note=data.get("note", ""),
        )


@dataclass
class PaymentInfo:
    method: str = "stripe"
    status: str = "pending"
    transaction_id: str | None = None
    paid_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "paid_at": self.paid_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentInfo":
        return cls(
            method=data.get("method", "stripe"),
            status=data.get("status", "pending"),
            transaction_id=data.get("transaction_id"),
            paid_at=data.get("paid_at"),
        )


@dataclass
class RefundInfo:
    status: str = "none"
    amount: Decimal | None = None
    reason: str | None = None
    refund_id: str | None = None
    processed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "amount": _str_or_none(self.amount),
            "reason": self.reason,
            "refund_id": self.refund_id,
            "processed_at": self.processed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefundInfo":
        return cls(
            status=data.get("status", "none"),
            amount=_money_or_none(data.get("amount")),
            reason=data.get("reason"),
            refund_id=data.get("refund_id"),
            processed_at=data.get("processed_at"),
        )


@dataclass
class CancellationInfo:
    reason: str
    cancelled_by: str
    cancelled_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": self.cancelled_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CancellationInfo":
        return cls(
            reason=data["reason"],
            cancelled_by=data["cancelled_by"],
            cancelled_at=data.get("cancelled_at", _utc_now()),
        )


@dataclass
class Tracking:
    carrier: str | None = None
    tracking_number: str | None = None
    actual_delivery: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "actual_delivery": self.actual_delivery,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tracking":
        return cls(
            carrier=data.get("carrier"),
            tracking_number=data.get("tracking_number"),
            actual_delivery=data.get("actual_delivery"),
        )


class Address(BaseModel):
    """Shipping or billing address."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    name: str = Field(min_length=1)
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    country: str = Field(min_length=1)
    phone: str = Field(min_length=1)


@dataclass
class Order:
    """
    A committed purchase.

    Line items and prices are frozen at creation. After that the order only
    changes through status transitions and its payment/refund/cancellation
    sub-records; it is never deleted.
    """

    id: str
    order_number: str
    user_id: str
    items: list[OrderItem]
    summary: OrderSummary
    shipping_address: Address
    billing_address: Address
    payment: PaymentInfo = field(default_factory=PaymentInfo)
    status: OrderStatus = OrderStatus.PENDING
    status_history: list[StatusChange] = field(default_factory=list)
    tracking: Tracking = field(default_factory=Tracking)
    notes: dict[str, str] = field(default_factory=dict)
    refund: RefundInfo = field(default_factory=RefundInfo)
    cancellation: CancellationInfo | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "summary": self.summary.to_dict(),
            "shipping_address": self.shipping_address.model_dump(),
            "billing_address": self.billing_address.model_dump(),
            "payment": self.payment.to_dict(),
            "status": self.status.value,
            "status_history": [change.to_dict() for change in self.status_history],
            "tracking": self.tracking.to_dict(),
            "notes": dict(self.notes),
            "refund": self.refund.to_dict(),
            "cancellation": self.cancellation.to_dict() if self.cancellation else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        cancellation = None
        if data.get("cancellation"):
            cancellation = CancellationInfo.from_dict(data["cancellation"])
        return cls(
            id=data["id"],
            order_number=data["order_number"],
            user_id=data["user_id"],
            items=[OrderItem.from_dict(i) for i in data.get("items", [])],
            summary=OrderSummary.from_dict(data["summary"]),
            shipping_address=Address.model_validate(data["shipping_address"]),
            billing_address=Address.model_validate(data["billing_address"]),
            payment=PaymentInfo.from_dict(data.get("payment", {})),
            status=OrderStatus(data.get("status", OrderStatus.PENDING.value)),
            status_history=[StatusChange.from_dict(c) for c in data.get("status_history", [])],
            tracking=Tracking.from_dict(data.get("tracking", {})),
            notes=data.get("notes", {}),
            refund=RefundInfo.from_dict(data.get("refund", {})),
            cancellation=cancellation,
            created_at=data.get("created_at", _utc_now()),
            updated_at=data.get("updated_at", _utc_now()),
        )


@dataclass
class WishlistItem:
    product_id: str
    added_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"product_id": self.product_id, "added_at": self.added_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WishlistItem":
        return cls(product_id=data["product_id"], added_at=data.get("added_at", _utc_now()))


@dataclass
class Wishlist:
    user_id: str
    items: list[WishlistItem] = field(default_factory=list)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def total_items(self) -> int:
        return len(self.items)

    def has(self, product_id: str) -> bool:
        return any(item.product_id == product_id for item in self.items)

    def add(self, product_id: str) -> bool:
        """Add a product. Returns False if it was already there."""
        if self.has(product_id):
            return False
        self.items.append(WishlistItem(product_id=product_id))
        self.updated_at = _utc_now()
        return True

    def remove(self, product_id: str) -> bool:
        before = len(self.items)
        self.items = [item for item in self.items if item.product_id != product_id]
        self.updated_at = _utc_now()
        return len(self.items) != before

    def clear(self) -> None:
        self.items = []
        self.updated_at = _utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "total_items": self.total_items,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Wishlist":
        return cls(
            user_id=data["user_id"],
            items=[WishlistItem.from_dict(i) for i in data.get("items", [])],
            updated_at=data.get("updated_at", _utc_now()),
        )
