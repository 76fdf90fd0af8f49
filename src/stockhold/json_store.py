"""JSON file storage for stockhold."""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from .errors import (
    ConflictError,
    DuplicateOrderNumberError,
    InsufficientStockError,
    InvalidArgumentError,
    NotFoundError,
)
from .models import Cart, Order, Product, Wishlist, _utc_now, check_product_status
from .order_status import OrderStatus

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
PRODUCTS_FILE = "products.json"
CARTS_FILE = "carts.json"
ORDERS_FILE = "orders.json"
WISHLISTS_FILE = "wishlists.json"


class JsonCollection:
    """
    A keyed set of documents stored in a single JSON file.

    Writers hold an exclusive flock on a sidecar lock file for the whole
    read-modify-write; files are replaced atomically so readers never see a
    partial write.
    """

    def __init__(self, data_dir: Path, filename: str):
        self.data_dir = data_dir
        self.path = data_dir / filename
        self._lock_path = data_dir / f".{Path(filename).stem}.lock"

    def _ensure_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the collection for read-modify-write operations."""
        self._ensure_dir()
        with open(self._lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def load(self) -> dict[str, dict[str, Any]]:
        """Load all documents from disk."""
        if not self.path.exists():
            return {}

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data.get("documents", {})

    def save(self, documents: dict[str, dict[str, Any]]) -> None:
        """Save all documents to disk atomically."""
        self._ensure_dir()

        data = {"schema_version": SCHEMA_VERSION, "documents": documents}
        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{self.path.stem}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise


class JsonCatalogStore:
    """Products stored in products.json."""

    def __init__(self, data_dir: Path):
        self._products = JsonCollection(data_dir, PRODUCTS_FILE)

    def get_product(self, product_id: str) -> Product | None:
        doc = self._products.load().get(product_id)
        return Product.from_dict(doc) if doc else None

    def list_products(self) -> list[Product]:
        products = [Product.from_dict(d) for d in self._products.load().values()]
        products.sort(key=lambda p: (p.name, p.id))
        return products

    def save_product(self, product: Product) -> None:
        with self._products.lock():
            documents = self._products.load()
            product.updated_at = _utc_now()
            documents[product.id] = product.to_dict()
            self._products.save(documents)

    def set_status(self, product_id: str, status: str) -> Product:
        check_product_status(status)
        with self._products.lock():
            documents = self._products.load()
            doc = documents.get(product_id)
            if doc is None:
                raise NotFoundError("Product", product_id)
            doc["status"] = status
            doc["updated_at"] = _utc_now()
            self._products.save(documents)
        return Product.from_dict(doc)

    def decrement_inventory(self, product_id: str, amount: int) -> Product:
        if amount < 1:
            raise InvalidArgumentError("Decrement amount must be at least 1")
        with self._products.lock():
            documents = self._products.load()
            doc = documents.get(product_id)
            if doc is None:
                raise NotFoundError("Product", product_id)
            on_hand = doc["inventory"]["quantity"]
            if on_hand < amount:
                raise InsufficientStockError(product_id, amount, on_hand)
            doc["inventory"]["quantity"] = on_hand - amount
            doc["updated_at"] = _utc_now()
            self._products.save(documents)
        logger.debug("Decremented %s by %d (now %d)", product_id, amount, on_hand - amount)
        return Product.from_dict(doc)

    def increment_inventory(self, product_id: str, amount: int) -> Product:
        if amount < 1:
            raise InvalidArgumentError("Increment amount must be at least 1")
        with self._products.lock():
            documents = self._products.load()
            doc = documents.get(product_id)
            if doc is None:
                raise NotFoundError("Product", product_id)
            doc["inventory"]["quantity"] += amount
            doc["updated_at"] = _utc_now()
            self._products.save(documents)
        return Product.from_dict(doc)


class JsonCartStore:
    """Carts stored in carts.json, keyed by owner (user:<id> or session:<id>)."""

    def __init__(self, data_dir: Path):
        self._carts = JsonCollection(data_dir, CARTS_FILE)

    def get_cart(self, user_id: str) -> Cart | None:
        doc = self._carts.load().get(f"user:{user_id}")
        return Cart.from_dict(doc) if doc else None

    def get_session_cart(self, session_id: str) -> Cart | None:
        doc = self._carts.load().get(f"session:{session_id}")
        return Cart.from_dict(doc) if doc else None

    def save_cart(self, cart: Cart) -> None:
        with self._carts.lock():
            documents = self._carts.load()
            documents[cart.owner_key] = cart.to_dict()
            self._carts.save(documents)

    def find_carts_containing_product(self, product_id: str) -> list[Cart]:
        return [
            Cart.from_dict(doc)
            for doc in self._carts.load().values()
            if any(item["product_id"] == product_id for item in doc.get("items", []))
        ]


class JsonOrderStore:
    """Orders stored in orders.json, keyed by order id."""

    def __init__(self, data_dir: Path):
        self._orders = JsonCollection(data_dir, ORDERS_FILE)

    def create_order(self, order: Order) -> None:
        with self._orders.lock():
            documents = self._orders.load()
            if order.id in documents:
                raise ConflictError(f"Order already exists: {order.id}")
            if any(d["order_number"] == order.order_number for d in documents.values()):
                raise DuplicateOrderNumberError(order.order_number)
            documents[order.id] = order.to_dict()
            self._orders.save(documents)

    def get_order(self, order_id: str) -> Order | None:
        doc = self._orders.load().get(order_id)
        return Order.from_dict(doc) if doc else None

    def find_by_transaction_id(self, transaction_id: str) -> Order | None:
        for doc in self._orders.load().values():
            if doc.get("payment", {}).get("transaction_id") == transaction_id:
                return Order.from_dict(doc)
        return None

    def list_orders(
        self,
        user_id: str | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[Order]:
        wanted = {s.value for s in statuses} if statuses is not None else None
        orders = [
            Order.from_dict(doc)
            for doc in self._orders.load().values()
            if (user_id is None or doc["user_id"] == user_id)
            and (wanted is None or doc["status"] in wanted)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    def save_order(
        self,
        order: Order,
        expected_status: OrderStatus | None = None,
        expected_refund_status: str | None = None,
    ) -> None:
        with self._orders.lock():
            documents = self._orders.load()
            doc = documents.get(order.id)
            if doc is None:
                raise NotFoundError("Order", order.id)
            if expected_status is not None and doc["status"] != expected_status.value:
                raise ConflictError(
                    f"Order {order.id} is {doc['status']}, expected {expected_status.value}"
                )
            refund_status = doc.get("refund", {}).get("status", "none")
            if expected_refund_status is not None and refund_status != expected_refund_status:
                raise ConflictError(
                    f"Refund of order {order.id} is {refund_status}, "
                    f"expected {expected_refund_status}"
                )
            order.updated_at = _utc_now()
            documents[order.id] = order.to_dict()
            self._orders.save(documents)


class JsonWishlistStore:
    """Wishlists stored in wishlists.json, keyed by user id."""

    def __init__(self, data_dir: Path):
        self._wishlists = JsonCollection(data_dir, WISHLISTS_FILE)

    def get_wishlist(self, user_id: str) -> Wishlist | None:
        doc = self._wishlists.load().get(user_id)
        return Wishlist.from_dict(doc) if doc else None

    def save_wishlist(self, wishlist: Wishlist) -> None:
        with self._wishlists.lock():
            documents = self._wishlists.load()
            documents[wishlist.user_id] = wishlist.to_dict()
            self._wishlists.save(documents)
