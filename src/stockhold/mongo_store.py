"""MongoDB storage for stockhold."""

import logging
from typing import Any, Iterable

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

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


def connect(url: str, db_name: str) -> Database:
    """Open a client and return the named database."""
    client: MongoClient = MongoClient(url)
    return client[db_name]


def _to_doc(data: dict[str, Any], key: str) -> dict[str, Any]:
    doc = dict(data)
    doc["_id"] = key
    return doc


def _from_doc(doc: dict[str, Any]) -> dict[str, Any]:
    data = dict(doc)
    data.pop("_id", None)
    return data


def ensure_indexes(db: Database) -> None:
    """Create the indexes the stores rely on."""
    db.carts.create_index([("items.product_id", ASCENDING)])
    db.orders.create_index([("order_number", ASCENDING)], unique=True)
    db.orders.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db.orders.create_index([("status", ASCENDING)])
    db.orders.create_index([("payment.transaction_id", ASCENDING)])


class MongoCatalogStore:
    def __init__(self, db: Database):
        self.products = db.products

    def get_product(self, product_id: str) -> Product | None:
        doc = self.products.find_one({"_id": product_id})
        return Product.from_dict(_from_doc(doc)) if doc else None

    def list_products(self) -> list[Product]:
        return [
            Product.from_dict(_from_doc(d))
            for d in self.products.find().sort([("name", ASCENDING), ("_id", ASCENDING)])
        ]

    def save_product(self, product: Product) -> None:
        product.updated_at = _utc_now()
        self.products.replace_one(
            {"_id": product.id}, _to_doc(product.to_dict(), product.id), upsert=True
        )

    def set_status(self, product_id: str, status: str) -> Product:
        check_product_status(status)
        doc = self.products.find_one_and_update(
            {"_id": product_id},
            {"$set": {"status": status, "updated_at": _utc_now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError("Product", product_id)
        return Product.from_dict(_from_doc(doc))

    def decrement_inventory(self, product_id: str, amount: int) -> Product:
        if amount < 1:
            raise InvalidArgumentError("Decrement amount must be at least 1")
        # Conditional on the current count so two writers can't both take the last units.
        doc = self.products.find_one_and_update(
            {"_id": product_id, "inventory.quantity": {"$gte": amount}},
            {"$inc": {"inventory.quantity": -amount}, "$set": {"updated_at": _utc_now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self.products.find_one({"_id": product_id}, {"inventory.quantity": 1})
            if current is None:
                raise NotFoundError("Product", product_id)
            raise InsufficientStockError(product_id, amount, current["inventory"]["quantity"])
        return Product.from_dict(_from_doc(doc))

    def increment_inventory(self, product_id: str, amount: int) -> Product:
        if amount < 1:
            raise InvalidArgumentError("Increment amount must be at least 1")
        doc = self.products.find_one_and_update(
            {"_id": product_id},
            {"$inc": {"inventory.quantity": amount}, "$set": {"updated_at": _utc_now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError("Product", product_id)
        return Product.from_dict(_from_doc(doc))


class MongoCartStore:
    def __init__(self, db: Database):
        self.carts = db.carts

    def get_cart(self, user_id: str) -> Cart | None:
        doc = self.carts.find_one({"_id": f"user:{user_id}"})
        return Cart.from_dict(_from_doc(doc)) if doc else None

    def get_session_cart(self, session_id: str) -> Cart | None:
        doc = self.carts.find_one({"_id": f"session:{session_id}"})
        return Cart.from_dict(_from_doc(doc)) if doc else None

    def save_cart(self, cart: Cart) -> None:
        self.carts.replace_one(
            {"_id": cart.owner_key}, _to_doc(cart.to_dict(), cart.owner_key), upsert=True
        )

    def find_carts_containing_product(self, product_id: str) -> list[Cart]:
        return [
            Cart.from_dict(_from_doc(d)) for d in self.carts.find({"items.product_id": product_id})
        ]


class MongoOrderStore:
    def __init__(self, db: Database):
        self.orders = db.orders

    def create_order(self, order: Order) -> None:
        try:
            self.orders.insert_one(_to_doc(order.to_dict(), order.id))
        except DuplicateKeyError as e:
            if "order_number" in str(e):
                raise DuplicateOrderNumberError(order.order_number) from e
            raise ConflictError(f"Order already exists: {order.id}") from e

    def get_order(self, order_id: str) -> Order | None:
        doc = self.orders.find_one({"_id": order_id})
        return Order.from_dict(_from_doc(doc)) if doc else None

    def find_by_transaction_id(self, transaction_id: str) -> Order | None:
        doc = self.orders.find_one({"payment.transaction_id": transaction_id})
        return Order.from_dict(_from_doc(doc)) if doc else None

    def list_orders(
        self,
        user_id: str | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[Order]:
        query: dict[str, Any] = {}
        if user_id is not None:
            query["user_id"] = user_id
        if statuses is not None:
            query["status"] = {"$in": [s.value for s in statuses]}
        cursor = self.orders.find(query).sort("created_at", DESCENDING)
        return [Order.from_dict(_from_doc(d)) for d in cursor]

    def save_order(
        self,
        order: Order,
        expected_status: OrderStatus | None = None,
        expected_refund_status: str | None = None,
    ) -> None:
        order.updated_at = _utc_now()
        query: dict[str, Any] = {"_id": order.id}
        if expected_status is not None:
            query["status"] = expected_status.value
        if expected_refund_status is not None:
            query["refund.status"] = expected_refund_status
        result = self.orders.replace_one(query, _to_doc(order.to_dict(), order.id))
        if result.matched_count == 0:
            stored = self.orders.find_one({"_id": order.id}, {"status": 1, "refund.status": 1})
            if stored is None:
                raise NotFoundError("Order", order.id)
            refund_status = stored.get("refund", {}).get("status")
            raise ConflictError(
                f"Order {order.id} is {stored['status']} (refund {refund_status}), "
                f"expected {expected_status} (refund {expected_refund_status})"
            )


class MongoWishlistStore:
    def __init__(self, db: Database):
        self.wishlists = db.wishlists

    def get_wishlist(self, user_id: str) -> Wishlist | None:
        doc = self.wishlists.find_one({"_id": user_id})
        return Wishlist.from_dict(_from_doc(doc)) if doc else None

    def save_wishlist(self, wishlist: Wishlist) -> None:
        self.wishlists.replace_one(
            {"_id": wishlist.user_id}, _to_doc(wishlist.to_dict(), wishlist.user_id), upsert=True
        )
