"""Assemble stores, cache and services from Settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .cache import Cache, MemoryCache, NullCache, RedisCache
from .cart_service import CartService
from .config import Settings
from .ledger import StockLedger
from .order_service import OrderService
from .payments import PaymentGateway, PaymentService, StripeGateway
from .progression import StatusProgressor
from .store_protocol import CartStore, CatalogStore, OrderStore, WishlistStore
from .wishlist_service import WishlistService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    catalog: CatalogStore
    carts: CartStore
    orders: OrderStore
    wishlists: WishlistStore
    cache: Cache
    ledger: StockLedger
    cart: CartService
    wishlist: WishlistService
    order: OrderService
    progression: StatusProgressor
    payments: PaymentService | None = None


def build_cache(settings: Settings) -> Cache:
    if settings.cache_disabled:
        return NullCache()
    if settings.redis_url:
        return RedisCache(url=settings.redis_url)
    return MemoryCache()


def build_services(settings: Settings, gateway: PaymentGateway | None = None) -> Services:
    """
    Wire every service for the configured backend.

    Payments are only available with a gateway, either passed in or built
    from the Stripe API key.
    """
    if settings.backend == "mongo":
        from .mongo_store import (
            MongoCartStore,
            MongoCatalogStore,
            MongoOrderStore,
            MongoWishlistStore,
            connect,
            ensure_indexes,
        )

        db = connect(settings.mongo_url, settings.mongo_db)
        ensure_indexes(db)
        catalog: CatalogStore = MongoCatalogStore(db)
        carts: CartStore = MongoCartStore(db)
        orders: OrderStore = MongoOrderStore(db)
        wishlists: WishlistStore = MongoWishlistStore(db)
    else:
        from .json_store import (
            JsonCartStore,
            JsonCatalogStore,
            JsonOrderStore,
            JsonWishlistStore,
        )

        catalog = JsonCatalogStore(settings.data_dir)
        carts = JsonCartStore(settings.data_dir)
        orders = JsonOrderStore(settings.data_dir)
        wishlists = JsonWishlistStore(settings.data_dir)

    cache = build_cache(settings)
    ledger = StockLedger(catalog, carts)
    cart = CartService(catalog, carts, cache, settings.cache_ttl, ledger)
    order = OrderService(catalog, orders, cart, cache, settings)

    if gateway is None and settings.stripe_api_key:
        gateway = StripeGateway(settings.stripe_api_key)
    payments = None
    if gateway is not None:
        payments = PaymentService(orders, gateway, order, cache, settings)
    else:
        logger.debug("No payment gateway configured")

    return Services(
        settings=settings,
        catalog=catalog,
        carts=carts,
        orders=orders,
        wishlists=wishlists,
        cache=cache,
        ledger=ledger,
        cart=cart,
        wishlist=WishlistService(catalog, wishlists, cart, cache, settings.cache_ttl),
        order=order,
        progression=StatusProgressor(orders, order, settings.progression),
        payments=payments,
    )
