"""Configuration for stockhold."""

import os
from decimal import Decimal
from pathlib import Path
from typing import Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidArgumentError

# Can be overridden via STOCKHOLD_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"

ENV_PREFIX = "STOCKHOLD_"


class PricingPolicy(BaseModel):
    """Order pricing constants."""

    model_config = ConfigDict(frozen=True)

    tax_rate: Decimal = Field(default=Decimal("0.10"), ge=0)
    free_shipping_threshold: Decimal = Field(default=Decimal("100"), ge=0)
    flat_shipping: Decimal = Field(default=Decimal("10"), ge=0)
    currency: str = "usd"

    def tax_for(self, subtotal: Decimal) -> Decimal:
        return subtotal * self.tax_rate

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        """Free strictly above the threshold, flat rate otherwise."""
        if subtotal > self.free_shipping_threshold:
            return Decimal("0")
        return self.flat_shipping


class ProgressionPolicy(BaseModel):
    """Minutes after creation at which an order is promoted to each status."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    interval_seconds: float = Field(default=60.0, gt=0)
    confirmed_after: int = Field(default=2, ge=0)
    processing_after: int = Field(default=5, ge=0)
    shipped_after: int = Field(default=8, ge=0)
    delivered_after: int = Field(default=12, ge=0)


class CacheTTLs(BaseModel):
    """Cache lifetimes in seconds."""

    model_config = ConfigDict(frozen=True)

    cart: int = 300
    cart_summary: int = 120
    order: int = 300
    payment: int = 3600
    wishlist: int = 300


class Settings(BaseModel):
    """Top-level settings."""

    model_config = ConfigDict(frozen=True)

    data_dir: Path = _default_data_dir
    backend: Literal["json", "mongo"] = "json"
    mongo_url: str = "mongodb://localhost:27017/"
    mongo_db: str = "stockhold"
    redis_url: str | None = None
    cache_disabled: bool = False
    stripe_api_key: str | None = None
    order_number_prefix: str = "ORD"
    order_number_attempts: int = Field(default=5, ge=1)
    log_level: str = "INFO"
    pricing: PricingPolicy = Field(default_factory=PricingPolicy)
    progression: ProgressionPolicy = Field(default_factory=ProgressionPolicy)
    cache_ttl: CacheTTLs = Field(default_factory=CacheTTLs)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from STOCKHOLD_* environment variables.

    Unset variables keep their defaults.

    Raises:
        InvalidArgumentError: If a variable holds an invalid value.
    """
    env = os.environ if environ is None else environ

    def get(name: str) -> str | None:
        value = env.get(ENV_PREFIX + name)
        return value if value not in (None, "") else None

    top: dict[str, object] = {}
    for key, name in (
        ("data_dir", "DATA_DIR"),
        ("backend", "BACKEND"),
        ("mongo_url", "MONGO_URL"),
        ("mongo_db", "MONGO_DB"),
        ("redis_url", "REDIS_URL"),
        ("cache_disabled", "CACHE_DISABLED"),
        ("stripe_api_key", "STRIPE_API_KEY"),
        ("order_number_prefix", "ORDER_PREFIX"),
        ("log_level", "LOG_LEVEL"),
    ):
        value = get(name)
        if value is not None:
            top[key] = value

    pricing: dict[str, object] = {}
    for key, name in (
        ("tax_rate", "TAX_RATE"),
        ("free_shipping_threshold", "FREE_SHIPPING_THRESHOLD"),
        ("flat_shipping", "FLAT_SHIPPING"),
        ("currency", "CURRENCY"),
    ):
        value = get(name)
        if value is not None:
            pricing[key] = value

    progression: dict[str, object] = {}
    for key, name in (
        ("enabled", "PROGRESSION_ENABLED"),
        ("interval_seconds", "PROGRESSION_INTERVAL"),
    ):
        value = get(name)
        if value is not None:
            progression[key] = value

    try:
        return Settings(
            **top,
            pricing=PricingPolicy(**pricing),
            progression=ProgressionPolicy(**progression),
        )
    except ValidationError as e:
        raise InvalidArgumentError(f"Invalid configuration: {e}") from e
