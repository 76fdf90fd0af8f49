"""stockhold - inventory reservation and order fulfillment for a storefront."""

__version__ = "0.1.0"
