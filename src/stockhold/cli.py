"""Command-line interface for stockhold."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

from . import __version__
from .config import load_settings
from .context import Services, build_services
from .errors import InvalidArgumentError, StockholdError
from .models import PAYMENT_METHODS, PRODUCT_STATUSES, Cart, Order, Product
from .order_status import OrderStatus

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def get_services() -> Services:
    """Build services from STOCKHOLD_* environment variables."""
    return build_services(load_settings())


def parse_variants(pairs: list[str] | None) -> dict[str, str]:
    """Parse repeated --variant key=value options."""
    variants: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise InvalidArgumentError(f"Invalid variant '{pair}' (expected key=value)")
        variants[key.strip()] = value.strip()
    return variants


def load_json_arg(value: str) -> Any:
    """Parse inline JSON, or read it from a file when prefixed with '@'."""
    try:
        if value.startswith("@"):
            return json.loads(Path(value[1:]).read_text())
        return json.loads(value)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidArgumentError(f"Could not read JSON from '{value}': {e}") from e


def format_product(product: Product) -> str:
    flags = " (low stock)" if product.is_active and product.is_low_stock else ""
    return (
        f"  {product.id[:8]}  {product.name}  {product.current_price}  "
        f"qty={product.quantity}  {product.status}{flags}"
    )


def format_cart(cart: Cart) -> str:
    lines = [f"Cart of {cart.user_id} ({cart.total_items} item(s), total {cart.total_price}):"]
    for item in cart.items:
        variants = ", ".join(f"{k}={v}" for k, v in sorted(item.selected_variants.items()))
        suffix = f" [{variants}]" if variants else ""
        lines.append(f"  {item.product_id}{suffix}  x{item.quantity}  @ {item.price}")
    return "\n".join(lines)


def format_order(order: Order, verbose: bool = False) -> str:
    lines = [
        f"{order.order_number}  ({order.id})",
        f"  Status:  {order.status.value}",
        f"  User:    {order.user_id}",
        f"  Payment: {order.payment.method} / {order.payment.status}",
        f"  Total:   {order.summary.total} (subtotal {order.summary.subtotal}, "
        f"tax {order.summary.tax}, shipping {order.summary.shipping})",
    ]
    if verbose:
        lines.append("  Items:")
        for item in order.items:
            lines.append(f"    {item.product_name} x{item.quantity} @ {item.price}")
        lines.append("  History:")
        for change in order.status_history:
            lines.append(f"    {change.timestamp}  {change.status.value}  {change.note}")
    return "\n".join(lines)


# --- products ---


def cmd_products_add(args: argparse.Namespace) -> int:
    """Add a product to the catalog."""
    try:
        services = get_services()
        product = Product.create(
            name=args.name,
            price=args.price,
            quantity=args.quantity,
            discounted_price=args.discounted_price,
            status=args.status,
            image=args.image,
            product_id=args.id,
        )
        services.catalog.save_product(product)

        print(f"Added product: {product.id}")
        print(f"  Name: {product.name}")
        print(f"  Quantity: {product.quantity}")
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_list(args: argparse.Namespace) -> int:
    """List catalog products."""
    try:
        services = get_services()
        products = services.catalog.list_products()

        if not products:
            print("No products found.")
            return 0

        if args.json:
            print(json.dumps([p.to_dict() for p in products], indent=2))
        else:
            print(f"Products ({len(products)}):")
            for product in products:
                print(format_product(product))
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_set_status(args: argparse.Namespace) -> int:
    """Activate, deactivate or discontinue a product."""
    try:
        services = get_services()
        product = services.catalog.set_status(args.product_id, args.status)

        print(f"Product {product.id} is now {product.status}")
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_restock(args: argparse.Namespace) -> int:
    """Put units into stock."""
    try:
        services = get_services()
        product = services.catalog.increment_inventory(args.product_id, args.amount)

        print(f"Product {product.id} now has {product.quantity} unit(s)")
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# --- stock ---


def cmd_stock(args: argparse.Namespace) -> int:
    """Show what a user may still add of a product."""
    try:
        services = get_services()
        stock = services.ledger.check(args.product_id, args.user, parse_variants(args.variant))

        if args.json:
            print(json.dumps(stock.to_dict(), indent=2))
        else:
            data = stock.to_dict()
            print(f"Stock of {stock.product.name} ({stock.product.id}):")
            for key in ("on_hand", "reserved_total", "held_by_user", "reserved_by_others",
                        "max_holding", "available"):
                print(f"  {key}: {data[key]}")
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# --- cart ---


def _print_cart(cart: Cart, as_json: bool) -> None:
    if as_json:
        print(json.dumps(cart.to_dict(), indent=2))
    else:
        print(format_cart(cart))


def cmd_cart_show(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        _print_cart(services.cart.get_cart(args.user), args.json)
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_add(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        cart = services.cart.add_item(
            args.user, args.product_id, args.quantity, parse_variants(args.variant)
        )
        _print_cart(cart, args.json)
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_update(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        cart = services.cart.update_item_quantity(
            args.user, args.product_id, args.quantity, parse_variants(args.variant)
        )
        _print_cart(cart, args.json)
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_remove(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        cart = services.cart.remove_item(
            args.user, args.product_id, parse_variants(args.variant)
        )
        _print_cart(cart, args.json)
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_clear(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        services.cart.clear(args.user)
        print(f"Cleared cart of {args.user}")
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_sync(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        _print_cart(services.cart.sync(args.user), args.json)
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# --- orders ---


def _print_order(order: Order, as_json: bool, verbose: bool = False) -> None:
    if as_json:
        print(json.dumps(order.to_dict(), indent=2))
    else:
        print(format_order(order, verbose=verbose))


def cmd_orders_create(args: argparse.Namespace) -> int:
    """Place an order from the user's cart."""
    try:
        services = get_services()
        shipping = load_json_arg(args.shipping)
        billing = load_json_arg(args.billing) if args.billing else None
        order = services.order.create_order(
            args.user,
            shipping,
            billing,
            payment_method=args.payment_method,
            notes={"customer": args.note} if args.note else None,
        )
        _print_order(order, args.json)
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_list(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        orders = services.order.list_orders(args.user, args.status, args.limit)

        if not orders:
            print("No orders found.")
            return 0

        if args.json:
            print(json.dumps([o.to_dict() for o in orders], indent=2))
        else:
            print(f"Orders ({len(orders)}):")
            for order in orders:
                print(
                    f"  {order.order_number}  {order.status.value:<10}  "
                    f"{order.summary.total}  {order.user_id}"
                )
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_show(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        order = services.order.get_order(args.order_id, args.user, is_admin=args.user is None)
        _print_order(order, args.json, verbose=True)
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_cancel(args: argparse.Namespace) -> int:
    try:
        services = get_services()
        order = services.order.cancel_order(
            args.order_id, args.user, is_admin=args.admin, reason=args.reason
        )
        print(f"Cancelled order {order.order_number}")
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_set_status(args: argparse.Namespace) -> int:
    """Administrative status change."""
    try:
        services = get_services()
        tracking = {}
        if args.carrier:
            tracking["carrier"] = args.carrier
        if args.tracking_number:
            tracking["tracking_number"] = args.tracking_number

        order = services.order.update_status(
            args.order_id, args.status, args.note, tracking=tracking or None
        )
        print(f"Order {order.order_number} is now {order.status.value}")
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# --- progress ---


def cmd_progress(args: argparse.Namespace) -> int:
    """Promote due orders once, or keep doing it with --watch."""
    try:
        services = get_services()
        progressor = services.progression

        if not args.watch:
            promoted = progressor.run_once()
            if not promoted:
                print("No orders due for promotion.")
            for order_id, status in promoted:
                print(f"  {order_id}  -> {status.value}")
            return 0

        interval = args.interval or services.settings.progression.interval_seconds
        print(f"Promoting orders every {interval}s (Ctrl+C to stop)...")
        progressor.start(interval)
        try:
            while progressor.is_running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            pass
        finally:
            progressor.stop()
        return 0

    except StockholdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="stockhold",
        description="Inventory reservation and order fulfillment for a storefront.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--log-level", help="Logging level (default: STOCKHOLD_LOG_LEVEL or INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # products (subcommand group)
    products_parser = subparsers.add_parser("products", help="Manage the catalog")
    products_subparsers = products_parser.add_subparsers(dest="products_command")

    products_add_parser = products_subparsers.add_parser("add", help="Add a product")
    products_add_parser.add_argument("name", help="Product name")
    products_add_parser.add_argument("--price", required=True, help="Unit price")
    products_add_parser.add_argument(
        "--quantity", "-q", type=int, default=0, help="Units on hand (default: 0)"
    )
    products_add_parser.add_argument("--discounted-price", help="Discounted unit price")
    products_add_parser.add_argument(
        "--status", choices=PRODUCT_STATUSES, default="active", help="Product status"
    )
    products_add_parser.add_argument("--image", help="Image URL")
    products_add_parser.add_argument("--id", help="Product ID (default: generated)")

    products_list_parser = products_subparsers.add_parser("list", help="List products")
    products_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    products_status_parser = products_subparsers.add_parser(
        "set-status", help="Change a product's status"
    )
    products_status_parser.add_argument("product_id", help="Product ID")
    products_status_parser.add_argument("status", choices=PRODUCT_STATUSES)

    products_restock_parser = products_subparsers.add_parser(
        "restock", help="Add units to a product's stock"
    )
    products_restock_parser.add_argument("product_id", help="Product ID")
    products_restock_parser.add_argument("amount", type=int, help="Units to add")

    # stock
    stock_parser = subparsers.add_parser("stock", help="Show availability of a product")
    stock_parser.add_argument("product_id", help="Product ID")
    stock_parser.add_argument("--user", "-u", help="Acting user (default: guest)")
    stock_parser.add_argument(
        "--variant", action="append", help="Variant attribute as key=value (repeatable)"
    )
    stock_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # cart (subcommand group)
    cart_parser = subparsers.add_parser("cart", help="Manage a user's cart")
    cart_subparsers = cart_parser.add_subparsers(dest="cart_command")

    def cart_command(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = cart_subparsers.add_parser(name, help=help_text)
        sub.add_argument("--user", "-u", required=True, help="User ID")
        sub.add_argument("--json", action="store_true", help="Output as JSON")
        return sub

    cart_command("show", "Show the cart")

    cart_add_parser = cart_command("add", "Add units of a product")
    cart_add_parser.add_argument("product_id", help="Product ID")
    cart_add_parser.add_argument(
        "--quantity", "-q", type=int, default=1, help="Units to add (default: 1)"
    )
    cart_add_parser.add_argument(
        "--variant", action="append", help="Variant attribute as key=value (repeatable)"
    )

    cart_update_parser = cart_command("update", "Set a line's quantity")
    cart_update_parser.add_argument("product_id", help="Product ID")
    cart_update_parser.add_argument("quantity", type=int, help="New quantity (0 removes)")
    cart_update_parser.add_argument(
        "--variant", action="append", help="Variant attribute as key=value (repeatable)"
    )

    cart_remove_parser = cart_command("remove", "Remove a line")
    cart_remove_parser.add_argument("product_id", help="Product ID")
    cart_remove_parser.add_argument(
        "--variant", action="append", help="Variant attribute as key=value (repeatable)"
    )

    cart_command("clear", "Empty the cart")
    cart_command("sync", "Reconcile the cart with the catalog")

    # orders (subcommand group)
    orders_parser = subparsers.add_parser("orders", help="Place and manage orders")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command")

    orders_create_parser = orders_subparsers.add_parser(
        "create", help="Place an order from the user's cart"
    )
    orders_create_parser.add_argument("--user", "-u", required=True, help="User ID")
    orders_create_parser.add_argument(
        "--shipping", required=True, help="Shipping address as JSON or @file"
    )
    orders_create_parser.add_argument(
        "--billing", help="Billing address as JSON or @file (default: shipping)"
    )
    orders_create_parser.add_argument(
        "--payment-method", choices=PAYMENT_METHODS, default="stripe", help="Payment method"
    )
    orders_create_parser.add_argument("--note", help="Customer note")
    orders_create_parser.add_argument("--json", action="store_true", help="Output as JSON")

    orders_list_parser = orders_subparsers.add_parser("list", help="List orders, newest first")
    orders_list_parser.add_argument("--user", "-u", help="Only this user's orders")
    orders_list_parser.add_argument(
        "--status", choices=[s.value for s in OrderStatus], help="Filter by status"
    )
    orders_list_parser.add_argument("--limit", "-n", type=int, help="Maximum number of orders")
    orders_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    orders_show_parser = orders_subparsers.add_parser("show", help="Show one order")
    orders_show_parser.add_argument("order_id", help="Order ID")
    orders_show_parser.add_argument("--user", "-u", help="Acting user (default: admin)")
    orders_show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    orders_cancel_parser = orders_subparsers.add_parser("cancel", help="Cancel an order")
    orders_cancel_parser.add_argument("order_id", help="Order ID")
    orders_cancel_parser.add_argument("--user", "-u", required=True, help="Acting user")
    orders_cancel_parser.add_argument(
        "--admin", action="store_true", help="Act as an administrator"
    )
    orders_cancel_parser.add_argument("--reason", help="Cancellation reason")

    orders_status_parser = orders_subparsers.add_parser(
        "set-status", help="Change an order's status (admin)"
    )
    orders_status_parser.add_argument("order_id", help="Order ID")
    orders_status_parser.add_argument("status", choices=[s.value for s in OrderStatus])
    orders_status_parser.add_argument("--note", required=True, help="Reason for the change")
    orders_status_parser.add_argument("--carrier", help="Shipping carrier")
    orders_status_parser.add_argument("--tracking-number", help="Carrier tracking number")

    # progress
    progress_parser = subparsers.add_parser(
        "progress", help="Promote orders whose next fulfillment step is due"
    )
    progress_parser.add_argument(
        "--watch", "-w", action="store_true", help="Keep promoting on an interval"
    )
    progress_parser.add_argument(
        "--interval", type=float, help="Seconds between passes with --watch"
    )

    return parser


GROUP_COMMANDS = {
    "products": (
        "products_command",
        {
            "add": cmd_products_add,
            "list": cmd_products_list,
            "set-status": cmd_products_set_status,
            "restock": cmd_products_restock,
        },
    ),
    "cart": (
        "cart_command",
        {
            "show": cmd_cart_show,
            "add": cmd_cart_add,
            "update": cmd_cart_update,
            "remove": cmd_cart_remove,
            "clear": cmd_cart_clear,
            "sync": cmd_cart_sync,
        },
    ),
    "orders": (
        "orders_command",
        {
            "create": cmd_orders_create,
            "list": cmd_orders_list,
            "show": cmd_orders_show,
            "cancel": cmd_orders_cancel,
            "set-status": cmd_orders_set_status,
        },
    ),
}


def configure_logging(level: str | None) -> None:
    if level is None:
        try:
            level = load_settings().log_level
        except StockholdError:
            level = "INFO"
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(args.log_level)

    # Handle subcommand groups
    if args.command in GROUP_COMMANDS:
        dest, handlers = GROUP_COMMANDS[args.command]
        subcommand = getattr(args, dest, None)
        if not subcommand:
            parser.parse_args([args.command, "--help"])
            return 0
        return handlers[subcommand](args)

    commands = {
        "stock": cmd_stock,
        "progress": cmd_progress,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
