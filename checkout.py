"""
Checkout: turn a signed-in user's cart into an order.

The order is written before the cart is deleted, and the cart is deleted
before the confirmation email goes out. A retried checkout therefore never
finds a surviving cart to charge twice, and a slow mail server never holds up
the response. Nothing is written before the order insert, so a failure while
validating or pricing leaves both the cart and the order collection untouched.
"""
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from cart import ServerBackedCart, round_money, to_money
from catalog import find_product
from database import utcnow
from errors import CartConflictError, EmptyCartError, NotFoundError, ValidationFailed
from notifications import OrderNotifier
from orders import insert_order, order_summary
from schemas import OrderStatus, ShippingAddress

logger = structlog.get_logger(__name__)

Dispatch = Callable[..., Any]


def _run_now(func: Callable[..., Any], *args: Any) -> None:
    func(*args)


def validate_shipping_address(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        raise ValidationFailed("Shipping address is required", field="shippingAddress")
    try:
        address = ShippingAddress.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else "shippingAddress"
        raise ValidationFailed(f"Shipping address field '{field}' is required", field=field)
    return address.model_dump()


class CheckoutOrchestrator:
    """Cart to order conversion for one request.

    ``dispatch(func, *args)`` schedules the confirmation email; the HTTP layer
    passes ``BackgroundTasks.add_task`` so the send happens after the response.
    Without one the email is sent inline.
    """

    def __init__(self, db: Database, notifier: OrderNotifier, dispatch: Optional[Dispatch] = None):
        self.db = db
        self.notifier = notifier
        self.dispatch = dispatch or _run_now

    def create_order(self, user: Dict[str, Any], shipping_address: Any) -> Dict[str, Any]:
        user_id = str(user["_id"])
        cart = ServerBackedCart(self.db, user_id)

        cart_doc = cart.load()
        if not cart_doc or not cart_doc.get("items"):
            raise EmptyCartError()

        address = validate_shipping_address(shipping_address)

        # Prices are re-read from the catalog, never taken from the cart.
        total = Decimal(0)
        items = []
        for line in cart_doc["items"]:
            product = find_product(self.db, line["product_id"])
            if product is None:
                raise NotFoundError("Product", line["product_id"])
            total += to_money(product["price"]) * line["quantity"]
            items.append({
                "product_id": str(product["_id"]),
                "name": product["name"],
                "price": product["price"],
                "image_url": product.get("image_url"),
                "size": line["size"],
                "quantity": line["quantity"],
            })

        timestamp = utcnow()
        order = insert_order(self.db, {
            "user_id": user_id,
            "items": items,
            "total_amount": float(round_money(total)),
            "shipping_address": address,
            "status": OrderStatus.PENDING.value,
            "created_at": timestamp,
            "updated_at": timestamp,
        })
        logger.info("order_created", user_id=user_id, order_number=order["order_number"],
                    total_amount=order["total_amount"], items=len(items))

        try:
            if not cart.clear(version=cart_doc.get("version")):
                # Written to since it was priced; only the ordered quantities come off.
                logger.warning("cart_changed_during_checkout", user_id=user_id,
                               order_number=order["order_number"])
                cart.remove_checked_out(cart_doc["items"])
        except (PyMongoError, CartConflictError):
            # The order is committed; a stale cart is reconciled out of band.
            logger.exception("cart_delete_after_checkout_failed", user_id=user_id,
                             order_number=order["order_number"])

        self.dispatch(self.notifier.send_order_confirmation, user.get("email"), order)
        return order_summary(order)
