"""
Checkout: totals and order records.

No payment is taken; placing an order writes an order document and empties
the cart.
"""
from datetime import datetime, timezone
from typing import Dict, List

from catalog import as_number
from config import FREE_SHIPPING_THRESHOLD, SHIPPING_FEE, TAX_RATE
from errors import ValidationError, WriteThroughError
from logging_config import get_logger
from schemas import Order, OrderItem, ShippingInfo

logger = get_logger("checkout")

ORDERS = "orders"
REQUIRED_SHIPPING_FIELDS = ("name", "email", "phone", "address", "city", "zip_code")


def calculate_totals(lines: List[dict]) -> Dict[str, float]:
    subtotal = sum(as_number((line.get("product") or {}).get("price")) * line["quantity"] for line in lines)
    shipping = 0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    tax = subtotal * TAX_RATE
    return {
        "subtotal": round(subtotal, 2),
        "shipping": shipping,
        "tax": round(tax, 2),
        "total": round(subtotal + shipping + tax, 2),
    }


def validate_shipping(info: ShippingInfo) -> None:
    if not all((getattr(info, field) or "").strip() for field in REQUIRED_SHIPPING_FIELDS):
        raise ValidationError("Please fill in all shipping details")


def place_order(store, cart, shipping_info: ShippingInfo, payment_method: str = "card") -> dict:
    """Record the order for the cart's current lines, then clear the cart.

    Returns the stored order with its id and whether the cart was emptied;
    a failed cart reset does not undo the order.
    """
    lines = cart.lines
    if not lines:
        raise ValidationError("Your cart is empty")
    validate_shipping(shipping_info)
    totals = calculate_totals(lines)
    now_ms = cart.clock()
    identity = cart.identity
    order = Order(
        user_id=identity.uid if identity else None,
        user_email=shipping_info.email,
        items=[
            OrderItem(
                product_id=line["product_id"],
                name=(line.get("product") or {}).get("name", ""),
                brand=(line.get("product") or {}).get("brand", ""),
                price=as_number((line.get("product") or {}).get("price")),
                quantity=line["quantity"],
            )
            for line in lines
        ],
        shipping_info=shipping_info,
        payment_method=payment_method,
        subtotal=totals["subtotal"],
        shipping=totals["shipping"],
        tax=totals["tax"],
        order_total=totals["total"],
        order_number=f"MB{now_ms}",
        created_at=datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc),
    )
    data = order.model_dump()
    order_id = store.add(ORDERS, data)
    logger.info(
        "Order %s placed (%s, %.2f)", order.order_number, order_id, order.order_total,
        extra={"event_type": "order_placed"},
    )
    cart_cleared = True
    try:
        cart.clear()
    except WriteThroughError as e:
        logger.warning("Order %s placed but cart not cleared: %s", order.order_number, e.message)
        cart_cleared = False
    return {"id": order_id, **data, "cart_cleared": cart_cleared}
