# storefront/services/checkout.py
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

import asyncpg
import stripe
import structlog
from fastapi.concurrency import run_in_threadpool

from ..db import catalog
from ..errors import ApiError
from ..schemas.orders import CartLine, CheckoutIn
from ..settings import settings

stripe.api_key = settings.stripe_secret_key

logger = structlog.get_logger().bind(component="checkout")


# cart prices below this are euros, anything else is already cents
MAJOR_UNIT_THRESHOLD = Decimal(1000)


def to_minor_units(price: Decimal | int | float) -> int:
    """Normalize a cart price to cents: 45 -> 4500, 4500 -> 4500."""
    value = Decimal(str(price))
    if value < MAJOR_UNIT_THRESHOLD:
        value = value * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _product_name(line: CartLine) -> str:
    title = (line.title or "").strip() or "Œuvre"
    artist = (line.artistName or "").strip()
    return f"{title} — {artist}" if artist else title


def build_line_items(lines: List[CartLine]) -> Tuple[List[Dict[str, Any]], List[Dict[str, str]]]:
    """
    One Stripe line item per cart line. The work/variant ids travel as product
    metadata: they are the only link between this session and the order the
    webhook will create.
    Returns (line_items, invalid_lines).
    """
    line_items: List[Dict[str, Any]] = []
    invalid: List[Dict[str, str]] = []
    for line in lines:
        unit_amount = to_minor_units(line.price)
        if unit_amount <= 0:
            invalid.append({"workId": line.workId, "variantId": line.variantId})
            continue

        product_data: Dict[str, Any] = {
            "name": _product_name(line),
            "metadata": {"workId": line.workId, "variantId": line.variantId},
        }
        if line.image and line.image.startswith("https://"):
            product_data["images"] = [line.image]

        line_items.append({
            "quantity": line.qty,
            "price_data": {
                "currency": settings.currency.lower(),
                "unit_amount": unit_amount,
                "product_data": product_data,
            },
        })
    return line_items, invalid


def shipping_options() -> List[Dict[str, Any]]:
    return [
        {
            "shipping_rate_data": {
                "type": "fixed_amount",
                "display_name": rate["label"],
                "fixed_amount": {"amount": rate["amount"], "currency": settings.currency.lower()},
                "delivery_estimate": {
                    "minimum": {"unit": "business_day", "value": rate["min_days"]},
                    "maximum": {"unit": "business_day", "value": rate["max_days"]},
                },
                "metadata": {"tier": rate["key"]},
            }
        }
        for rate in settings.shipping_rates
    ]


async def _unavailable_lines(lines: List[CartLine]) -> List[Dict[str, str]]:
    try:
        blocked = await catalog.find_unavailable_works([l.workId for l in lines])
    except (RuntimeError, OSError, asyncpg.PostgresError) as e:
        # catalog unreachable: the vacation flag is advisory, keep selling
        logger.warning("checkout_vacation_check_skipped", error=str(e))
        return []
    return [
        {"workId": l.workId, "variantId": l.variantId}
        for l in lines if l.workId in blocked
    ]


async def create_checkout_session(body: CheckoutIn, origin: str) -> Dict[str, Any]:
    """Validate the cart and open a hosted Stripe Checkout session. Returns {"url"}."""
    if not body.items:
        raise ApiError("empty_cart")

    line_items, invalid = build_line_items(body.items)
    if invalid:
        logger.info("checkout_rejected", reason="invalid_price", items=invalid)
        raise ApiError("invalid_price", items=invalid)

    blocked = await _unavailable_lines(body.items)
    if blocked:
        raise ApiError(
            "artist_unavailable",
            message="L'artiste est temporairement indisponible.",
            items=blocked,
        )

    if not settings.stripe_secret_key:
        raise ApiError("stripe_not_configured", status_code=500)

    base = (settings.site_url or origin).rstrip("/")
    params: Dict[str, Any] = {
        "mode": "payment",
        "line_items": line_items,
        "shipping_options": shipping_options(),
        "shipping_address_collection": {"allowed_countries": settings.shipping_countries},
        "allow_promotion_codes": True,
        "success_url": f"{base}/merci?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base}/cart?cancel=1",
    }
    email: Optional[str] = (body.email or "").strip() or None
    if email:
        params["customer_email"] = email

    try:
        session = await run_in_threadpool(stripe.checkout.Session.create, **params)
    except stripe.StripeError as e:
        msg = getattr(e, "user_message", None) or str(e)
        logger.error("checkout_session_failed", error=msg)
        extra = {} if settings.is_production else {"message": msg}
        raise ApiError("checkout_failed", **extra)

    logger.info(
        "checkout_session_created",
        session_id=session["id"],
        lines=len(line_items),
        amount=sum(li["price_data"]["unit_amount"] * li["quantity"] for li in line_items),
    )
    return {"url": session["url"]}
