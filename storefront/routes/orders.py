# storefront/routes/orders.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request, Response

from ..schemas.orders import CheckoutIn, CheckoutOut
from ..services.checkout import create_checkout_session
from ..services.notifications import dispatch_order_notification
from ..services.rate_limit import RateLimiter, get_checkout_limiter
from ..services.webhooks import handle_stripe_webhook

router = APIRouter(prefix="/api", tags=["orders"])


def _origin(request: Request) -> str:
    h = request.headers
    if h.get("origin"):
        return h["origin"]
    proto = h.get("x-forwarded-proto") or request.url.scheme or "http"
    host = h.get("host") or "localhost:3000"
    return f"{proto}://{host}"


@router.post("/checkout", response_model=CheckoutOut)
async def checkout(
    body: CheckoutIn,
    request: Request,
    response: Response,
    limiter: RateLimiter = Depends(get_checkout_limiter),
):
    await limiter.enforce(request, response)
    return await create_checkout_session(body, _origin(request))


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: Optional[str] = Header(None),
):
    """
    Stripe calls this after payment. A 2xx stops retries, so only a bad
    signature or a provider error while fetching the session fails the call.
    Notifications go out after the response.
    """
    raw_body = await request.body()
    result = await handle_stripe_webhook(raw_body, stripe_signature)
    if result.get("transitioned") and result.get("orderId"):
        background_tasks.add_task(dispatch_order_notification, result["orderId"])
    return result
