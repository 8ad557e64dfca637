# storefront/services/webhooks.py
from __future__ import annotations

from typing import Any, Dict, Optional

import asyncpg
import stripe
import structlog

from ..errors import ApiError
from ..settings import settings
from .reconcile import reconcile_session

logger = structlog.get_logger().bind(component="webhooks")

HANDLED_EVENTS = ("checkout.session.completed",)

# The database being down is not the provider's problem: acknowledge and log,
# otherwise Stripe retries for days.
PERSISTENCE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError)


def verify_event(raw_body: bytes, signature: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Verify the Stripe signature and return the event.

    Returns None when verification is not configured (no secret or no
    signature header) outside production; everywhere else a bad or missing
    signature raises `invalid_signature`.
    """
    secret = settings.stripe_webhook_secret
    if not secret or not signature:
        if settings.is_production:
            logger.error(
                "webhook_signature_missing",
                has_secret=bool(secret),
                has_signature=bool(signature),
            )
            raise ApiError("invalid_signature")
        logger.warning(
            "webhook_verification_skipped",
            has_secret=bool(secret),
            has_signature=bool(signature),
        )
        return None

    try:
        return stripe.Webhook.construct_event(
            payload=raw_body, sig_header=signature, secret=secret
        )
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning("webhook_signature_invalid", error=str(e))
        raise ApiError("invalid_signature")


async def handle_stripe_webhook(raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
    event = verify_event(raw_body, signature)
    if event is None:
        return {"ok": True, "skipped": True}

    typ = event["type"]
    if typ not in HANDLED_EVENTS:
        logger.info("webhook_event_ignored", type=typ, event_id=event["id"])
        return {"received": True, "ignored": typ}

    session_id = event["data"]["object"]["id"]
    try:
        result = await reconcile_session(session_id)
    except PERSISTENCE_ERRORS as e:
        logger.error("order_not_recorded", session_id=session_id, error=str(e))
        return {"received": True, "error": "order_not_recorded"}

    return {"received": True, **result}
