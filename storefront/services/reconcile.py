# storefront/services/reconcile.py
"""
Turn a completed Stripe Checkout session into a persisted, paid order.

Stripe is the source of truth for what was bought and at which price: the
session and its line items are fetched again here, never taken from the
client. Webhook deliveries are at-least-once, so everything below must be
safe to run several times (and concurrently) for the same session:

- the order row is looked up by session id under `FOR UPDATE`;
- a new order is inserted with `ON CONFLICT (stripe_session_id) DO NOTHING`;
- the notification outbox row is written only by the call that moved the
  order to `paid`, inside the same transaction.
"""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

import stripe
import structlog
from fastapi.concurrency import run_in_threadpool

from .. import db
from ..db import catalog
from ..db import orders as orders_db
from ..schemas.orders import OrderStatus
from ..settings import settings

stripe.api_key = settings.stripe_secret_key

logger = structlog.get_logger().bind(component="reconcile")


def _plain(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


async def fetch_session(session_id: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Full session plus its line items with the product expanded (metadata lives there)."""
    session = await run_in_threadpool(stripe.checkout.Session.retrieve, session_id)
    items = await run_in_threadpool(
        stripe.checkout.Session.list_line_items,
        session_id,
        expand=["data.price.product"],
        limit=100,
    )
    return _plain(session), list(_plain(items).get("data") or [])


def normalize_line_items(
    line_items: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Map Stripe line items to {workId, variantId, qty, unitPrice}.
    Items without a work id, or with a non-positive quantity or price, are
    returned in the second list instead.
    """
    lines: List[Dict[str, Any]] = []
    missing: List[Dict[str, Any]] = []
    for li in line_items:
        li = _plain(li)
        price = _plain(li.get("price"))
        product = price.get("product")
        product = _plain(product) if not isinstance(product, str) else {}
        meta = product.get("metadata") or {}

        work_id = (meta.get("workId") or "").strip()
        variant_id = (meta.get("variantId") or "").strip() or None
        name = li.get("description") or product.get("name") or "Œuvre"
        qty = int(li.get("quantity") or 0)
        unit = price.get("unit_amount")
        if unit is None and qty > 0:
            unit = int(li.get("amount_subtotal") or 0) // qty
        unit = int(unit or 0)

        entry = {"workId": work_id or None, "variantId": variant_id, "name": name}
        if not work_id:
            missing.append({**entry, "reason": "no_work_id"})
        elif qty <= 0:
            missing.append({**entry, "reason": "invalid_quantity"})
        elif unit <= 0:
            missing.append({**entry, "reason": "invalid_price"})
        else:
            lines.append({**entry, "qty": qty, "unitPrice": unit})
    return lines, missing


async def _resolve_against_catalog(
    conn,
    lines: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    variants = await catalog.load_variants(conn, [l["variantId"] for l in lines])
    works = await catalog.existing_work_ids(conn, [l["workId"] for l in lines])

    resolved, missing = [], []
    for line in lines:
        if line["variantId"]:
            variant = variants.get(line["variantId"])
            if not variant or variant["work_id"] != line["workId"]:
                missing.append({**line, "reason": "variant_mismatch"})
                continue
        elif line["workId"] not in works:
            missing.append({**line, "reason": "unknown_work"})
            continue
        resolved.append(line)
    return resolved, missing


async def reconcile_session(session_id: str) -> Dict[str, Any]:
    """
    Record the order for a completed checkout session.

    Returns {"orderId", "created", "transitioned", "missing"}. An order that is
    no longer pending is left untouched and reported with "ignored":
    "already_paid" for a repeated delivery, "status_cancelled" or
    "status_refunded" otherwise. Only a result with transitioned=True carries
    a pending notification.
    """
    session, raw_items = await fetch_session(session_id)
    lines, missing = normalize_line_items(raw_items)

    details = session.get("customer_details") or {}
    email = (details.get("email") or session.get("customer_email") or "").strip() or None
    hint = (session.get("metadata") or {}).get("orderId")
    currency = (session.get("currency") or settings.currency).lower()
    total = session.get("amount_total")
    if total is None:
        total = sum(l["unitPrice"] * l["qty"] for l in lines)

    async with db.transaction() as conn:
        existing = await orders_db.find_order_for_update(conn, session_id, hint)
        if existing and existing["status"] != OrderStatus.PENDING:
            # paid is a repeat delivery; cancelled/refunded are final
            ignored = "already_paid" if existing["status"] == OrderStatus.PAID else f"status_{existing['status']}"
            logger.info(
                "order_not_transitioned",
                session_id=session_id,
                order_id=existing["id"],
                status=existing["status"],
            )
            return {
                "orderId": existing["id"],
                "created": False,
                "transitioned": False,
                "missing": [],
                "ignored": ignored,
            }

        resolved, unresolved = await _resolve_against_catalog(conn, lines)
        missing.extend(unresolved)

        if existing:
            order_id = existing["id"]
            created = False
            transitioned = await orders_db.mark_order_paid(
                conn, order_id, session_id=session_id, email=email, total=total
            )
            if transitioned and await orders_db.count_order_items(conn, order_id) == 0:
                await orders_db.insert_order_items(conn, order_id, resolved)
        else:
            order_id = await orders_db.insert_order(
                conn, session_id=session_id, email=email, total=total, currency=currency
            )
            if order_id is None:
                # a concurrent delivery committed first
                logger.info("order_insert_lost_race", session_id=session_id)
                return {
                    "orderId": None,
                    "created": False,
                    "transitioned": False,
                    "missing": [],
                    "ignored": "already_paid",
                }
            created = True
            transitioned = True
            await orders_db.insert_order_items(conn, order_id, resolved)

        if transitioned:
            await orders_db.enqueue_notification(conn, order_id, missing)

    if missing:
        logger.warning("order_items_missing", session_id=session_id, order_id=order_id, missing=missing)
    logger.info(
        "order_reconciled",
        session_id=session_id,
        order_id=order_id,
        created=created,
        transitioned=transitioned,
        items=len(resolved),
        total=total,
    )
    return {
        "orderId": order_id,
        "created": created,
        "transitioned": transitioned,
        "missing": missing,
    }
