# storefront/services/orders.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from ..db import orders as orders_db
from ..errors import ApiError
from ..schemas.orders import SHIPPING_STATUSES, ShippingUpdate
from . import notifications

logger = structlog.get_logger().bind(component="orders")

MAX_LIMIT = 200
DEFAULT_LIMIT = 100


def _iso(ts) -> Optional[str]:
    return ts.isoformat() if ts else None


def serialize_order(row: Dict[str, Any]) -> Dict[str, Any]:
    """Convert an order record (with joined items) into the JSON shape the dashboards expect."""
    return {
        "id": row["id"],
        "email": row.get("email"),
        "total": row.get("total") or 0,
        "currency": row.get("currency") or "eur",
        "status": row["status"],
        "shippingStatus": row["shipping_status"],
        "trackingUrl": row.get("tracking_url"),
        "createdAt": _iso(row.get("created_at")),
        "updatedAt": _iso(row.get("updated_at")),
        "items": [
            {
                "id": it["id"],
                "qty": it["qty"],
                "unitPrice": it["unit_price"],
                "lineTotal": it["unit_price"] * it["qty"],
                "workId": it.get("work_id"),
                "workTitle": it.get("work_title") or "Œuvre",
                "workSlug": it.get("work_slug"),
                "artistName": it.get("artist_name") or "Artiste",
                "artistId": it.get("artist_id"),
                "artistSlug": it.get("artist_slug"),
                "variantLabel": it.get("variant_label"),
            }
            for it in row.get("items") or []
        ],
    }


def filter_order_for_artists(order: Dict[str, Any], artist_ids: List[str]) -> Optional[Dict[str, Any]]:
    """Keep only the given artists' items (without artist ids); None when nothing is left."""
    allowed = set(artist_ids)
    items = [it for it in order["items"] if it.get("artistId") in allowed]
    if not items:
        return None
    return {
        **order,
        "items": [
            {k: v for k, v in it.items() if k not in ("artistId", "artistSlug")}
            for it in items
        ],
    }


def _matches_artist(item: Dict[str, Any], needle: str) -> bool:
    n = needle.lower()
    return (
        item.get("artistId") == needle
        or (item.get("artistSlug") or "").lower() == n
        or n in (item.get("artistName") or "").lower()
    )


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return min(max(int(limit), 1), MAX_LIMIT)


def _clean_filter(value: Optional[str]) -> Optional[str]:
    return (value or "").strip().lower() or None


async def list_admin_orders(
    *,
    shipping: Optional[str] = None,
    status: Optional[str] = None,
    artist: Optional[str] = None,
    q: Optional[str] = None,
    sort: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    shipping = _clean_filter(shipping)
    if shipping not in SHIPPING_STATUSES:
        shipping = None
    artist = (artist or "").strip() or None

    rows = await orders_db.list_orders(
        shipping=shipping,
        status=_clean_filter(status),
        artist=artist,
        search=(q or "").strip() or None,
        sort=_clean_filter(sort) or "created_desc",
        limit=clamp_limit(limit),
    )
    orders = [serialize_order(r) for r in rows]
    if artist:
        orders = [
            {**o, "items": [it for it in o["items"] if _matches_artist(it, artist)]}
            for o in orders
        ]
        orders = [o for o in orders if o["items"]]
    return {"ok": True, "orders": orders, "shippingStatuses": SHIPPING_STATUSES}


async def list_author_orders(
    artist_ids: List[str],
    *,
    shipping: Optional[str] = None,
    status: Optional[str] = None,
    sort: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    if not artist_ids:
        return {"ok": True, "orders": [], "shippingStatuses": SHIPPING_STATUSES}

    shipping = _clean_filter(shipping)
    if shipping not in SHIPPING_STATUSES:
        shipping = None
    rows = await orders_db.list_orders(
        shipping=shipping,
        status=_clean_filter(status),
        artist_ids=artist_ids,
        sort=_clean_filter(sort) or "created_desc",
        limit=clamp_limit(limit),
    )
    orders = []
    for r in rows:
        filtered = filter_order_for_artists(serialize_order(r), artist_ids)
        if filtered is not None:
            orders.append(filtered)
    return {"ok": True, "orders": orders, "shippingStatuses": SHIPPING_STATUSES}


async def get_order(order_id: str) -> Dict[str, Any]:
    row = await orders_db.load_order(order_id)
    if not row:
        raise ApiError("order_not_found", status_code=404)
    return serialize_order(row)


def parse_shipping_update(payload: Any) -> ShippingUpdate:
    if not isinstance(payload, dict):
        raise ApiError("invalid_payload")
    try:
        return ShippingUpdate.model_validate(payload)
    except ValidationError as e:
        fields = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
        if "shippingStatus" in fields:
            raise ApiError("invalid_shipping_status")
        raise ApiError("invalid_payload")


def _owned_by(row: Dict[str, Any], artist_ids: List[str]) -> bool:
    items = row.get("items") or []
    return bool(items) and all(it.get("artist_id") in artist_ids for it in items)


async def update_shipping(
    order_id: str,
    update: ShippingUpdate,
    *,
    artist_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Apply a shipping status / tracking URL change.

    `artist_ids` scopes the call to an author: every item of the order must
    belong to one of their artists. A status change emails the buyer.
    """
    current = await orders_db.load_order(order_id)
    if not current:
        raise ApiError("order_not_found", status_code=404)
    if artist_ids is not None and not _owned_by(current, artist_ids):
        raise ApiError("not_authorized_for_order", status_code=403)

    changes = update.changes()
    if not changes:
        return {"ok": True, "updated": False}

    updated = await orders_db.update_order_shipping(order_id, changes)
    if not updated:
        raise ApiError("order_not_found", status_code=404)

    new_status = changes.get("shipping_status")
    logger.info(
        "order_shipping_updated",
        order_id=order_id,
        previous=current["shipping_status"],
        shipping_status=updated["shipping_status"],
        by="author" if artist_ids is not None else "admin",
    )
    if new_status and new_status != current["shipping_status"]:
        await notifications.send_shipping_update(updated, new_status)

    return {"ok": True, "order": serialize_order(updated)}
