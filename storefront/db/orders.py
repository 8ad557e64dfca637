"""Postgres access for orders, order items and the notification outbox."""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import asyncpg

from . import get_pool

SORTS = {
    "created_desc": "o.created_at DESC",
    "created_asc": "o.created_at ASC",
    "total_desc": "o.total DESC, o.created_at DESC",
    "total_asc": "o.total ASC, o.created_at DESC",
    "shipping_asc": "o.shipping_status ASC, o.created_at DESC",
    "shipping_desc": "o.shipping_status DESC, o.created_at DESC",
}

_ORDER_COLUMNS = """
    o.id, o.email, o.total, o.currency, o.status, o.shipping_status,
    o.tracking_url, o.stripe_session_id, o.created_at, o.updated_at
"""

_ITEMS_SQL = """
    SELECT
        oi.id, oi.order_id, oi.qty, oi.unit_price, oi.work_id, oi.variant_id,
        w.title          AS work_title,
        w.slug           AS work_slug,
        a.id             AS artist_id,
        a.name           AS artist_name,
        a.slug           AS artist_slug,
        a.contact_email  AS artist_email,
        v.label          AS variant_label
    FROM order_items oi
    LEFT JOIN works w    ON w.id = oi.work_id
    LEFT JOIN artists a  ON a.id = w.artist_id
    LEFT JOIN variants v ON v.id = oi.variant_id
    WHERE oi.order_id = ANY($1::text[])
    ORDER BY oi.order_id, oi.seq
"""


def _now():
    return datetime.now(timezone.utc)


def _oid():
    return uuid.uuid4().hex[:24]


async def _attach_items(conn: asyncpg.Connection, rows) -> List[Dict[str, Any]]:
    orders = [dict(r) for r in rows]
    if not orders:
        return []
    item_rows = await conn.fetch(_ITEMS_SQL, [o["id"] for o in orders])
    by_order: Dict[str, List[Dict[str, Any]]] = {}
    for r in item_rows:
        by_order.setdefault(r["order_id"], []).append(dict(r))
    for o in orders:
        o["items"] = by_order.get(o["id"], [])
    return orders


# --- reconciliation (caller owns the transaction) -----------------------------

async def find_order_for_update(
    conn: asyncpg.Connection,
    session_id: str,
    order_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Lock the order bound to a checkout session, falling back to an explicit order id."""
    row = await conn.fetchrow(
        "SELECT id, email, total, status, stripe_session_id FROM orders "
        "WHERE stripe_session_id = $1 FOR UPDATE",
        session_id,
    )
    if row is None and order_id:
        row = await conn.fetchrow(
            "SELECT id, email, total, status, stripe_session_id FROM orders "
            "WHERE id = $1 FOR UPDATE",
            order_id,
        )
    return dict(row) if row else None


async def insert_order(
    conn: asyncpg.Connection,
    *,
    session_id: str,
    email: Optional[str],
    total: int,
    currency: str,
) -> Optional[str]:
    """
    Insert a paid order for a session. Returns None when another transaction
    already holds the session id (the unique constraint decides the winner).
    """
    now = _now()
    return await conn.fetchval(
        """
        INSERT INTO orders (id, email, total, currency, status, shipping_status,
                            stripe_session_id, created_at, updated_at)
        VALUES ($1, $2, $3, $4, 'paid', 'pending', $5, $6, $6)
        ON CONFLICT (stripe_session_id) DO NOTHING
        RETURNING id
        """,
        _oid(),
        email,
        total,
        currency,
        session_id,
        now,
    )


async def mark_order_paid(
    conn: asyncpg.Connection,
    order_id: str,
    *,
    session_id: str,
    email: Optional[str],
    total: int,
) -> bool:
    """Move a pending order to paid. False for any other status."""
    updated = await conn.fetchval(
        """
        UPDATE orders
        SET status = 'paid',
            total = $2,
            email = COALESCE($3, email),
            stripe_session_id = COALESCE(stripe_session_id, $4),
            updated_at = $5
        WHERE id = $1 AND status = 'pending'
        RETURNING id
        """,
        order_id,
        total,
        email,
        session_id,
        _now(),
    )
    return updated is not None


async def count_order_items(conn: asyncpg.Connection, order_id: str) -> int:
    return await conn.fetchval(
        "SELECT COUNT(*) FROM order_items WHERE order_id = $1", order_id
    )


async def insert_order_items(
    conn: asyncpg.Connection,
    order_id: str,
    items: Iterable[Dict[str, Any]],
) -> int:
    rows = [
        (_oid(), order_id, it["workId"], it.get("variantId"), it["qty"], it["unitPrice"])
        for it in items
    ]
    if not rows:
        return 0
    await conn.executemany(
        """
        INSERT INTO order_items (id, order_id, work_id, variant_id, qty, unit_price)
        VALUES ($1, $2, $3, $4, $5, $6)
        """,
        rows,
    )
    return len(rows)


async def enqueue_notification(
    conn: asyncpg.Connection,
    order_id: str,
    missing: List[Dict[str, Any]],
) -> None:
    await conn.execute(
        """
        INSERT INTO order_notifications (order_id, missing, created_at)
        VALUES ($1, $2::jsonb, $3)
        ON CONFLICT (order_id) DO NOTHING
        """,
        order_id,
        json.dumps(missing),
        _now(),
    )


# --- outbox -------------------------------------------------------------------

async def claim_notification(order_id: str) -> Optional[Dict[str, Any]]:
    """Atomically mark an outbox row as dispatched; None if absent or already taken."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            UPDATE order_notifications
            SET dispatched_at = $2
            WHERE order_id = $1 AND dispatched_at IS NULL
            RETURNING order_id, missing
            """,
            order_id,
            _now(),
        )
    if not row:
        return None
    missing = row["missing"]
    if isinstance(missing, str):
        missing = json.loads(missing)
    return {"order_id": row["order_id"], "missing": missing or []}


async def pending_notifications(limit: int = 50) -> List[str]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT order_id FROM order_notifications
            WHERE dispatched_at IS NULL
            ORDER BY created_at
            LIMIT $1
            """,
            limit,
        )
    return [r["order_id"] for r in rows]


# --- queries ------------------------------------------------------------------

async def load_order(order_id: str) -> Optional[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"SELECT {_ORDER_COLUMNS} FROM orders o WHERE o.id = $1", order_id
        )
        if not row:
            return None
        orders = await _attach_items(conn, [row])
    return orders[0]


async def list_orders(
    *,
    shipping: Optional[str] = None,
    status: Optional[str] = None,
    artist: Optional[str] = None,
    artist_ids: Optional[List[str]] = None,
    search: Optional[str] = None,
    sort: str = "created_desc",
    limit: int = 100,
) -> List[Dict[str, Any]]:
    """
    List orders with their items, newest first by default.

    `artist` matches an artist id, slug or name substring; `artist_ids`
    restricts to orders containing at least one work of those artists.
    """
    where_clauses = ["1=1"]
    params: list[Any] = []

    def _param(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    if shipping:
        where_clauses.append(f"o.shipping_status = {_param(shipping)}")
    if status:
        where_clauses.append(f"o.status = {_param(status)}")
    if artist:
        p = _param(artist)
        where_clauses.append(
            f"""EXISTS (
                SELECT 1 FROM order_items oi
                JOIN works w ON w.id = oi.work_id
                JOIN artists a ON a.id = w.artist_id
                WHERE oi.order_id = o.id
                  AND (a.id = {p} OR lower(a.slug) = lower({p})
                       OR strpos(lower(a.name), lower({p})) > 0)
            )"""
        )
    if artist_ids is not None:
        p = _param(list(artist_ids))
        where_clauses.append(
            f"""EXISTS (
                SELECT 1 FROM order_items oi
                JOIN works w ON w.id = oi.work_id
                WHERE oi.order_id = o.id AND w.artist_id = ANY({p}::text[])
            )"""
        )
    if search:
        p = _param(search)
        where_clauses.append(
            f"(strpos(lower(o.email), lower({p})) > 0 OR strpos(lower(o.id), lower({p})) > 0)"
        )

    order_by = SORTS.get(sort, SORTS["created_desc"])
    sql = f"""
        SELECT {_ORDER_COLUMNS}
        FROM orders o
        WHERE {" AND ".join(where_clauses)}
        ORDER BY {order_by}
        LIMIT {_param(limit)}
    """

    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(sql, *params)
        return await _attach_items(conn, rows)


async def update_order_shipping(
    order_id: str,
    updates: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    """Apply `shipping_status` and/or `tracking_url` and return the fresh order."""
    allowed = {k: v for k, v in updates.items() if k in ("shipping_status", "tracking_url")}
    if not allowed:
        return await load_order(order_id)

    sets, params = [], [order_id]
    for col, value in allowed.items():
        params.append(value)
        sets.append(f"{col} = ${len(params)}")
    params.append(_now())
    sets.append(f"updated_at = ${len(params)}")

    pool = await get_pool()
    async with pool.acquire() as conn:
        updated = await conn.fetchval(
            f"UPDATE orders SET {', '.join(sets)} WHERE id = $1 RETURNING id",
            *params,
        )
    if updated is None:
        return None
    return await load_order(order_id)
