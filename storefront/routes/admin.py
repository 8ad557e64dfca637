from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..schemas.orders import OrderDetailOut, OrderListOut
from ..services import notifications
from ..services.orders import (
    get_order,
    list_admin_orders,
    parse_shipping_update,
    update_shipping,
)
from .auth import require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/orders", response_model=OrderListOut)
async def admin_list_orders(
    shipping: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    artist: Optional[str] = Query(None, description="Artist id, slug or name"),
    q: Optional[str] = Query(None, description="Free text on buyer email / order id"),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = Query(None),
):
    return await list_admin_orders(
        shipping=shipping, status=status, artist=artist, q=q, sort=sort, limit=limit
    )


@router.get("/orders/{order_id}", response_model=OrderDetailOut)
async def admin_get_order(order_id: str):
    return {"ok": True, "order": await get_order(order_id)}


@router.patch("/orders/{order_id}")
async def admin_update_order(order_id: str, payload: Dict[str, Any] = Body(default_factory=dict)):
    """Set shippingStatus and/or trackingUrl; the buyer is emailed on a status change."""
    return await update_shipping(order_id, parse_shipping_update(payload))


@router.post("/notifications/flush")
async def admin_flush_notifications(limit: int = Query(50, ge=1, le=500)):
    """
    Send order notifications that never went out (for example while the
    email provider was not configured).
    """
    reports = await notifications.flush_pending(limit)
    return {"ok": True, "dispatched": len(reports), "reports": reports}
