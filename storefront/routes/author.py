from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..errors import ApiError
from ..schemas.orders import shipping_label
from ..services.orders import list_author_orders, parse_shipping_update, update_shipping
from .auth import require_author

router = APIRouter(prefix="/api/author", tags=["author"])


@router.get("/orders")
async def author_list_orders(
    artist_ids: List[str] = Depends(require_author),
    shipping: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = Query(None),
):
    """Orders containing the author's works; other artists' items are left out."""
    return await list_author_orders(
        artist_ids, shipping=shipping, status=status, sort=sort, limit=limit
    )


@router.patch("/orders/{order_id}")
async def author_update_order(
    order_id: str,
    payload: Dict[str, Any] = Body(default_factory=dict),
    artist_ids: List[str] = Depends(require_author),
):
    if not artist_ids:
        raise ApiError("no_artist_access", status_code=403)
    update = parse_shipping_update(payload)
    result = await update_shipping(order_id, update, artist_ids=artist_ids)
    if "order" in result:
        result["message"] = f"Statut: {shipping_label(result['order']['shippingStatus'])}"
    return result
