# storefront/schemas/orders.py
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class ShippingStatus(str, Enum):
    PENDING = "pending"
    PACKING = "packing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


SHIPPING_STATUSES = [s.value for s in ShippingStatus]

SHIPPING_STATUS_LABELS = {
    ShippingStatus.PENDING: "En attente",
    ShippingStatus.PACKING: "Préparation",
    ShippingStatus.SHIPPED: "Expédiée",
    ShippingStatus.DELIVERED: "Livrée",
}


def shipping_label(value: Optional[str]) -> str:
    if not value:
        return SHIPPING_STATUS_LABELS[ShippingStatus.PENDING]
    try:
        return SHIPPING_STATUS_LABELS[ShippingStatus(value)]
    except ValueError:
        return value


# ---- Checkout ----------------------------------------------------------------

class CartLine(BaseModel):
    workId: str = Field(..., min_length=1)
    variantId: str = Field(..., min_length=1)
    title: str = "Œuvre"
    artistName: Optional[str] = None
    image: Optional[str] = None
    # euros below 1000, cents otherwise; normalized at checkout
    price: Decimal
    qty: int = Field(1, ge=1)

    @field_validator("qty", mode="before")
    @classmethod
    def _floor_qty(cls, v):
        if isinstance(v, float):
            return int(v)
        return v


class CheckoutIn(BaseModel):
    items: List[CartLine] = Field(default_factory=list)
    email: Optional[str] = None


class CheckoutOut(BaseModel):
    url: str


# ---- Orders ------------------------------------------------------------------

class OrderItemOut(BaseModel):
    id: str
    qty: int
    unitPrice: int
    lineTotal: int
    workId: Optional[str] = None
    workTitle: str
    workSlug: Optional[str] = None
    artistName: str
    artistId: Optional[str] = None
    artistSlug: Optional[str] = None
    variantLabel: Optional[str] = None


class OrderOut(BaseModel):
    id: str
    email: Optional[str] = None
    total: int
    currency: str
    status: OrderStatus
    shippingStatus: ShippingStatus
    trackingUrl: Optional[str] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None
    items: List[OrderItemOut]


class OrderDetailOut(BaseModel):
    ok: bool = True
    order: OrderOut


class OrderListOut(BaseModel):
    ok: bool = True
    orders: List[OrderOut]
    shippingStatuses: List[str]


class ShippingUpdate(BaseModel):
    """
    Partial update. A field that is absent is left untouched; an explicit
    `trackingUrl: null` (or blank string) clears the stored URL.
    """
    shippingStatus: Optional[ShippingStatus] = None
    trackingUrl: Optional[str] = None

    @field_validator("shippingStatus", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("trackingUrl", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    def changes(self) -> dict:
        """Column updates carried by this request."""
        out = {}
        if "shippingStatus" in self.model_fields_set and self.shippingStatus is not None:
            out["shipping_status"] = self.shippingStatus.value
        if "trackingUrl" in self.model_fields_set:
            out["tracking_url"] = self.trackingUrl
        return out
