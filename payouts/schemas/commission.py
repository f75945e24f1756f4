from datetime import datetime
from pydantic import BaseModel, Field

from payouts.models.commission import OrderStatus


class CommissionCreate(BaseModel):
    """A creator-shop order. Give the commission `amount`, or the `subtotal` to apply the policy rate."""
    order_id: str = Field(..., min_length=1, max_length=200)
    creator_id: int
    amount: int | None = Field(None, ge=0, strict=True)
    subtotal: int | None = Field(None, ge=0, strict=True)
    status: OrderStatus = OrderStatus.PAID
    fulfilled_at: datetime | None = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class CommissionResponse(BaseModel):
    id: int
    order_id: str
    creator_id: int
    order_subtotal: int | None
    amount: int
    platform_fee: int
    status: str
    paid_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class CommissionTotalResponse(BaseModel):
    creator_id: int
    period_start: datetime
    period_end: datetime
    commission_total: int
