from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class AllocationRequest(BaseModel):
    """Closed period to allocate, [period_start, period_end)."""
    period_start: datetime
    period_end: datetime
    period_label: str | None = Field(None, max_length=50)


class RetryRequest(BaseModel):
    force: bool = False


class PayoutResponse(BaseModel):
    id: int
    creator_id: int
    period_start: datetime
    period_end: datetime
    period_label: str
    total_res: Decimal
    platform_total_res: Decimal
    res_share: Decimal
    creator_pool_amount: int
    subscription_payout: int
    shop_payout: int
    total_payout: int
    status: str
    retry_count: int
    failure_reason: str | None
    payment_id: str | None
    paid_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class AllocationResponse(BaseModel):
    run_id: int
    run_count: int
    period_start: datetime
    period_end: datetime
    period_label: str
    platform_total_res: Decimal
    creator_pool_total: int
    subscription_total: int
    shop_total: int
    residual: int
    payout_count: int
    payouts: list[PayoutResponse]

    class Config:
        from_attributes = True
