from datetime import datetime
from pydantic import BaseModel, Field


class FeeBreakdown(BaseModel):
    """Fees as reported by the payment provider (minor units)."""
    marketplace_fee: int | None = Field(None, strict=True)
    processor_fee: int | None = Field(None, strict=True)


class TransactionCreate(BaseModel):
    """Payment webhook payload for a completed charge or renewal."""
    external_id: str = Field(..., min_length=1, max_length=200)
    gross_revenue: int = Field(..., strict=True)
    timestamp: datetime
    fee_breakdown: FeeBreakdown | None = None
    user_id: str | None = Field(None, max_length=100)
    product_id: str | None = Field(None, max_length=100)
    currency: str = Field('USD', min_length=3, max_length=3)
    period_start: datetime | None = None
    period_end: datetime | None = None
    is_renewal: bool = False


class TransactionResponse(BaseModel):
    id: int
    external_id: str
    user_id: str | None
    product_id: str | None
    currency: str
    gross_revenue: int
    marketplace_fee: int
    processor_fee: int
    net_revenue: int
    platform_share: int
    creator_pool_share: int
    is_renewal: bool
    timestamp: datetime
    processed_at: datetime | None

    class Config:
        from_attributes = True


class CreatorPoolResponse(BaseModel):
    period_start: datetime
    period_end: datetime
    creator_pool_total: int
