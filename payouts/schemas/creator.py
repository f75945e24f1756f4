from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from payouts.models.creator import CreatorTier


class CreatorCreate(BaseModel):
    """Schema for registering a creator. Tier defaults to the one earned by subscribers."""
    user_id: str = Field(..., min_length=1, max_length=100)
    channel_name: str = Field(..., min_length=1, max_length=200)
    subscriber_count: int = Field(0, ge=0)
    tier: CreatorTier | None = None
    youtube_channel_id: str | None = Field(None, max_length=100)
    payout_destination: str = Field(..., min_length=1, max_length=320)
    res_multiplier_override: Decimal | None = None


class CreatorTierUpdate(BaseModel):
    tier: CreatorTier
    snapshot_multiplier: bool = False


class CreatorResponse(BaseModel):
    id: int
    user_id: str
    channel_name: str
    youtube_channel_id: str | None
    subscriber_count: int
    tier: str
    application_status: str
    applied_at: datetime
    approved_at: datetime | None
    res_multiplier_override: Decimal | None
    payout_destination: str | None
    total_earnings: int
    created_at: datetime

    class Config:
        from_attributes = True


class CreatorStats(BaseModel):
    """Engagement summary for a creator's dashboard."""
    creator_id: int
    tier: str
    period_start: datetime
    period_end: datetime
    saves: int
    cooks: int
    shares: int
    ratings: int
    exclusive_views: int
    res_multiplier: Decimal
    raw_res: int
    total_res: Decimal


class TopRecipe(BaseModel):
    recipe_id: str
    saves: int
    cooks: int
    score: int


class DailyEarnings(BaseModel):
    """Subscription share one day's engagement and revenue would earn on their own."""
    day: date
    label: str
    amount: int


class EarningsEstimate(BaseModel):
    """Month-to-date projection; nothing is allocated until the month closes."""
    creator_id: int
    period_start: datetime
    period_end: datetime
    period_label: str
    estimated_payout: int
    subscription_share: int
    shop_commission: int
    res_share: Decimal
    last_period_payout: int
    percent_change: float
    last_7_days: list[DailyEarnings]
