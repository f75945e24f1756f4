from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class EngagementCreate(BaseModel):
    """Daily counters for one recipe. A later write for the same day replaces this one."""
    recipe_id: str = Field(..., min_length=1, max_length=100)
    creator_id: int
    day: date
    saves: int = Field(0, ge=0, strict=True)
    cooks: int = Field(0, ge=0, strict=True)
    shares: int = Field(0, ge=0, strict=True)
    ratings: int = Field(0, ge=0, strict=True)
    exclusive_views: int = Field(0, ge=0, strict=True)

    def metrics(self) -> dict[str, int]:
        return self.model_dump(include={'saves', 'cooks', 'shares', 'ratings', 'exclusive_views'})


class EngagementResponse(BaseModel):
    id: int
    recipe_id: str
    creator_id: int
    day: date
    saves: int
    cooks: int
    shares: int
    ratings: int
    exclusive_views: int
    score: int

    class Config:
        from_attributes = True


class CreatorResResponse(BaseModel):
    creator_id: int
    period_start: datetime
    period_end: datetime
    total_res: Decimal
