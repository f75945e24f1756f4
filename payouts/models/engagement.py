from datetime import datetime, date
from sqlalchemy import String, Integer, ForeignKey, DateTime, Date, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payouts.db.database import Base, utcnow

# RES weights per interaction
SAVE_WEIGHT = 1
COOK_WEIGHT = 5
SHARE_WEIGHT = 3
RATING_WEIGHT = 2
EXCLUSIVE_VIEW_WEIGHT = 2


def engagement_score(
    saves: int,
    cooks: int,
    shares: int,
    ratings: int,
    exclusive_views: int,
) -> int:
    """Recipe Engagement Score for one recipe-day, before tier multiplier."""
    return (
        saves * SAVE_WEIGHT
        + cooks * COOK_WEIGHT
        + shares * SHARE_WEIGHT
        + ratings * RATING_WEIGHT
        + exclusive_views * EXCLUSIVE_VIEW_WEIGHT
    )


class EngagementRecord(Base):
    """Daily engagement counters for one recipe. Rewritten, never incremented."""

    __tablename__ = 'recipe_engagement'

    id: Mapped[int] = mapped_column(primary_key=True)
    recipe_id: Mapped[str] = mapped_column(String(100))
    creator_id: Mapped[int] = mapped_column(
        ForeignKey('creator_profiles.id', ondelete='CASCADE'),
    )
    day: Mapped[date] = mapped_column(Date)

    saves: Mapped[int] = mapped_column(Integer, default=0)
    cooks: Mapped[int] = mapped_column(Integer, default=0)
    shares: Mapped[int] = mapped_column(Integer, default=0)
    ratings: Mapped[int] = mapped_column(Integer, default=0)
    exclusive_views: Mapped[int] = mapped_column(Integer, default=0)

    score: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('recipe_id', 'day', name='uq_engagement_recipe_day'),
        Index('ix_engagement_creator_day', 'creator_id', 'day'),
        Index('ix_engagement_day', 'day'),
    )
