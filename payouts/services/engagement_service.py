"""Engagement Aggregator.

Stores one engagement row per recipe per day and reduces them to a
tier-weighted Recipe Engagement Score (RES) per creator per period:

  score     = saves×1 + cooks×5 + shares×3 + ratings×2 + exclusive_views×2
  total_res = Σ score × multiplier(creator tier)
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Mapping
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.db.database import upsert, utcnow
from payouts.models.engagement import EngagementRecord, engagement_score
from payouts.periods import Period
from payouts.services.creator_service import CreatorService, effective_multiplier
from payouts.services.errors import ValidationError


METRIC_FIELDS = ('saves', 'cooks', 'shares', 'ratings', 'exclusive_views')


def validate_metrics(metrics: Mapping[str, int]) -> dict[str, int]:
    """Return all five counters, rejecting unknown keys and negative or non-integer values."""
    unknown = set(metrics) - set(METRIC_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown engagement metrics: {", ".join(sorted(unknown))}')

    counts = {}
    for field in METRIC_FIELDS:
        value = metrics.get(field, 0)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f'{field} must be an integer, got {value!r}')
        if value < 0:
            raise ValidationError(f'{field} cannot be negative, got {value}')
        counts[field] = value
    return counts


class EngagementService:
    """Upserts daily engagement and computes RES totals."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.creators = CreatorService(db)

    async def record_engagement(
        self,
        recipe_id: str,
        creator_id: int,
        day: date,
        metrics: Mapping[str, int],
    ) -> EngagementRecord:
        """Write the day's counters for a recipe, replacing any earlier write for that day."""
        counts = validate_metrics(metrics)
        if isinstance(day, datetime):
            day = day.date()
        await self.creators.require_creator(creator_id)

        existing = await self.db.execute(
            select(EngagementRecord.creator_id)
            .where(EngagementRecord.recipe_id == recipe_id)
            .where(EngagementRecord.day == day)
        )
        owner = existing.scalar_one_or_none()
        if owner is not None and owner != creator_id:
            raise ValidationError(
                f'Recipe {recipe_id} is attributed to creator {owner}, not {creator_id}'
            )

        score = engagement_score(**counts)
        now = utcnow()
        stmt = upsert(self.db, EngagementRecord).values(
            recipe_id=recipe_id,
            creator_id=creator_id,
            day=day,
            score=score,
            created_at=now,
            updated_at=now,
            **counts,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['recipe_id', 'day'],
            set_={**counts, 'score': score, 'updated_at': now},
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(EngagementRecord)
            .where(EngagementRecord.recipe_id == recipe_id)
            .where(EngagementRecord.day == day)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def total_res_for_creator(
        self,
        creator_id: int,
        period_start: datetime,
        period_end: datetime,
    ) -> Decimal:
        """Tier-weighted RES for one creator. No engagement means 0, not an error."""
        period = Period.of(period_start, period_end)
        creator = await self.creators.require_creator(creator_id)
        first_day, end_day = period.day_bounds()

        result = await self.db.execute(
            select(func.coalesce(func.sum(EngagementRecord.score), 0))
            .where(EngagementRecord.creator_id == creator_id)
            .where(EngagementRecord.day >= first_day)
            .where(EngagementRecord.day < end_day)
        )
        raw = int(result.scalar_one())
        return Decimal(raw) * effective_multiplier(creator)

    async def total_res_by_creator(
        self,
        period_start: datetime,
        period_end: datetime,
    ) -> dict[int, Decimal]:
        """Tier-weighted RES for every creator with engagement in the period, in one read."""
        period = Period.of(period_start, period_end)
        first_day, end_day = period.day_bounds()

        result = await self.db.execute(
            select(EngagementRecord.creator_id, func.sum(EngagementRecord.score))
            .where(EngagementRecord.day >= first_day)
            .where(EngagementRecord.day < end_day)
            .group_by(EngagementRecord.creator_id)
            .having(func.sum(EngagementRecord.score) > 0)
        )
        raw_by_creator = {creator_id: int(raw) for creator_id, raw in result.all()}
        multipliers = await self.creators.multipliers(list(raw_by_creator))

        return {
            creator_id: Decimal(raw) * multipliers[creator_id]
            for creator_id, raw in raw_by_creator.items()
        }

    async def creator_stats(
        self,
        creator_id: int,
        period_start: datetime,
        period_end: datetime,
    ) -> dict:
        """Summed counters and RES for a creator's dashboard."""
        period = Period.of(period_start, period_end)
        creator = await self.creators.require_creator(creator_id)
        first_day, end_day = period.day_bounds()

        columns = [
            func.coalesce(func.sum(getattr(EngagementRecord, field)), 0)
            for field in METRIC_FIELDS
        ]
        result = await self.db.execute(
            select(*columns, func.coalesce(func.sum(EngagementRecord.score), 0))
            .where(EngagementRecord.creator_id == creator_id)
            .where(EngagementRecord.day >= first_day)
            .where(EngagementRecord.day < end_day)
        )
        *totals, raw_res = result.one()
        multiplier = effective_multiplier(creator)

        stats = {field: int(total) for field, total in zip(METRIC_FIELDS, totals)}
        stats.update({
            'creator_id': creator_id,
            'tier': creator.tier,
            'res_multiplier': multiplier,
            'raw_res': int(raw_res),
            'total_res': Decimal(int(raw_res)) * multiplier,
        })
        return stats

    async def top_recipes(
        self,
        creator_id: int,
        period_start: datetime,
        period_end: datetime,
        limit: int = 5,
    ) -> list[dict]:
        """Creator's recipes ranked by summed engagement score."""
        period = Period.of(period_start, period_end)
        first_day, end_day = period.day_bounds()
        total_score = func.sum(EngagementRecord.score).label('score')

        result = await self.db.execute(
            select(
                EngagementRecord.recipe_id,
                func.sum(EngagementRecord.saves),
                func.sum(EngagementRecord.cooks),
                total_score,
            )
            .where(EngagementRecord.creator_id == creator_id)
            .where(EngagementRecord.day >= first_day)
            .where(EngagementRecord.day < end_day)
            .group_by(EngagementRecord.recipe_id)
            .order_by(desc(total_score), EngagementRecord.recipe_id)
            .limit(limit)
        )
        return [
            {'recipe_id': recipe_id, 'saves': int(saves), 'cooks': int(cooks), 'score': int(score)}
            for recipe_id, saves, cooks, score in result.all()
        ]
