"""Creator registry and dashboard endpoints."""
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.db.database import get_db, utcnow
from payouts.periods import current_month
from payouts.schemas.creator import (
    CreatorCreate, CreatorTierUpdate, CreatorResponse, CreatorStats, TopRecipe, EarningsEstimate,
)
from payouts.services.creator_service import CreatorService
from payouts.services.engagement_service import EngagementService
from payouts.services.errors import PayoutEngineError
from payouts.services.payout_service import PayoutAllocator

router = APIRouter()


def _period_or_current(period_start: datetime | None, period_end: datetime | None):
    """Explicit bounds, or the current calendar month."""
    if period_start is None and period_end is None:
        month = current_month(utcnow())
        return month.start, month.end
    if period_start is None or period_end is None:
        raise HTTPException(status_code=422, detail='Give both period_start and period_end')
    return period_start, period_end


@router.post('', response_model=CreatorResponse, status_code=status.HTTP_201_CREATED)
async def create_creator(
    data: CreatorCreate,
    db: AsyncSession = Depends(get_db),
):
    """Register a creator."""
    try:
        creator = await CreatorService(db).create_creator(**data.model_dump())
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return creator


@router.get('/{creator_id}', response_model=CreatorResponse)
async def get_creator(
    creator_id: int,
    db: AsyncSession = Depends(get_db),
):
    creator = await CreatorService(db).get_creator(creator_id)
    if not creator:
        raise HTTPException(status_code=404, detail='Creator not found')
    return creator


@router.post('/{creator_id}/approve', response_model=CreatorResponse)
async def approve_creator(
    creator_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Admit a creator to the payout program; allocations include them from now on."""
    try:
        creator = await CreatorService(db).approve_application(creator_id)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return creator


@router.post('/{creator_id}/reject', response_model=CreatorResponse)
async def reject_creator(
    creator_id: int,
    db: AsyncSession = Depends(get_db),
):
    try:
        creator = await CreatorService(db).reject_application(creator_id)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return creator


@router.patch('/{creator_id}/tier', response_model=CreatorResponse)
async def update_creator_tier(
    creator_id: int,
    data: CreatorTierUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Change tier; snapshot_multiplier freezes the new tier's multiplier on the profile."""
    try:
        creator = await CreatorService(db).update_tier(
            creator_id, data.tier, snapshot_multiplier=data.snapshot_multiplier,
        )
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return creator


@router.get('/{creator_id}/stats', response_model=CreatorStats)
async def get_creator_stats(
    creator_id: int,
    period_start: datetime | None = Query(None),
    period_end: datetime | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Engagement counters and RES, defaulting to the current month."""
    start, end = _period_or_current(period_start, period_end)
    try:
        stats = await EngagementService(db).creator_stats(creator_id, start, end)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {**stats, 'period_start': start, 'period_end': end}


@router.get('/{creator_id}/top-recipes', response_model=list[TopRecipe])
async def get_top_recipes(
    creator_id: int,
    period_start: datetime | None = Query(None),
    period_end: datetime | None = Query(None),
    limit: int = Query(5, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    start, end = _period_or_current(period_start, period_end)
    try:
        await CreatorService(db).require_creator(creator_id)
        return await EngagementService(db).top_recipes(creator_id, start, end, limit=limit)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get('/{creator_id}/earnings', response_model=EarningsEstimate)
async def get_creator_earnings(
    creator_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Month-to-date payout estimate against last period's payout."""
    try:
        return await PayoutAllocator(db).estimate_creator_earnings(creator_id)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
