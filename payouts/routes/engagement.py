"""Recipe engagement ingestion."""
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.db.database import get_db
from payouts.schemas.engagement import EngagementCreate, EngagementResponse, CreatorResResponse
from payouts.services.engagement_service import EngagementService
from payouts.services.errors import PayoutEngineError

router = APIRouter()


@router.post('', response_model=EngagementResponse)
async def record_engagement(
    data: EngagementCreate,
    db: AsyncSession = Depends(get_db),
):
    """Write a recipe's counters for one day (replaces earlier writes for that day)."""
    try:
        record = await EngagementService(db).record_engagement(
            data.recipe_id, data.creator_id, data.day, data.metrics(),
        )
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return record


@router.get('/creators/{creator_id}/res', response_model=CreatorResResponse)
async def get_creator_res(
    creator_id: int,
    period_start: datetime = Query(...),
    period_end: datetime = Query(...),
    db: AsyncSession = Depends(get_db),
):
    try:
        total_res = await EngagementService(db).total_res_for_creator(
            creator_id, period_start, period_end,
        )
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {
        'creator_id': creator_id,
        'period_start': period_start,
        'period_end': period_end,
        'total_res': total_res,
    }
