"""Subscription revenue webhook."""
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.db.database import get_db
from payouts.schemas.revenue import TransactionCreate, TransactionResponse, CreatorPoolResponse
from payouts.services.errors import PayoutEngineError
from payouts.services.revenue_service import RevenueService

router = APIRouter()


@router.post('/transactions', response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def ingest_transaction(
    data: TransactionCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Payment provider webhook. Redelivery of a known external_id answers 200 with the stored record."""
    try:
        transaction, created = await RevenueService(db).ingest_transaction(data.model_dump())
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    if not created:
        response.status_code = status.HTTP_200_OK
    return transaction


@router.get('/creator-pool', response_model=CreatorPoolResponse)
async def get_creator_pool(
    period_start: datetime = Query(...),
    period_end: datetime = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Unallocated creator pool for a period."""
    try:
        total = await RevenueService(db).creator_pool_total(period_start, period_end)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {'period_start': period_start, 'period_end': period_end, 'creator_pool_total': total}
