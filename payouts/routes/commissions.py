"""Creator shop orders."""
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.db.database import get_db
from payouts.schemas.commission import (
    CommissionCreate, OrderStatusUpdate, CommissionResponse, CommissionTotalResponse,
)
from payouts.services.commission_service import CommissionService
from payouts.services.errors import PayoutEngineError

router = APIRouter()


@router.post('', response_model=CommissionResponse)
async def record_commission(
    data: CommissionCreate,
    db: AsyncSession = Depends(get_db),
):
    try:
        record = await CommissionService(db).record_commission(data.model_dump())
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return record


@router.patch('/{order_id}/status', response_model=CommissionResponse)
async def update_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Refund, cancel, or fulfil an order."""
    try:
        record = await CommissionService(db).update_order_status(order_id, data.status)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return record


@router.get('/creators/{creator_id}/total', response_model=CommissionTotalResponse)
async def get_commission_total(
    creator_id: int,
    period_start: datetime = Query(...),
    period_end: datetime = Query(...),
    db: AsyncSession = Depends(get_db),
):
    try:
        total = await CommissionService(db).commission_total(creator_id, period_start, period_end)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {
        'creator_id': creator_id,
        'period_start': period_start,
        'period_end': period_end,
        'commission_total': total,
    }
