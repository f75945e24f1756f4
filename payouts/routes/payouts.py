"""Payout allocation and disbursement endpoints.

In production allocation and disbursement run from the worker; the
endpoints exist for manual runs and operator retries.
"""
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payouts.db.database import get_db, get_session_factory
from payouts.models.payout import PayoutStatus
from payouts.schemas.payout import AllocationRequest, AllocationResponse, PayoutResponse, RetryRequest
from payouts.services.disbursement_service import DisbursementCoordinator
from payouts.services.errors import PayoutEngineError
from payouts.services.payment_provider import get_payment_provider
from payouts.services.payout_service import PayoutAllocator

router = APIRouter()


def get_coordinator(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> DisbursementCoordinator:
    return DisbursementCoordinator(session_factory, get_payment_provider())


@router.post('/allocate', response_model=AllocationResponse)
async def allocate_period(
    data: AllocationRequest,
    db: AsyncSession = Depends(get_db),
):
    """Compute payouts for a closed period. Safe to repeat until a payout leaves pending."""
    try:
        summary = await PayoutAllocator(db).run_payout_allocation(
            data.period_start, data.period_end, period_label=data.period_label,
        )
        await db.commit()
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return summary


@router.get('', response_model=list[PayoutResponse])
async def list_payouts(
    period_start: datetime | None = Query(None),
    period_end: datetime | None = Query(None),
    creator_id: int | None = Query(None),
    status: PayoutStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    return await PayoutAllocator(db).list_payouts(
        period_start=period_start,
        period_end=period_end,
        creator_id=creator_id,
        status=status,
        limit=limit,
        offset=offset,
    )


@router.get('/{payout_id}', response_model=PayoutResponse)
async def get_payout(
    payout_id: int,
    db: AsyncSession = Depends(get_db),
):
    payout = await PayoutAllocator(db).get_payout(payout_id)
    if not payout:
        raise HTTPException(status_code=404, detail='Payout not found')
    return payout


@router.post('/{payout_id}/disburse', response_model=PayoutResponse)
async def disburse_payout(
    payout_id: int,
    coordinator: DisbursementCoordinator = Depends(get_coordinator),
):
    """Send a pending payout now. A provider failure is reported on the payout, not as an error."""
    try:
        return await coordinator.disburse(payout_id)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post('/{payout_id}/retry', response_model=PayoutResponse)
async def retry_payout(
    payout_id: int,
    data: RetryRequest | None = None,
    coordinator: DisbursementCoordinator = Depends(get_coordinator),
):
    """Move a failed payout back to pending. force=true overrides the retry limit."""
    force = data.force if data else False
    try:
        return await coordinator.retry(payout_id, force=force)
    except PayoutEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
