from datetime import timedelta

import pytest

from payouts.db.database import utcnow
from payouts.models.payout import PayoutStatus
from payouts.periods import previous_month
from payouts.services.engagement_service import EngagementService
from payouts.services.payment_provider import DisbursementResult, SandboxPaymentProvider
from payouts.services.payout_service import PayoutAllocator
from payouts.services.revenue_service import RevenueService
from payouts.worker.settlement_worker import PayoutWorker


class RejectingProvider:
    async def disburse(self, idempotency_key, destination, amount):
        return DisbursementResult(success=False, reason='destination closed')


async def test_allocation_job_allocates_previous_month(db_session, session_factory, make_creator):
    period = previous_month(utcnow())
    creator = await make_creator()
    await EngagementService(db_session).record_engagement(
        'pasta', creator.id, period.start.date(), {'saves': 5},
    )
    await RevenueService(db_session).ingest_transaction({
        'external_id': 'txn_last_month',
        'gross_revenue': 2000,
        'timestamp': period.start + timedelta(hours=1),
        'fee_breakdown': {'marketplace_fee': 0, 'processor_fee': 0},
    })
    await db_session.commit()

    result = await PayoutWorker(session_factory, SandboxPaymentProvider()).run_once('allocation')

    assert result == {'period': period.label, 'payouts': 1, 'creator_pool': 1000, 'residual': 0}
    payouts = await PayoutAllocator(db_session).list_payouts(period_start=period.start)
    assert [p.total_payout for p in payouts] == [1000]


async def test_disbursement_job_reports_outcomes(db_session, session_factory, make_creator, make_payout):
    await make_payout(await make_creator(), total_payout=700)
    await make_payout(await make_creator(), total_payout=0)
    await db_session.commit()

    result = await PayoutWorker(session_factory, RejectingProvider()).run_once('disbursement')

    assert result == {'resumed': 0, 'retried': 0, 'sent': 2, 'failed': 1}
    db_session.expire_all()
    failed = await PayoutAllocator(db_session).list_payouts(status=PayoutStatus.FAILED)
    assert [p.failure_reason for p in failed] == ['destination closed']


async def test_unknown_job_type(session_factory):
    with pytest.raises(ValueError):
        await PayoutWorker(session_factory, SandboxPaymentProvider()).run_once('settlement')
