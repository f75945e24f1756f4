from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.models.payout import AllocationRun, Payout, PayoutStatus
from payouts.models.revenue import RevenueTransaction
from payouts.periods import month_period
from payouts.services.commission_service import CommissionService
from payouts.services.engagement_service import EngagementService
from payouts.services.errors import (
    AllocationInProgressError, InconsistentStateError, ValidationError,
)
from payouts.services.payout_service import PayoutAllocator, PeriodSnapshot, allocate_creator
from payouts.services.revenue_service import RevenueService


JANUARY = month_period(2026, 1)
FEBRUARY = month_period(2026, 2)
AFTER_JANUARY = datetime(2026, 2, 15, 12, 0)


async def add_pool(db, amount: int, external_id: str = 'txn', timestamp: datetime = datetime(2026, 1, 10)):
    """Ingest a fee-free charge whose creator pool share is exactly `amount`."""
    await RevenueService(db).ingest_transaction({
        'external_id': external_id,
        'gross_revenue': amount * 2,
        'timestamp': timestamp,
        'fee_breakdown': {'marketplace_fee': 0, 'processor_fee': 0},
    })


async def add_res(db, creator, saves: int, day: date = date(2026, 1, 5)):
    await EngagementService(db).record_engagement(f'recipe-{creator.id}', creator.id, day, {'saves': saves})


async def allocate(db, period=JANUARY, now=AFTER_JANUARY):
    return await PayoutAllocator(db).run_payout_allocation(period.start, period.end, now=now)


def computed_fields(payout: Payout):
    return (
        payout.creator_id,
        Decimal(payout.total_res),
        Decimal(payout.platform_total_res),
        Decimal(payout.res_share),
        payout.creator_pool_amount,
        payout.subscription_payout,
        payout.shop_payout,
        payout.total_payout,
        payout.status,
    )


async def test_pool_split_by_res_share(db_session, make_creator):
    alice = await make_creator()
    bob = await make_creator()
    await add_res(db_session, alice, 300)
    await add_res(db_session, bob, 100)
    await add_pool(db_session, 10_000)

    summary = await allocate(db_session)

    assert summary.period_label == 'January 2026'
    assert summary.platform_total_res == Decimal(400)
    assert summary.creator_pool_total == 10_000
    assert summary.residual == 0
    by_creator = {p.creator_id: p for p in summary.payouts}
    assert by_creator[alice.id].subscription_payout == 7500
    assert by_creator[bob.id].subscription_payout == 2500
    assert by_creator[alice.id].res_share == Decimal('0.75')
    assert by_creator[bob.id].res_share == Decimal('0.25')
    assert all(p.status == PayoutStatus.PENDING.value for p in summary.payouts)


async def test_floor_remainder_stays_with_platform(db_session, make_creator):
    creators = [await make_creator() for _ in range(3)]
    for creator in creators:
        await add_res(db_session, creator, 1)
    await add_pool(db_session, 100)

    summary = await allocate(db_session)

    assert [p.subscription_payout for p in summary.payouts] == [33, 33, 33]
    assert summary.subscription_total == 99
    assert summary.residual == 1


async def test_sum_of_payouts_never_exceeds_pool(db_session, make_creator):
    for saves in (7, 11, 13):
        await add_res(db_session, await make_creator(), saves)
    await add_pool(db_session, 1000)

    summary = await allocate(db_session)

    assert [p.subscription_payout for p in summary.payouts] == [225, 354, 419]
    assert 0 <= summary.residual < summary.payout_count


async def test_shop_commission_added_to_total(db_session, make_creator):
    alice = await make_creator()
    await add_res(db_session, alice, 10)
    await add_pool(db_session, 1000)
    await CommissionService(db_session).record_commission({
        'order_id': 'o1', 'creator_id': alice.id, 'subtotal': 2499, 'fulfilled_at': datetime(2026, 1, 20),
    })

    summary = await allocate(db_session)

    payout = summary.payouts[0]
    assert payout.subscription_payout == 1000
    assert payout.shop_payout == 1249
    assert payout.total_payout == 2249
    assert summary.shop_total == 1249


async def test_creator_without_engagement_gets_only_commission(db_session, make_creator):
    engaged = await make_creator()
    shop_only = await make_creator()
    await add_res(db_session, engaged, 10)
    await add_pool(db_session, 1000)
    await CommissionService(db_session).record_commission({
        'order_id': 'o1', 'creator_id': shop_only.id, 'amount': 500, 'paid_at': datetime(2026, 1, 20),
    })

    summary = await allocate(db_session)

    by_creator = {p.creator_id: p for p in summary.payouts}
    assert by_creator[shop_only.id].total_res == Decimal(0)
    assert by_creator[shop_only.id].res_share == Decimal(0)
    assert by_creator[shop_only.id].subscription_payout == 0
    assert by_creator[shop_only.id].total_payout == 500
    assert by_creator[engaged.id].subscription_payout == 1000


async def test_no_platform_engagement_pays_no_subscription_share(db_session, make_creator):
    creator = await make_creator()
    await add_pool(db_session, 1000)
    await CommissionService(db_session).record_commission({
        'order_id': 'o1', 'creator_id': creator.id, 'amount': 300, 'paid_at': datetime(2026, 1, 20),
    })

    summary = await allocate(db_session)

    assert summary.platform_total_res == Decimal(0)
    assert summary.payouts[0].subscription_payout == 0
    assert summary.payouts[0].total_payout == 300
    assert summary.residual == 1000


async def test_rerun_reproduces_identical_payouts(db_session, make_creator):
    alice = await make_creator()
    bob = await make_creator()
    await add_res(db_session, alice, 300)
    await add_res(db_session, bob, 100)
    await add_pool(db_session, 10_000)

    first = await allocate(db_session)
    await db_session.commit()
    before = [computed_fields(p) for p in first.payouts]

    second = await allocate(db_session)
    await db_session.commit()

    assert [computed_fields(p) for p in second.payouts] == before
    assert second.run_id == first.run_id
    assert second.run_count == 2
    assert second.creator_pool_total == 10_000

    payouts = await db_session.execute(select(Payout))
    assert len(payouts.scalars().all()) == 2
    txn = (await db_session.execute(
        select(RevenueTransaction).execution_options(populate_existing=True)
    )).scalar_one()
    assert txn.allocation_run_id == first.run_id
    assert txn.processed_at is not None


async def test_late_transaction_joins_a_rerun_without_double_counting(db_session, make_creator):
    creator = await make_creator()
    await add_res(db_session, creator, 10)
    await add_pool(db_session, 1000, external_id='early')
    await allocate(db_session)
    await db_session.commit()

    await add_pool(db_session, 500, external_id='late', timestamp=datetime(2026, 1, 30))
    summary = await allocate(db_session)

    assert summary.creator_pool_total == 1500
    assert summary.payouts[0].subscription_payout == 1500


async def test_allocated_revenue_leaves_the_open_pool(db_session, make_creator):
    creator = await make_creator()
    await add_res(db_session, creator, 10)
    await add_pool(db_session, 1000)
    await allocate(db_session)
    await db_session.commit()

    assert await RevenueService(db_session).creator_pool_total(JANUARY.start, JANUARY.end) == 0


async def test_rerun_rejected_once_a_payout_is_paid(db_session, make_creator):
    alice = await make_creator()
    bob = await make_creator()
    await add_res(db_session, alice, 300)
    await add_res(db_session, bob, 100)
    await add_pool(db_session, 10_000)
    summary = await allocate(db_session)
    summary.payouts[0].status = PayoutStatus.PAID.value
    await db_session.commit()
    before = [computed_fields(p) for p in summary.payouts]

    await add_res(db_session, bob, 900)
    await db_session.commit()
    with pytest.raises(InconsistentStateError):
        await allocate(db_session)
    await db_session.rollback()

    result = await db_session.execute(
        select(Payout).order_by(Payout.creator_id).execution_options(populate_existing=True)
    )
    assert [computed_fields(p) for p in result.scalars().all()] == before


async def test_rerun_resets_failed_payout_and_keeps_retry_history(db_session, make_creator):
    creator = await make_creator()
    await add_res(db_session, creator, 10)
    await add_pool(db_session, 1000)
    summary = await allocate(db_session)
    payout = summary.payouts[0]
    payout.status = PayoutStatus.FAILED.value
    payout.retry_count = 2
    payout.failure_reason = 'destination closed'
    await db_session.commit()

    summary = await allocate(db_session)

    payout = summary.payouts[0]
    assert payout.status == PayoutStatus.PENDING.value
    assert payout.retry_count == 2
    assert payout.failure_reason == 'destination closed'


async def test_open_period_rejected(db_session):
    with pytest.raises(InconsistentStateError):
        await allocate(db_session, now=datetime(2026, 1, 20))


async def test_invalid_period_rejected(db_session):
    with pytest.raises(ValidationError):
        await PayoutAllocator(db_session).run_payout_allocation(
            JANUARY.end, JANUARY.start, now=AFTER_JANUARY,
        )


async def test_allocation_run_records_totals(db_session, make_creator):
    creator = await make_creator()
    await add_res(db_session, creator, 10)
    await add_pool(db_session, 1000)

    summary = await allocate(db_session)

    run = await db_session.get(AllocationRun, summary.run_id)
    assert run.run_count == 1
    assert run.creator_pool_total == 1000
    assert run.payout_count == 1
    assert run.last_completed_at == AFTER_JANUARY


def test_allocate_creator_is_pure():
    snapshot = PeriodSnapshot(
        period=JANUARY,
        res_by_creator=MappingProxyType({1: Decimal(1), 2: Decimal(2)}),
        platform_total_res=Decimal(3),
        creator_pool_total=100,
        transaction_ids=(1,),
        commission_by_creator=MappingProxyType({2: 40, 3: 10}),
    )

    first = allocate_creator(snapshot, 1)
    assert (first.subscription_payout, first.shop_payout, first.total_payout) == (33, 0, 33)
    second = allocate_creator(snapshot, 2)
    assert (second.subscription_payout, second.shop_payout, second.total_payout) == (66, 40, 106)
    shop_only = allocate_creator(snapshot, 3)
    assert (shop_only.subscription_payout, shop_only.total_payout) == (0, 10)
    assert allocate_creator(snapshot, 2) == second


async def test_list_and_get_payouts(db_session, make_creator):
    alice = await make_creator()
    bob = await make_creator()
    await add_res(db_session, alice, 3)
    await add_res(db_session, bob, 1)
    await add_pool(db_session, 100)
    summary = await allocate(db_session)

    allocator = PayoutAllocator(db_session)
    everything = await allocator.list_payouts(period_start=JANUARY.start)
    assert [p.creator_id for p in everything] == [alice.id, bob.id]
    only_bob = await allocator.list_payouts(creator_id=bob.id, status=PayoutStatus.PENDING)
    assert [p.id for p in only_bob] == [summary.payouts[1].id]
    assert await allocator.get_payout(summary.payouts[0].id) is summary.payouts[0]
    assert await allocator.list_payouts(period_start=FEBRUARY.start) == []


async def test_earnings_estimate_against_last_payout(db_session, make_creator):
    creator = await make_creator()
    await add_res(db_session, creator, 100)
    await add_pool(db_session, 1000, external_id='jan')
    await allocate(db_session)
    await db_session.commit()

    await add_res(db_session, creator, 50, day=date(2026, 2, 3))
    await add_pool(db_session, 1500, external_id='feb', timestamp=datetime(2026, 2, 3))

    estimate = await PayoutAllocator(db_session).estimate_creator_earnings(creator.id, now=AFTER_JANUARY)

    assert estimate['period_label'] == 'February 2026'
    assert estimate['estimated_payout'] == 1500
    assert estimate['last_period_payout'] == 1000
    assert estimate['percent_change'] == 50.0


class LockNotAvailable(Exception):
    sqlstate = '55P03'


@pytest.fixture
def nowait_lock_fails(monkeypatch):
    """Make every SELECT ... FOR UPDATE NOWAIT fail with the given driver error."""
    original_execute = AsyncSession.execute

    def _install(orig: Exception):
        async def execute(self, statement, *args, **kwargs):
            for_update = getattr(statement, '_for_update_arg', None)
            if for_update is not None and for_update.nowait:
                raise DBAPIError(str(statement), {}, orig)
            return await original_execute(self, statement, *args, **kwargs)

        monkeypatch.setattr(AsyncSession, 'execute', execute)

    return _install


async def test_held_period_lock_reports_allocation_in_progress(db_session, nowait_lock_fails):
    nowait_lock_fails(LockNotAvailable('could not obtain lock on row in relation "allocation_runs"'))

    with pytest.raises(AllocationInProgressError):
        await allocate(db_session)


async def test_held_period_lock_is_409_over_http(client, nowait_lock_fails):
    nowait_lock_fails(LockNotAvailable('could not obtain lock'))

    resp = await client.post('/api/payouts/allocate', json={
        'period_start': '2026-01-01T00:00:00', 'period_end': '2026-02-01T00:00:00',
    })

    assert resp.status_code == 409
    assert 'Another allocation run holds period' in resp.json()['detail']


async def test_other_database_errors_are_not_reported_as_lock_conflicts(db_session, nowait_lock_fails):
    nowait_lock_fails(OSError('disk I/O error'))

    with pytest.raises(DBAPIError) as excinfo:
        await allocate(db_session)

    assert not isinstance(excinfo.value, AllocationInProgressError)
    assert isinstance(excinfo.value.orig, OSError)


@pytest.mark.parametrize('claimed_status', [PayoutStatus.PROCESSING, PayoutStatus.PAID])
async def test_recompute_skips_payout_claimed_mid_run(db_session, make_creator, monkeypatch, claimed_status):
    creator = await make_creator()
    await add_res(db_session, creator, 10)
    await add_pool(db_session, 1000, external_id='early')
    payout_id = (await allocate(db_session)).payouts[0].id
    await db_session.commit()
    await add_pool(db_session, 500, external_id='late', timestamp=datetime(2026, 1, 30))

    original = PayoutAllocator._existing_payouts

    async def claimed_after_read(self, period):
        existing = await original(self, period)
        # A disbursement claims the payout between the read and the write
        await self.db.execute(
            update(Payout)
            .where(Payout.id == payout_id)
            .values(status=claimed_status.value)
            .execution_options(synchronize_session=False)
        )
        return existing

    monkeypatch.setattr(PayoutAllocator, '_existing_payouts', claimed_after_read)

    with pytest.raises(InconsistentStateError):
        await allocate(db_session)

    row = (await db_session.execute(
        select(Payout.total_payout, Payout.status).where(Payout.id == payout_id)
    )).one()
    assert tuple(row) == (1000, claimed_status.value)


async def test_earnings_estimate_includes_last_seven_days(db_session, make_creator):
    creator = await make_creator()
    await add_res(db_session, creator, 20, day=date(2026, 2, 14))
    await add_pool(db_session, 600, external_id='valentines', timestamp=datetime(2026, 2, 14, 9))

    estimate = await PayoutAllocator(db_session).estimate_creator_earnings(creator.id, now=AFTER_JANUARY)

    days = estimate['last_7_days']
    assert [d['day'] for d in days] == [date(2026, 2, n) for n in range(9, 16)]
    assert [d['amount'] for d in days] == [0, 0, 0, 0, 0, 600, 0]
    assert days[5]['label'] == 'Sat'
    assert days[-1]['label'] == 'Sun'
