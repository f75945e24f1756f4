from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from payouts.models.payout import AllocationRun
from payouts.models.revenue import RevenueTransaction
from payouts.periods import month_period
from payouts.services.errors import ValidationError
from payouts.services.revenue_service import RevenueService, split_revenue, floor_fraction


JANUARY = month_period(2026, 1)


def _txn(external_id='txn_1', gross=1000, timestamp=datetime(2026, 1, 10), **extra):
    return {'external_id': external_id, 'gross_revenue': gross, 'timestamp': timestamp, **extra}


def test_floor_fraction_rounds_down():
    assert floor_fraction(999, Decimal('0.30')) == 299
    assert floor_fraction(691, Decimal('0.5')) == 345


def test_split_with_configured_rates():
    split = split_revenue(1000)
    assert split.marketplace_fee == 300
    assert split.processor_fee == 10
    assert split.net_revenue == 690
    assert split.platform_share == 345
    assert split.creator_pool_share == 345


def test_split_remainder_goes_to_creator_pool():
    split = split_revenue(999)
    assert (split.marketplace_fee, split.processor_fee) == (299, 9)
    assert split.net_revenue == 691
    assert split.platform_share == 345
    assert split.creator_pool_share == 346
    assert split.marketplace_fee + split.processor_fee + split.platform_share + split.creator_pool_share == 999


def test_split_uses_reported_fees():
    split = split_revenue(1000, marketplace_fee=150, processor_fee=29)
    assert split.net_revenue == 821
    assert split.platform_share == 410
    assert split.creator_pool_share == 411


def test_fees_above_gross_rejected():
    with pytest.raises(ValidationError):
        split_revenue(100, marketplace_fee=90, processor_fee=20)


async def test_ingest_stores_breakdown(db_session):
    txn, created = await RevenueService(db_session).ingest_transaction(
        _txn(fee_breakdown={'marketplace_fee': 150, 'processor_fee': 29}, user_id='u1', is_renewal=True),
    )
    assert created
    assert txn.net_revenue == 821
    assert txn.creator_pool_share == 411
    assert txn.is_renewal
    assert txn.processed_at is None


@pytest.mark.parametrize('raw', [
    _txn(gross=0),
    _txn(gross=-5),
    _txn(gross=10.5),
    _txn(external_id=''),
    _txn(timestamp=None),
    _txn(fee_breakdown={'marketplace_fee': -1}),
    _txn(gross=100, fee_breakdown={'marketplace_fee': 90, 'processor_fee': 20}),
])
async def test_invalid_transactions_rejected(db_session, raw):
    with pytest.raises(ValidationError):
        await RevenueService(db_session).ingest_transaction(raw)


async def test_duplicate_delivery_keeps_first_record(db_session):
    svc = RevenueService(db_session)
    first, created = await svc.ingest_transaction(_txn(gross=1000))
    again, created_again = await svc.ingest_transaction(_txn(gross=5000))

    assert created and not created_again
    assert again.id == first.id
    assert again.gross_revenue == 1000
    count = await db_session.execute(select(func.count()).select_from(RevenueTransaction))
    assert count.scalar_one() == 1


async def test_creator_pool_total_counts_period_only(db_session):
    svc = RevenueService(db_session)
    await svc.ingest_transaction(_txn('dec', timestamp=datetime(2025, 12, 31, 23, 59)))
    await svc.ingest_transaction(_txn('jan-a', timestamp=datetime(2026, 1, 1)))
    await svc.ingest_transaction(_txn('jan-b', gross=999, timestamp=datetime(2026, 1, 31, 23, 59)))
    await svc.ingest_transaction(_txn('feb', timestamp=datetime(2026, 2, 1)))

    assert await svc.creator_pool_total(JANUARY.start, JANUARY.end) == 345 + 346


async def test_processed_transactions_leave_the_pool(db_session):
    svc = RevenueService(db_session)
    first, _ = await svc.ingest_transaction(_txn('a'))
    await svc.ingest_transaction(_txn('b'))

    run = AllocationRun(period_start=JANUARY.start, period_end=JANUARY.end)
    db_session.add(run)
    await db_session.flush()

    marked = await svc.mark_processed([first.id], run.id, datetime(2026, 2, 1, 2))
    assert marked == 1
    assert await svc.creator_pool_total(JANUARY.start, JANUARY.end) == 345
    # The run that folded it still sees it
    assert await svc.creator_pool_total(JANUARY.start, JANUARY.end, include_run_id=run.id) == 690

    # Already-processed rows keep their original marker
    assert await svc.mark_processed([first.id], run.id + 1, datetime(2026, 3, 1)) == 0
    stored = await svc.get_by_external_id('a')
    assert stored.allocation_run_id == run.id
    assert stored.processed_at == datetime(2026, 2, 1, 2)
