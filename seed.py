"""Seed script: wipe all data and create a demo creator with a month of activity.

Usage:
    python seed.py

Creates a partner-tier creator with 30 days of recipe engagement,
month-to-date subscription transactions and a few shop orders, all
through the same services the API uses.
"""
import asyncio
import random
from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.db.database import engine, async_session, init_db, utcnow
from payouts.models.creator import CreatorTier
from payouts.periods import current_month
from payouts.services.commission_service import CommissionService
from payouts.services.creator_service import CreatorService
from payouts.services.engagement_service import EngagementService
from payouts.services.payout_service import PayoutAllocator
from payouts.services.revenue_service import RevenueService


DEMO_CREATOR = {
    'user_id': 'demo_eitan_user',
    'channel_name': 'Eitan Bernath',
    'youtube_channel_id': 'UCa_mGJ_h36iQ4hLthsncCCg',
    'subscriber_count': 3_700_000,
    'tier': CreatorTier.PARTNER,
    'payout_destination': 'demo@eitanbernath.com',
}

# Most popular first
DEMO_RECIPES = [
    'eitan-15-minute-pasta',
    'eitan-chocolate-babka',
    'eitan-shakshuka',
    'eitan-crispy-rice-salad',
]

# Plus and Creator subscription prices (minor units)
SUBSCRIPTION_PRICES = (499, 999)

DEMO_ORDERS = [
    {'order_id': 'demo-order-cookbook-1', 'subtotal': 2499},
    {'order_id': 'demo-order-cookbook-2', 'subtotal': 2499},
    {'order_id': 'demo-order-kitchen-bundle-1', 'subtotal': 4999},
]


async def wipe_all(db: AsyncSession):
    """Truncate all tables in dependency-safe order."""
    tables = [
        'creator_payouts',
        'creator_commissions',
        'revenue_transactions',
        'allocation_runs',
        'recipe_engagement',
        'creator_profiles',
    ]
    for table in tables:
        await db.execute(text(f'TRUNCATE TABLE {table} RESTART IDENTITY CASCADE'))
    await db.commit()
    print('✓ All tables wiped')


async def create_creator(db: AsyncSession):
    service = CreatorService(db)
    creator = await service.create_creator(**DEMO_CREATOR)
    creator = await service.approve_application(creator.id)
    await db.commit()
    print(f'  ✓ {creator.channel_name} ({creator.tier}), id={creator.id}')
    return creator


async def create_engagement(db: AsyncSession, creator_id: int, rng: random.Random):
    """30 days of engagement trending upward, busier on weekends."""
    svc = EngagementService(db)
    today = utcnow().date()
    for day_offset in range(29, -1, -1):
        day = today - timedelta(days=day_offset)
        trend = 1 + (30 - day_offset) * 0.02
        weekend = 1.3 if day.weekday() >= 5 else 1.0

        for index, recipe_id in enumerate(DEMO_RECIPES):
            factor = (1 - index * 0.15) * trend * weekend * rng.uniform(0.7, 1.3)
            await svc.record_engagement(recipe_id, creator_id, day, {
                'saves': int(15 * factor),
                'cooks': int(8 * factor),
                'shares': int(5 * factor),
                'ratings': int(3 * factor),
                'exclusive_views': int(10 * factor),
            })
    await db.commit()
    print(f'  ✓ {len(DEMO_RECIPES)} recipes × 30 days of engagement')


async def create_transactions(db: AsyncSession, rng: random.Random, count: int = 20):
    """Month-to-date subscription charges, 70% Plus and 30% Creator."""
    svc = RevenueService(db)
    now = utcnow()
    month = current_month(now)
    elapsed = max(int((now - month.start).total_seconds()), 1)

    for i in range(count):
        timestamp = month.start + timedelta(seconds=rng.randrange(elapsed))
        gross = SUBSCRIPTION_PRICES[1] if rng.random() > 0.7 else SUBSCRIPTION_PRICES[0]
        await svc.ingest_transaction({
            'external_id': f'demo_txn_{month.start:%Y%m}_{i}',
            'user_id': f'demo_subscriber_{i}',
            'product_id': 'creator_monthly' if gross == SUBSCRIPTION_PRICES[1] else 'plus_monthly',
            'gross_revenue': gross,
            'timestamp': timestamp,
            'period_start': timestamp,
            'period_end': timestamp + timedelta(days=30),
            'is_renewal': i % 3 == 0,
        })
    await db.commit()
    pool = await svc.creator_pool_total(month.start, month.end)
    print(f'  ✓ {count} transactions, creator pool so far {pool}')


async def create_orders(db: AsyncSession, creator_id: int):
    svc = CommissionService(db)
    paid_at = utcnow() - timedelta(hours=1)
    for order in DEMO_ORDERS:
        await svc.record_commission({**order, 'creator_id': creator_id, 'fulfilled_at': paid_at})
    await db.commit()
    print(f'  ✓ {len(DEMO_ORDERS)} shop orders')


async def main():
    print()
    print('=' * 50)
    print('  Creator Payouts Seed Script')
    print('=' * 50)
    print()

    rng = random.Random(42)
    await init_db()

    async with async_session() as db:
        print('[1/5] Wiping all data...')
        await wipe_all(db)

        print('[2/5] Creating demo creator...')
        creator = await create_creator(db)

        print('[3/5] Recording engagement...')
        await create_engagement(db, creator.id, rng)

        print('[4/5] Ingesting subscription revenue...')
        await create_transactions(db, rng)

        print('[5/5] Recording shop orders...')
        await create_orders(db, creator.id)

        estimate = await PayoutAllocator(db).estimate_creator_earnings(creator.id)

    await engine.dispose()

    print()
    print('Done! Ready for testing.')
    print()
    print(f'  {estimate["period_label"]} estimate for {DEMO_CREATOR["channel_name"]}:')
    print(f'    subscription share  {estimate["subscription_share"]:,}')
    print(f'    shop commission     {estimate["shop_commission"]:,}')
    print(f'    total               {estimate["estimated_payout"]:,}')
    print()


if __name__ == '__main__':
    asyncio.run(main())
