import itertools
import os
from datetime import datetime
from decimal import Decimal

# Point settings at SQLite before payouts is imported
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///:memory:'
os.environ['PAYMENT_PROVIDER'] = 'sandbox'

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from payouts.main import app
from payouts.db.database import Base, get_db, get_session_factory
from payouts.models.creator import CreatorTier
from payouts.models.payout import Payout, PayoutStatus
from payouts.periods import month_period
from payouts.services.creator_service import CreatorService
import payouts.models  # noqa: F401


JANUARY = month_period(2026, 1)
# A moment when January 2026 is closed
AFTER_JANUARY = datetime(2026, 2, 15, 12, 0, 0)


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_async_engine(f'sqlite+aiosqlite:///{tmp_path / "payouts.db"}', echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Database session for direct service calls in tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(session_factory):
    """Async HTTP client for testing."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_creator(db_session):
    """Create creators with unique user ids."""
    counter = itertools.count(1)

    async def _make(tier: CreatorTier = CreatorTier.EMERGING, approved: bool = True, **kwargs):
        n = next(counter)
        kwargs.setdefault('user_id', f'user_{n}')
        kwargs.setdefault('channel_name', f'Channel {n}')
        kwargs.setdefault('payout_destination', f'creator{n}@example.com')
        service = CreatorService(db_session)
        creator = await service.create_creator(tier=tier, **kwargs)
        if approved:
            creator = await service.approve_application(creator.id)
        return creator

    return _make


@pytest.fixture
def make_payout(db_session):
    """Insert a payout row directly, bypassing allocation."""

    async def _make(creator, total_payout: int = 1000, status: PayoutStatus = PayoutStatus.PENDING, **kwargs):
        values = {
            'period_start': JANUARY.start,
            'period_end': JANUARY.end,
            'period_label': JANUARY.label,
            'total_res': Decimal(100),
            'platform_total_res': Decimal(100),
            'res_share': Decimal(1),
            'creator_pool_amount': total_payout,
            'subscription_payout': total_payout,
            'shop_payout': 0,
            'total_payout': total_payout,
            'retry_count': 0,
        }
        values.update(kwargs)
        payout = Payout(creator_id=creator.id, status=PayoutStatus(status).value, **values)
        db_session.add(payout)
        await db_session.flush()
        return payout

    return _make
