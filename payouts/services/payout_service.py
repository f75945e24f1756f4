"""Payout Allocator.

Runs once per closed period and turns engagement, subscription revenue and
shop commission into one payout row per creator:

  res_share           = total_res / platform_total_res       (0 if no platform RES)
  subscription_payout = floor(creator_pool × total_res / platform_total_res)
  shop_payout         = Σ commission on paid/fulfilled orders
  total_payout        = subscription_payout + shop_payout

Two phases: a read-only fan-in pass builds an immutable PeriodSnapshot, then
allocate_creator() maps the snapshot to each creator's numbers without
touching shared state. Floor rounding leaves at most (creators − 1) minor
units of the pool with the platform.

The whole run happens in the caller's transaction: payouts are upserted and
contributing transactions stamped together, so the period commits
all-or-nothing. The period's AllocationRun row is locked for the duration.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from decimal import Decimal, ROUND_FLOOR, localcontext
from types import MappingProxyType
from typing import Mapping
from sqlalchemy import select, update, desc
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.db.database import upsert, utcnow
from payouts.models.payout import Payout, PayoutStatus, AllocationRun, RECOMPUTABLE_STATUSES
from payouts.periods import Period, current_month, to_naive_utc
from payouts.services.commission_service import CommissionService
from payouts.services.creator_service import CreatorService
from payouts.services.engagement_service import EngagementService
from payouts.services.errors import (
    InconsistentStateError, AllocationInProgressError, NotFoundError,
)
from payouts.services.revenue_service import RevenueService

logger = logging.getLogger(__name__)

# Stored precision of res_share
RES_SHARE_QUANTUM = Decimal('1E-10')

# Postgres lock_not_available, raised by FOR UPDATE NOWAIT
LOCK_NOT_AVAILABLE = '55P03'


@dataclass(frozen=True)
class PeriodSnapshot:
    """Everything the per-creator pass reads, captured once per run."""
    period: Period
    res_by_creator: Mapping[int, Decimal]
    platform_total_res: Decimal
    creator_pool_total: int
    transaction_ids: tuple[int, ...]
    commission_by_creator: Mapping[int, int]


@dataclass(frozen=True)
class CreatorAllocation:
    creator_id: int
    total_res: Decimal
    res_share: Decimal
    subscription_payout: int
    shop_payout: int

    @property
    def total_payout(self) -> int:
        return self.subscription_payout + self.shop_payout


@dataclass
class AllocationSummary:
    run_id: int
    run_count: int
    period_start: datetime
    period_end: datetime
    period_label: str
    platform_total_res: Decimal
    creator_pool_total: int
    subscription_total: int
    shop_total: int
    payouts: list[Payout] = field(default_factory=list)

    @property
    def payout_count(self) -> int:
        return len(self.payouts)

    @property
    def residual(self) -> int:
        """Pool left with the platform by floor rounding."""
        return self.creator_pool_total - self.subscription_total


def is_lock_conflict(error: DBAPIError) -> bool:
    """True when the driver reports a NOWAIT lock that someone else holds."""
    code = getattr(error.orig, 'sqlstate', None) or getattr(error.orig, 'pgcode', None)
    return code == LOCK_NOT_AVAILABLE


def allocate_creator(snapshot: PeriodSnapshot, creator_id: int) -> CreatorAllocation:
    """One creator's share of the period. Pure: reads only the snapshot."""
    total_res = snapshot.res_by_creator.get(creator_id, Decimal(0))
    shop_payout = snapshot.commission_by_creator.get(creator_id, 0)

    if snapshot.platform_total_res <= 0 or total_res <= 0:
        return CreatorAllocation(
            creator_id=creator_id,
            total_res=total_res,
            res_share=Decimal(0),
            subscription_payout=0,
            shop_payout=shop_payout,
        )

    with localcontext() as ctx:
        ctx.prec = 60
        # Divide last so the floor applies to the exact product
        subscription_payout = int(
            (snapshot.creator_pool_total * total_res) // snapshot.platform_total_res
        )
        res_share = (total_res / snapshot.platform_total_res).quantize(
            RES_SHARE_QUANTUM, rounding=ROUND_FLOOR,
        )

    return CreatorAllocation(
        creator_id=creator_id,
        total_res=total_res,
        res_share=res_share,
        subscription_payout=subscription_payout,
        shop_payout=shop_payout,
    )


class PayoutAllocator:
    """Computes and stores per-creator payouts for closed periods."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.engagement = EngagementService(db)
        self.revenue = RevenueService(db)
        self.commissions = CommissionService(db)
        self.creators = CreatorService(db)

    async def run_payout_allocation(
        self,
        period_start: datetime,
        period_end: datetime,
        period_label: str | None = None,
        now: datetime | None = None,
    ) -> AllocationSummary:
        """Allocate a closed period. Re-running a still-pending period reproduces the same payouts."""
        period = Period.of(period_start, period_end)
        now = to_naive_utc(now) if now else utcnow()
        label = period_label or period.label

        if not period.is_closed(now):
            raise InconsistentStateError(
                f'Period {label} is still open until {period.end}; allocation rejected'
            )

        run = await self._lock_period(period, now)

        existing = await self._existing_payouts(period)
        frozen = [p for p in existing.values() if p.status not in RECOMPUTABLE_STATUSES]
        if frozen:
            raise InconsistentStateError(
                f'Period {label} has {len(frozen)} payout(s) already processing or paid; '
                f'recompute rejected'
            )

        snapshot = await self.take_snapshot(period, include_run_id=run.id)

        creator_ids = sorted(
            set(snapshot.res_by_creator) | set(snapshot.commission_by_creator) | set(existing)
        )
        allocations = [allocate_creator(snapshot, creator_id) for creator_id in creator_ids]

        payouts = [
            await self._write_payout(existing.get(a.creator_id), a, snapshot, label)
            for a in allocations
        ]
        await self.revenue.mark_processed(list(snapshot.transaction_ids), run.id, now)

        subscription_total = sum(a.subscription_payout for a in allocations)
        run.run_count += 1
        run.platform_total_res = snapshot.platform_total_res
        run.creator_pool_total = snapshot.creator_pool_total
        run.payout_count = len(payouts)
        run.last_completed_at = now
        await self.db.flush()

        summary = AllocationSummary(
            run_id=run.id,
            run_count=run.run_count,
            period_start=period.start,
            period_end=period.end,
            period_label=label,
            platform_total_res=snapshot.platform_total_res,
            creator_pool_total=snapshot.creator_pool_total,
            subscription_total=subscription_total,
            shop_total=sum(a.shop_payout for a in allocations),
            payouts=payouts,
        )
        logger.info(
            f'Allocated {label}: {summary.payout_count} payouts, pool={summary.creator_pool_total}, '
            f'platform_res={summary.platform_total_res}, residual={summary.residual} '
            f'(run #{summary.run_count})'
        )
        return summary

    async def take_snapshot(self, period: Period, include_run_id: int | None = None) -> PeriodSnapshot:
        """Read-only fan-in over engagement, revenue and commission for the period.

        Only approved creators count, on both sides of the RES share.
        """
        approved = await self.creators.approved_ids()
        res_by_creator = {
            creator_id: res
            for creator_id, res in (
                await self.engagement.total_res_by_creator(period.start, period.end)
            ).items()
            if creator_id in approved
        }
        transactions = await self.revenue.contributing_transactions(
            period.start, period.end, include_run_id=include_run_id,
        )
        commissions = {
            creator_id: amount
            for creator_id, amount in (
                await self.commissions.commission_by_creator(period.start, period.end)
            ).items()
            if creator_id in approved
        }

        return PeriodSnapshot(
            period=period,
            res_by_creator=MappingProxyType(res_by_creator),
            platform_total_res=sum(res_by_creator.values(), Decimal(0)),
            creator_pool_total=sum(share for _, share in transactions),
            transaction_ids=tuple(txn_id for txn_id, _ in transactions),
            commission_by_creator=MappingProxyType(commissions),
        )

    async def estimate_creator_earnings(self, creator_id: int, now: datetime | None = None) -> dict:
        """Month-to-date projection for a creator's dashboard. Writes nothing."""
        await self.creators.require_creator(creator_id)
        now = to_naive_utc(now) if now else utcnow()
        period = current_month(now)

        snapshot = await self.take_snapshot(period)
        allocation = allocate_creator(snapshot, creator_id)

        result = await self.db.execute(
            select(Payout)
            .where(Payout.creator_id == creator_id)
            .where(Payout.period_end <= period.start)
            .order_by(desc(Payout.period_end))
            .limit(1)
        )
        last_payout = result.scalar_one_or_none()
        last_total = last_payout.total_payout if last_payout else 0
        percent_change = (
            (allocation.total_payout - last_total) / last_total * 100 if last_total > 0 else 0.0
        )

        return {
            'creator_id': creator_id,
            'period_start': period.start,
            'period_end': period.end,
            'period_label': period.label,
            'estimated_payout': allocation.total_payout,
            'subscription_share': allocation.subscription_payout,
            'shop_commission': allocation.shop_payout,
            'res_share': allocation.res_share,
            'last_period_payout': last_total,
            'percent_change': round(percent_change, 2),
            'last_7_days': await self.daily_earnings(creator_id, now),
        }

    async def daily_earnings(self, creator_id: int, now: datetime, days: int = 7) -> list[dict]:
        """Subscription share each of the last `days` days would pay on its own, oldest first.

        Each day is a one-day period of its own, so amounts are indicative and
        don't sum to the monthly estimate.
        """
        today = datetime.combine(to_naive_utc(now).date(), time.min)
        series = []
        for offset in range(days - 1, -1, -1):
            start = today - timedelta(days=offset)
            snapshot = await self.take_snapshot(Period.of(start, start + timedelta(days=1)))
            series.append({
                'day': start.date(),
                'label': start.strftime('%a'),
                'amount': allocate_creator(snapshot, creator_id).subscription_payout,
            })
        return series

    async def get_payout(self, payout_id: int) -> Payout | None:
        return await self.db.get(Payout, payout_id)

    async def require_payout(self, payout_id: int) -> Payout:
        payout = await self.db.get(Payout, payout_id)
        if not payout:
            raise NotFoundError(f'Payout {payout_id} not found')
        return payout

    async def list_payouts(
        self,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        creator_id: int | None = None,
        status: PayoutStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payout]:
        """Payouts, newest period first."""
        query = select(Payout).order_by(desc(Payout.period_start), Payout.creator_id)
        if period_start is not None:
            query = query.where(Payout.period_start == to_naive_utc(period_start))
        if period_end is not None:
            query = query.where(Payout.period_end == to_naive_utc(period_end))
        if creator_id is not None:
            query = query.where(Payout.creator_id == creator_id)
        if status is not None:
            query = query.where(Payout.status == PayoutStatus(status).value)
        query = query.limit(limit).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _lock_period(self, period: Period, now: datetime) -> AllocationRun:
        """Get-or-create the period's run row and hold a row lock on it until commit."""
        stmt = upsert(self.db, AllocationRun).values(
            period_start=period.start,
            period_end=period.end,
            run_count=0,
            platform_total_res=Decimal(0),
            creator_pool_total=0,
            payout_count=0,
            created_at=now,
        )
        await self.db.execute(
            stmt.on_conflict_do_nothing(index_elements=['period_start', 'period_end'])
        )

        try:
            result = await self.db.execute(
                select(AllocationRun)
                .where(AllocationRun.period_start == period.start)
                .where(AllocationRun.period_end == period.end)
                .with_for_update(nowait=True)
                .execution_options(populate_existing=True)
            )
        except DBAPIError as e:
            if not is_lock_conflict(e):
                raise
            raise AllocationInProgressError(
                f'Another allocation run holds period {period.label}'
            ) from e

        run = result.scalar_one()
        run.last_started_at = now
        return run

    async def _existing_payouts(self, period: Period) -> dict[int, Payout]:
        # Row locks make a concurrent disbursement claim wait for this run
        result = await self.db.execute(
            select(Payout)
            .where(Payout.period_start == period.start)
            .where(Payout.period_end == period.end)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {p.creator_id: p for p in result.scalars().all()}

    async def _write_payout(
        self,
        payout: Payout | None,
        allocation: CreatorAllocation,
        snapshot: PeriodSnapshot,
        label: str,
    ) -> Payout:
        """Overwrite computed fields in place; retry history survives a recompute."""
        values = {
            'period_label': label,
            'total_res': allocation.total_res,
            'platform_total_res': snapshot.platform_total_res,
            'res_share': allocation.res_share,
            'creator_pool_amount': snapshot.creator_pool_total,
            'subscription_payout': allocation.subscription_payout,
            'shop_payout': allocation.shop_payout,
            'total_payout': allocation.total_payout,
            'status': PayoutStatus.PENDING.value,
        }
        if payout is None:
            payout = Payout(
                creator_id=allocation.creator_id,
                period_start=snapshot.period.start,
                period_end=snapshot.period.end,
                retry_count=0,
                **values,
            )
            self.db.add(payout)
            return payout

        result = await self.db.execute(
            update(Payout)
            .where(Payout.id == payout.id)
            .where(Payout.status.in_(RECOMPUTABLE_STATUSES))
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InconsistentStateError(
                f'Payout {payout.id} left pending during allocation of {label}; recompute rejected'
            )
        await self.db.refresh(payout)
        return payout
