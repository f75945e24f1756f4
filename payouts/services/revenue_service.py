"""Revenue Ledger.

Decomposes each subscription charge delivered by the payment webhook:

  net            = gross − marketplace_fee − processor_fee
  platform_share = floor(net × platform_share_ratio)
  creator_pool   = net − platform_share

Fee and split rates come from settings so they can follow each
payment-provider agreement. All amounts are integer minor units.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Mapping
from sqlalchemy import select, func, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.config import settings
from payouts.db.database import upsert, utcnow
from payouts.models.revenue import RevenueTransaction
from payouts.periods import Period, to_naive_utc
from payouts.services.errors import ValidationError

logger = logging.getLogger(__name__)


def floor_fraction(amount: int, rate: Decimal) -> int:
    """floor(amount × rate) without going through float."""
    return int((Decimal(amount) * Decimal(rate)).to_integral_value(rounding=ROUND_FLOOR))


def _require_amount(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{name} must be an integer amount in minor units, got {value!r}')
    if value < 0:
        raise ValidationError(f'{name} cannot be negative, got {value}')
    return value


@dataclass(frozen=True)
class RevenueSplit:
    marketplace_fee: int
    processor_fee: int
    net_revenue: int
    platform_share: int
    creator_pool_share: int


def split_revenue(
    gross_revenue: int,
    marketplace_fee: int | None = None,
    processor_fee: int | None = None,
) -> RevenueSplit:
    """Fees default to the configured rates when the provider didn't report them."""
    if marketplace_fee is None:
        marketplace_fee = floor_fraction(gross_revenue, settings.marketplace_fee_rate)
    if processor_fee is None:
        processor_fee = floor_fraction(gross_revenue, settings.processor_fee_rate)

    net_revenue = gross_revenue - marketplace_fee - processor_fee
    if net_revenue < 0:
        raise ValidationError(
            f'Fees {marketplace_fee} + {processor_fee} exceed gross revenue {gross_revenue}'
        )

    platform_share = floor_fraction(net_revenue, settings.platform_share_ratio)
    return RevenueSplit(
        marketplace_fee=marketplace_fee,
        processor_fee=processor_fee,
        net_revenue=net_revenue,
        platform_share=platform_share,
        creator_pool_share=net_revenue - platform_share,
    )


class RevenueService:
    """Ingests subscription transactions and totals the creator pool."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def ingest_transaction(self, raw: Mapping[str, Any]) -> tuple[RevenueTransaction, bool]:
        """Store a webhook transaction. Returns (transaction, created).

        A redelivered external_id returns the stored row untouched with
        created=False; at-least-once delivery is expected upstream.
        """
        external_id = raw.get('external_id')
        if not isinstance(external_id, str) or not external_id.strip():
            raise ValidationError('external_id is required')

        gross_revenue = _require_amount('gross_revenue', raw.get('gross_revenue'))
        if gross_revenue <= 0:
            raise ValidationError(f'gross_revenue must be positive, got {gross_revenue}')

        timestamp = raw.get('timestamp')
        if not isinstance(timestamp, datetime):
            raise ValidationError('timestamp is required')

        fees = raw.get('fee_breakdown') or {}
        marketplace_fee = fees.get('marketplace_fee')
        processor_fee = fees.get('processor_fee')
        if marketplace_fee is not None:
            _require_amount('marketplace_fee', marketplace_fee)
        if processor_fee is not None:
            _require_amount('processor_fee', processor_fee)

        split = split_revenue(gross_revenue, marketplace_fee, processor_fee)

        period_start = raw.get('period_start')
        period_end = raw.get('period_end')

        stmt = upsert(self.db, RevenueTransaction).values(
            external_id=external_id,
            user_id=raw.get('user_id'),
            product_id=raw.get('product_id'),
            currency=raw.get('currency') or 'USD',
            gross_revenue=gross_revenue,
            marketplace_fee=split.marketplace_fee,
            processor_fee=split.processor_fee,
            net_revenue=split.net_revenue,
            platform_share=split.platform_share,
            creator_pool_share=split.creator_pool_share,
            period_start=to_naive_utc(period_start) if period_start else None,
            period_end=to_naive_utc(period_end) if period_end else None,
            is_renewal=bool(raw.get('is_renewal', False)),
            timestamp=to_naive_utc(timestamp),
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=['external_id'])
        inserted = await self.db.execute(stmt.returning(RevenueTransaction.id))
        created = inserted.scalar_one_or_none() is not None

        if not created:
            logger.info(f'Duplicate delivery of transaction {external_id}, keeping stored values')

        transaction = await self.get_by_external_id(external_id)
        return transaction, created

    async def get_by_external_id(self, external_id: str) -> RevenueTransaction | None:
        result = await self.db.execute(
            select(RevenueTransaction)
            .where(RevenueTransaction.external_id == external_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def creator_pool_total(
        self,
        period_start: datetime,
        period_end: datetime,
        include_run_id: int | None = None,
    ) -> int:
        """Σ creator_pool_share of unprocessed transactions stamped inside the period.

        include_run_id also counts transactions already folded by that
        allocation run, so re-running a period reproduces its own pool.
        """
        period = Period.of(period_start, period_end)
        result = await self.db.execute(
            select(func.coalesce(func.sum(RevenueTransaction.creator_pool_share), 0))
            .where(self._in_period(period))
            .where(self._unprocessed(include_run_id))
        )
        return int(result.scalar_one())

    async def contributing_transactions(
        self,
        period_start: datetime,
        period_end: datetime,
        include_run_id: int | None = None,
    ) -> list[tuple[int, int]]:
        """(id, creator_pool_share) pairs behind creator_pool_total, ordered by id."""
        period = Period.of(period_start, period_end)
        result = await self.db.execute(
            select(RevenueTransaction.id, RevenueTransaction.creator_pool_share)
            .where(self._in_period(period))
            .where(self._unprocessed(include_run_id))
            .order_by(RevenueTransaction.id)
        )
        return [(txn_id, int(share)) for txn_id, share in result.all()]

    async def mark_processed(
        self,
        transaction_ids: list[int],
        run_id: int,
        processed_at: datetime,
    ) -> int:
        """Stamp transactions as folded into an allocation run. Already-stamped rows keep their marker."""
        if not transaction_ids:
            return 0
        result = await self.db.execute(
            update(RevenueTransaction)
            .where(RevenueTransaction.id.in_(transaction_ids))
            .where(RevenueTransaction.processed_at.is_(None))
            .values(processed_at=processed_at, allocation_run_id=run_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def _in_period(period: Period):
        return (RevenueTransaction.timestamp >= period.start) & (RevenueTransaction.timestamp < period.end)

    @staticmethod
    def _unprocessed(include_run_id: int | None):
        if include_run_id is None:
            return RevenueTransaction.processed_at.is_(None)
        return or_(
            RevenueTransaction.processed_at.is_(None),
            RevenueTransaction.allocation_run_id == include_run_id,
        )
