"""Shop Commission Ledger.

Creators keep a fixed share of each shop order (policy: 50% of subtotal);
only paid or fulfilled orders count toward a period.
"""
import logging
from datetime import datetime
from typing import Any, Mapping
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.config import settings
from payouts.db.database import upsert, utcnow
from payouts.models.commission import (
    CommissionRecord, OrderStatus, PAYABLE_STATUSES, CLOSED_STATUSES,
)
from payouts.models.payout import Payout, PayoutStatus
from payouts.periods import Period, to_naive_utc
from payouts.services.creator_service import CreatorService
from payouts.services.errors import ValidationError, NotFoundError
from payouts.services.revenue_service import floor_fraction

logger = logging.getLogger(__name__)

# Allowed order status changes
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.FULFILLED, OrderStatus.REFUNDED, OrderStatus.CANCELLED},
    OrderStatus.FULFILLED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),
    OrderStatus.CANCELLED: set(),
}


def split_order(subtotal: int) -> tuple[int, int]:
    """(creator_commission, platform_fee) for an order subtotal."""
    commission = floor_fraction(subtotal, settings.shop_commission_rate)
    return commission, subtotal - commission


class CommissionService:
    """Records shop orders and totals creator commission per period."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.creators = CreatorService(db)

    async def record_commission(self, raw: Mapping[str, Any]) -> CommissionRecord:
        """Upsert a shop order by order_id.

        Either `amount` (commission already computed upstream) or `subtotal`
        must be given; from a subtotal the policy rate is applied.
        """
        order_id = raw.get('order_id')
        if not isinstance(order_id, str) or not order_id.strip():
            raise ValidationError('order_id is required')

        creator_id = raw.get('creator_id')
        if isinstance(creator_id, bool) or not isinstance(creator_id, int):
            raise ValidationError('creator_id is required')
        await self.creators.require_creator(creator_id)

        amount = raw.get('amount')
        subtotal = raw.get('subtotal')
        for name, value in (('amount', amount), ('subtotal', subtotal)):
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise ValidationError(f'{name} must be a non-negative integer, got {value!r}')

        if amount is None and subtotal is None:
            raise ValidationError('Either amount or subtotal is required')
        if amount is None:
            amount, platform_fee = split_order(subtotal)
        elif subtotal is not None:
            if amount > subtotal:
                raise ValidationError(f'Commission {amount} exceeds order subtotal {subtotal}')
            platform_fee = subtotal - amount
        else:
            platform_fee = 0

        try:
            status = OrderStatus(raw.get('status') or OrderStatus.PAID.value)
        except ValueError:
            raise ValidationError(f'Unknown order status {raw.get("status")!r}')
        paid_at = raw.get('fulfilled_at') or raw.get('paid_at')
        if paid_at is None and status.value in PAYABLE_STATUSES:
            raise ValidationError('Paid orders need a paid/fulfilled timestamp')
        paid_at = to_naive_utc(paid_at) if paid_at else None

        existing = await self._get(order_id)
        if existing:
            if existing.creator_id != creator_id:
                raise ValidationError(
                    f'Order {order_id} belongs to creator {existing.creator_id}, not {creator_id}'
                )
            current = OrderStatus(existing.status)
            if current.value in CLOSED_STATUSES:
                logger.info(f'Order {order_id} is already {current.value}; ignoring redelivery')
                return existing
            if status != current and status not in ORDER_TRANSITIONS[current]:
                # Stale delivery; status only moves forward
                logger.info(
                    f'Order {order_id} stays {current.value}; delivery said {status.value}'
                )
                status = current
            paid_at = paid_at or existing.paid_at

        now = utcnow()
        values = {
            'amount': amount,
            'order_subtotal': subtotal,
            'platform_fee': platform_fee,
            'status': status.value,
            'paid_at': paid_at,
            'updated_at': now,
        }
        stmt = upsert(self.db, CommissionRecord).values(
            order_id=order_id, creator_id=creator_id, created_at=now, **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['order_id'],
            set_=values,
            where=CommissionRecord.status.not_in(CLOSED_STATUSES),
        )
        await self.db.execute(stmt)
        return await self._get(order_id)

    async def update_order_status(self, order_id: str, status: OrderStatus) -> CommissionRecord:
        """Move an order through its lifecycle.

        Refunds after the order's period was disbursed are not clawed back;
        they're logged for finance to reconcile by hand.
        """
        record = await self._get(order_id)
        if not record:
            raise NotFoundError(f'Order {order_id} not found')

        current = OrderStatus(record.status)
        new = OrderStatus(status)
        if new == current:
            return record
        if new not in ORDER_TRANSITIONS[current]:
            raise ValidationError(f'Order {order_id} cannot go from {current.value} to {new.value}')

        if new == OrderStatus.REFUNDED and record.paid_at is not None:
            if await self._paid_payout_covers(record.creator_id, record.paid_at):
                logger.warning(
                    f'Order {order_id} refunded after its period was paid out; '
                    f'commission {record.amount} stays with creator {record.creator_id}'
                )

        record.status = new.value
        await self.db.flush()
        return record

    async def commission_total(
        self,
        creator_id: int,
        period_start: datetime,
        period_end: datetime,
    ) -> int:
        """Σ commission on the creator's paid/fulfilled orders paid inside the period."""
        period = Period.of(period_start, period_end)
        result = await self.db.execute(
            select(func.coalesce(func.sum(CommissionRecord.amount), 0))
            .where(CommissionRecord.creator_id == creator_id)
            .where(CommissionRecord.status.in_(PAYABLE_STATUSES))
            .where(CommissionRecord.paid_at >= period.start)
            .where(CommissionRecord.paid_at < period.end)
        )
        return int(result.scalar_one())

    async def commission_by_creator(
        self,
        period_start: datetime,
        period_end: datetime,
    ) -> dict[int, int]:
        """Positive commission totals for every creator in the period."""
        period = Period.of(period_start, period_end)
        result = await self.db.execute(
            select(CommissionRecord.creator_id, func.sum(CommissionRecord.amount))
            .where(CommissionRecord.status.in_(PAYABLE_STATUSES))
            .where(CommissionRecord.paid_at >= period.start)
            .where(CommissionRecord.paid_at < period.end)
            .group_by(CommissionRecord.creator_id)
            .having(func.sum(CommissionRecord.amount) > 0)
        )
        return {creator_id: int(total) for creator_id, total in result.all()}

    async def _get(self, order_id: str) -> CommissionRecord | None:
        result = await self.db.execute(
            select(CommissionRecord)
            .where(CommissionRecord.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _paid_payout_covers(self, creator_id: int, moment: datetime) -> bool:
        result = await self.db.execute(
            select(Payout.id)
            .where(Payout.creator_id == creator_id)
            .where(Payout.status == PayoutStatus.PAID.value)
            .where(Payout.period_start <= moment)
            .where(Payout.period_end > moment)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
