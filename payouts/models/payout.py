from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    String, Integer, BigInteger, Numeric, ForeignKey, DateTime, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payouts.db.database import Base, utcnow


class PayoutStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    PAID = 'paid'
    FAILED = 'failed'


# Allowed disbursement transitions
PAYOUT_TRANSITIONS = {
    PayoutStatus.PENDING: {PayoutStatus.PROCESSING},
    PayoutStatus.PROCESSING: {PayoutStatus.PAID, PayoutStatus.FAILED},
    PayoutStatus.FAILED: {PayoutStatus.PENDING},
    PayoutStatus.PAID: set(),
}

# Statuses an allocation re-run may overwrite
RECOMPUTABLE_STATUSES = (PayoutStatus.PENDING.value, PayoutStatus.FAILED.value)


class Payout(Base):
    """One creator's payout for one closed period."""

    __tablename__ = 'creator_payouts'

    id: Mapped[int] = mapped_column(primary_key=True)
    creator_id: Mapped[int] = mapped_column(
        ForeignKey('creator_profiles.id', ondelete='CASCADE'),
    )

    period_start: Mapped[datetime] = mapped_column(DateTime)
    period_end: Mapped[datetime] = mapped_column(DateTime)
    period_label: Mapped[str] = mapped_column(String(50))

    # Engagement
    total_res: Mapped[Decimal] = mapped_column(Numeric(24, 4))
    platform_total_res: Mapped[Decimal] = mapped_column(Numeric(24, 4))
    res_share: Mapped[Decimal] = mapped_column(Numeric(12, 10))

    # Money (minor units)
    creator_pool_amount: Mapped[int] = mapped_column(BigInteger)
    subscription_payout: Mapped[int] = mapped_column(BigInteger)
    shop_payout: Mapped[int] = mapped_column(BigInteger)
    total_payout: Mapped[int] = mapped_column(BigInteger)

    # Disbursement
    status: Mapped[str] = mapped_column(String(20), default=PayoutStatus.PENDING.value)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_reason: Mapped[str | None] = mapped_column(String(500), default=None)
    payment_id: Mapped[str | None] = mapped_column(String(200), default=None)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            'creator_id', 'period_start', 'period_end', name='uq_payout_creator_period',
        ),
        Index('ix_payout_period', 'period_start', 'period_end'),
        Index('ix_payout_status', 'status'),
    )

    @property
    def idempotency_key(self) -> str:
        return str(self.id)


class AllocationRun(Base):
    """Per-period lock row and audit trail of allocation runs."""

    __tablename__ = 'allocation_runs'

    id: Mapped[int] = mapped_column(primary_key=True)
    period_start: Mapped[datetime] = mapped_column(DateTime)
    period_end: Mapped[datetime] = mapped_column(DateTime)

    run_count: Mapped[int] = mapped_column(Integer, default=0)
    platform_total_res: Mapped[Decimal] = mapped_column(Numeric(24, 4), default=Decimal(0))
    creator_pool_total: Mapped[int] = mapped_column(BigInteger, default=0)
    payout_count: Mapped[int] = mapped_column(Integer, default=0)

    last_started_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    last_completed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('period_start', 'period_end', name='uq_allocation_run_period'),
    )
