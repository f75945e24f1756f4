from datetime import datetime
from enum import Enum
from sqlalchemy import String, BigInteger, ForeignKey, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from payouts.db.database import Base, utcnow


class OrderStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    FULFILLED = 'fulfilled'
    REFUNDED = 'refunded'
    CANCELLED = 'cancelled'


# Only these statuses earn the creator a commission
PAYABLE_STATUSES = (OrderStatus.PAID.value, OrderStatus.FULFILLED.value)

# Final statuses; redelivered order webhooks never reopen these
CLOSED_STATUSES = (OrderStatus.REFUNDED.value, OrderStatus.CANCELLED.value)


class CommissionRecord(Base):
    """Creator commission on one creator-shop order."""

    __tablename__ = 'creator_commissions'

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[str] = mapped_column(String(200), unique=True, index=True)
    creator_id: Mapped[int] = mapped_column(
        ForeignKey('creator_profiles.id', ondelete='CASCADE'),
    )

    order_subtotal: Mapped[int | None] = mapped_column(BigInteger, default=None)
    amount: Mapped[int] = mapped_column(BigInteger)
    platform_fee: Mapped[int] = mapped_column(BigInteger, default=0)

    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PAID.value)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_commission_creator_paid', 'creator_id', 'paid_at'),
    )
