from datetime import datetime
from sqlalchemy import String, BigInteger, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from payouts.db.database import Base, utcnow


class RevenueTransaction(Base):
    """One completed subscription charge or renewal, as delivered by the payment webhook.

    Immutable after creation except for the processed marker, which is set
    when the transaction is folded into a committed allocation run.
    """

    __tablename__ = 'revenue_transactions'

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[str] = mapped_column(String(200), unique=True, index=True)

    user_id: Mapped[str | None] = mapped_column(String(100), default=None)
    product_id: Mapped[str | None] = mapped_column(String(100), default=None)
    currency: Mapped[str] = mapped_column(String(3), default='USD')

    # Revenue breakdown (minor units)
    gross_revenue: Mapped[int] = mapped_column(BigInteger)
    marketplace_fee: Mapped[int] = mapped_column(BigInteger)
    processor_fee: Mapped[int] = mapped_column(BigInteger)
    net_revenue: Mapped[int] = mapped_column(BigInteger)

    # Profit split
    platform_share: Mapped[int] = mapped_column(BigInteger)
    creator_pool_share: Mapped[int] = mapped_column(BigInteger)

    # Subscription window the charge pays for
    period_start: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    period_end: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    is_renewal: Mapped[bool] = mapped_column(Boolean, default=False)

    timestamp: Mapped[datetime] = mapped_column(DateTime)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    allocation_run_id: Mapped[int | None] = mapped_column(
        ForeignKey('allocation_runs.id', ondelete='SET NULL'), default=None,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_revenue_timestamp', 'timestamp'),
    )
