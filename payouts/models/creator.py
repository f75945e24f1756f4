from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import String, Integer, BigInteger, Numeric, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from payouts.db.database import Base, utcnow


class CreatorTier(str, Enum):
    """Partnership tier, derived from channel size."""
    EMERGING = 'emerging'        # 10K+ subscribers
    ESTABLISHED = 'established'  # 100K+ subscribers
    PARTNER = 'partner'          # 500K+ subscribers


class ApplicationStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class CreatorProfile(Base):
    """A partnered recipe creator who receives payouts."""

    __tablename__ = 'creator_profiles'

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    channel_name: Mapped[str] = mapped_column(String(200))
    youtube_channel_id: Mapped[str | None] = mapped_column(String(100), unique=True, default=None)
    subscriber_count: Mapped[int] = mapped_column(Integer, default=0)

    tier: Mapped[str] = mapped_column(String(20), default=CreatorTier.EMERGING.value)

    # Only approved creators share in allocations
    application_status: Mapped[str] = mapped_column(
        String(20), default=ApplicationStatus.PENDING.value, index=True,
    )
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    # Frozen multiplier; NULL means "use the tier table at computation time"
    res_multiplier_override: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), default=None)

    # Opaque destination handed to the payment provider
    payout_destination: Mapped[str | None] = mapped_column(String(320), default=None)

    # Sum of paid payouts (minor units)
    total_earnings: Mapped[int] = mapped_column(BigInteger, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
