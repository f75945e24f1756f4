"""Creator registry: applications, tiers and RES multipliers."""
import logging
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.config import settings
from payouts.db.database import utcnow
from payouts.models.creator import CreatorProfile, CreatorTier, ApplicationStatus
from payouts.services.errors import ValidationError, NotFoundError, InconsistentStateError

logger = logging.getLogger(__name__)


def tier_for_subscriber_count(subscriber_count: int) -> CreatorTier | None:
    """Highest tier whose subscriber threshold is met, or None if ineligible."""
    for tier in (CreatorTier.PARTNER, CreatorTier.ESTABLISHED, CreatorTier.EMERGING):
        if subscriber_count >= settings.tier_thresholds[tier.value]:
            return tier
    return None


def effective_multiplier(creator: CreatorProfile) -> Decimal:
    """Snapshotted multiplier if one was frozen, else the tier's current multiplier."""
    if creator.res_multiplier_override is not None:
        return Decimal(creator.res_multiplier_override)
    return settings.tier_multipliers[creator.tier]


class CreatorService:
    """Creates creator profiles and resolves their RES multipliers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_creator(
        self,
        user_id: str,
        channel_name: str,
        subscriber_count: int = 0,
        tier: CreatorTier | None = None,
        youtube_channel_id: str | None = None,
        payout_destination: str | None = None,
        res_multiplier_override: Decimal | None = None,
    ) -> CreatorProfile:
        """Register a creator application. Tier defaults to the one earned by subscriber count.

        The creator shares in allocations only once the application is approved.
        """
        if not payout_destination or not payout_destination.strip():
            raise ValidationError('A payout destination is required')
        if subscriber_count < 0:
            raise ValidationError('Subscriber count cannot be negative')
        if res_multiplier_override is not None and res_multiplier_override < 1:
            raise ValidationError('RES multiplier must be at least 1.0')

        if tier is None:
            tier = tier_for_subscriber_count(subscriber_count)
            if tier is None:
                minimum = settings.tier_thresholds[CreatorTier.EMERGING.value]
                raise ValidationError(
                    f'Channel needs {minimum} subscribers to join, has {subscriber_count}'
                )

        existing = await self.db.execute(
            select(CreatorProfile).where(CreatorProfile.user_id == user_id)
        )
        if existing.scalar_one_or_none():
            raise ValidationError(f'User {user_id} is already a creator')

        creator = CreatorProfile(
            user_id=user_id,
            channel_name=channel_name,
            subscriber_count=subscriber_count,
            tier=CreatorTier(tier).value,
            youtube_channel_id=youtube_channel_id,
            payout_destination=payout_destination,
            res_multiplier_override=res_multiplier_override,
        )
        self.db.add(creator)
        await self.db.flush()
        await self.db.refresh(creator)
        return creator

    async def get_creator(self, creator_id: int) -> CreatorProfile | None:
        return await self.db.get(CreatorProfile, creator_id)

    async def require_creator(self, creator_id: int) -> CreatorProfile:
        creator = await self.db.get(CreatorProfile, creator_id)
        if not creator:
            raise NotFoundError(f'Creator {creator_id} not found')
        return creator

    async def approve_application(self, creator_id: int) -> CreatorProfile:
        """Admit a pending (or previously rejected) creator to the payout program."""
        creator = await self.require_creator(creator_id)
        if creator.application_status == ApplicationStatus.APPROVED.value:
            return creator

        creator.application_status = ApplicationStatus.APPROVED.value
        creator.approved_at = utcnow()
        await self.db.flush()
        logger.info(f'Creator {creator_id} ({creator.channel_name}) approved')
        return creator

    async def reject_application(self, creator_id: int) -> CreatorProfile:
        creator = await self.require_creator(creator_id)
        status = ApplicationStatus(creator.application_status)
        if status == ApplicationStatus.REJECTED:
            return creator
        if status == ApplicationStatus.APPROVED:
            raise InconsistentStateError(f'Creator {creator_id} is already approved')

        creator.application_status = ApplicationStatus.REJECTED.value
        await self.db.flush()
        logger.info(f'Creator {creator_id} ({creator.channel_name}) rejected')
        return creator

    async def approved_ids(self) -> set[int]:
        result = await self.db.execute(
            select(CreatorProfile.id)
            .where(CreatorProfile.application_status == ApplicationStatus.APPROVED.value)
        )
        return set(result.scalars().all())

    async def update_tier(
        self,
        creator_id: int,
        tier: CreatorTier,
        snapshot_multiplier: bool = False,
    ) -> CreatorProfile:
        """Move a creator to a new tier.

        With snapshot_multiplier the new tier's multiplier is frozen on the
        profile so later changes to the tier table don't affect it.
        """
        creator = await self.require_creator(creator_id)
        creator.tier = CreatorTier(tier).value
        if snapshot_multiplier:
            creator.res_multiplier_override = settings.tier_multipliers[creator.tier]
        else:
            creator.res_multiplier_override = None
        await self.db.flush()
        return creator

    async def multipliers(self, creator_ids: list[int]) -> dict[int, Decimal]:
        if not creator_ids:
            return {}
        result = await self.db.execute(
            select(CreatorProfile).where(CreatorProfile.id.in_(creator_ids))
        )
        return {c.id: effective_multiplier(c) for c in result.scalars().all()}
