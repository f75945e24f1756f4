"""Disbursement Coordinator.

Moves allocated payouts to the payment provider:

  pending → processing → paid | failed
  failed  → pending                      (retry, retry_count += 1)

Every step commits in its own short session from the session factory, so a
provider call never holds a database transaction open and never runs
inside an allocation. The claim out of `pending` is a conditional UPDATE;
two workers racing for the same payout see exactly one winner.

The provider is always called with the payout id as the idempotency key,
including after a crash mid-call, so a payout is sent at most once.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payouts.config import settings
from payouts.db.database import async_session, utcnow
from payouts.models.creator import CreatorProfile
from payouts.models.payout import Payout, PayoutStatus, PAYOUT_TRANSITIONS
from payouts.periods import to_naive_utc
from payouts.services.errors import (
    InconsistentStateError, NotFoundError, ProviderUnavailableError,
)
from payouts.services.payment_provider import (
    DisbursementResult, PaymentProvider, get_payment_provider,
)

logger = logging.getLogger(__name__)


def check_transition(payout: Payout, new: PayoutStatus) -> None:
    current = PayoutStatus(payout.status)
    if new not in PAYOUT_TRANSITIONS[current]:
        raise InconsistentStateError(
            f'Payout {payout.id} cannot go from {current.value} to {new.value}'
        )


def retry_backoff(retry_count: int) -> timedelta:
    """Wait before the next automatic retry: base × 2^retry_count, capped."""
    seconds = settings.disbursement_backoff_base_seconds * (2 ** retry_count)
    return timedelta(seconds=min(seconds, settings.disbursement_backoff_max_seconds))


class DisbursementCoordinator:
    """Sends payouts to the payment provider and records the outcome."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        provider: PaymentProvider | None = None,
    ):
        self.session_factory = session_factory
        self.provider = provider or get_payment_provider()

    async def disburse(self, payout_id: int) -> Payout:
        """Claim a pending payout and pay it. Provider failures end up on the row, not raised."""
        async with self.session_factory() as db:
            payout = await self._require(db, payout_id)
            check_transition(payout, PayoutStatus.PROCESSING)

            now = utcnow()
            claimed = await db.execute(
                update(Payout)
                .where(Payout.id == payout_id)
                .where(Payout.status == PayoutStatus.PENDING.value)
                .values(
                    status=PayoutStatus.PROCESSING.value,
                    processing_started_at=now,
                    updated_at=now,
                )
            )
            if claimed.rowcount != 1:
                await db.rollback()
                raise InconsistentStateError(f'Payout {payout_id} was claimed by another worker')
            await db.commit()

        return await self._deliver(payout_id)

    async def retry(self, payout_id: int, force: bool = False) -> Payout:
        """Put a failed payout back in the queue.

        Past disbursement_max_retries only a forced (manual) retry is allowed.
        """
        async with self.session_factory() as db:
            payout = await self._require(db, payout_id)
            check_transition(payout, PayoutStatus.PENDING)
            retries = payout.retry_count

            if retries >= settings.disbursement_max_retries and not force:
                raise InconsistentStateError(
                    f'Payout {payout_id} reached {retries} retries; '
                    f'manual retry required'
                )

            result = await db.execute(
                update(Payout)
                .where(Payout.id == payout_id)
                .where(Payout.status == PayoutStatus.FAILED.value)
                .values(
                    status=PayoutStatus.PENDING.value,
                    retry_count=Payout.retry_count + 1,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount != 1:
                await db.rollback()
                raise InconsistentStateError(f'Payout {payout_id} changed state during retry')
            await db.commit()

            if force:
                logger.warning(f'Payout {payout_id} force-retried after {retries} retries')
            else:
                logger.info(f'Payout {payout_id} queued for retry #{retries + 1}')
            return await self._reload(db, payout_id)

    async def disburse_pending(self, limit: int | None = None) -> list[Payout]:
        """Drain up to `limit` pending payouts, oldest first."""
        limit = limit or settings.disbursement_batch_size
        async with self.session_factory() as db:
            result = await db.execute(
                select(Payout.id)
                .where(Payout.status == PayoutStatus.PENDING.value)
                .order_by(Payout.id)
                .limit(limit)
            )
            payout_ids = list(result.scalars().all())

        processed = []
        for payout_id in payout_ids:
            try:
                processed.append(await self.disburse(payout_id))
            except InconsistentStateError as e:
                logger.info(f'Skipping payout {payout_id}: {e}')
        return processed

    async def retry_failed(self, now: datetime | None = None) -> list[Payout]:
        """Re-queue and re-send failed payouts whose backoff has elapsed."""
        now = to_naive_utc(now) if now else utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                select(Payout)
                .where(Payout.status == PayoutStatus.FAILED.value)
                .where(Payout.retry_count < settings.disbursement_max_retries)
                .order_by(Payout.id)
                .limit(settings.disbursement_batch_size)
            )
            failed = list(result.scalars().all())

        retried = []
        for payout in failed:
            if payout.updated_at + retry_backoff(payout.retry_count) > now:
                continue

            try:
                await self.retry(payout.id)
                retried.append(await self.disburse(payout.id))
            except InconsistentStateError as e:
                logger.info(f'Skipping retry of payout {payout.id}: {e}')
        return retried

    async def resume_stale(self, now: datetime | None = None) -> list[Payout]:
        """Re-drive payouts left in processing past the timeout, e.g. after a crash."""
        now = to_naive_utc(now) if now else utcnow()
        cutoff = now - timedelta(minutes=settings.processing_timeout_minutes)

        async with self.session_factory() as db:
            result = await db.execute(
                select(Payout.id, Payout.processing_started_at)
                .where(Payout.status == PayoutStatus.PROCESSING.value)
                .where(Payout.processing_started_at < cutoff)
                .order_by(Payout.id)
                .limit(settings.disbursement_batch_size)
            )
            stale = list(result.all())

        resumed = []
        for payout_id, started_at in stale:
            async with self.session_factory() as db:
                # Re-claim so a concurrent resumer skips it
                claimed = await db.execute(
                    update(Payout)
                    .where(Payout.id == payout_id)
                    .where(Payout.status == PayoutStatus.PROCESSING.value)
                    .where(Payout.processing_started_at == started_at)
                    .values(processing_started_at=now, updated_at=now)
                )
                if claimed.rowcount != 1:
                    continue
                await db.commit()

            logger.warning(f'Resuming payout {payout_id} stuck in processing since {started_at}')
            resumed.append(await self._deliver(payout_id))
        return resumed

    async def _deliver(self, payout_id: int) -> Payout:
        """Call the provider for a claimed payout and record the outcome."""
        async with self.session_factory() as db:
            payout = await self._require(db, payout_id)
            creator = await db.get(CreatorProfile, payout.creator_id)
            destination = creator.payout_destination if creator else None
            amount = payout.total_payout
            key = payout.idempotency_key

        if amount == 0:
            logger.info(f'Payout {payout_id} is zero; marking paid without a transfer')
            result = DisbursementResult(success=True)
        elif not destination:
            result = DisbursementResult(success=False, reason='Creator has no payout destination')
        else:
            try:
                result = await self._call_provider(key, destination, amount)
            except ProviderUnavailableError as e:
                result = DisbursementResult(success=False, reason=str(e))

        return await self._record(payout_id, result)

    async def _call_provider(self, key: str, destination: str, amount: int) -> DisbursementResult:
        attempts = max(settings.provider_call_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                return await self.provider.disburse(key, destination, amount)
            except ProviderUnavailableError as e:
                if attempt == attempts:
                    raise
                delay = settings.provider_call_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f'Provider unavailable for payout {key} (attempt {attempt}/{attempts}): {e}; '
                    f'retrying in {delay}s'
                )
                await asyncio.sleep(delay)

    async def _record(self, payout_id: int, result: DisbursementResult) -> Payout:
        now = utcnow()
        async with self.session_factory() as db:
            if result.success:
                values = {
                    'status': PayoutStatus.PAID.value,
                    'payment_id': result.payment_id,
                    'paid_at': now,
                    'failure_reason': None,
                }
            else:
                values = {
                    'status': PayoutStatus.FAILED.value,
                    'failure_reason': (result.reason or 'Unknown provider error')[:500],
                }

            recorded = await db.execute(
                update(Payout)
                .where(Payout.id == payout_id)
                .where(Payout.status == PayoutStatus.PROCESSING.value)
                .values(updated_at=now, **values)
            )
            payout = await self._reload(db, payout_id)

            if recorded.rowcount != 1:
                await db.rollback()
                logger.warning(f'Payout {payout_id} left processing before its result was recorded')
                return await self._reload(db, payout_id)

            if result.success:
                await db.execute(
                    update(CreatorProfile)
                    .where(CreatorProfile.id == payout.creator_id)
                    .values(total_earnings=CreatorProfile.total_earnings + payout.total_payout)
                )
                logger.info(
                    f'Payout {payout_id} paid: {payout.total_payout} to creator '
                    f'{payout.creator_id} (payment {result.payment_id})'
                )
            else:
                logger.error(f'Payout {payout_id} failed: {values["failure_reason"]}')
                if payout.retry_count >= settings.disbursement_max_retries:
                    # Automatic retries skip it from now on
                    logger.warning(
                        f'Payout {payout_id} failed {payout.retry_count + 1} times '
                        f'({values["failure_reason"]}); needs manual intervention'
                    )

            await db.commit()
            return payout

    async def _require(self, db: AsyncSession, payout_id: int) -> Payout:
        payout = await db.get(Payout, payout_id)
        if not payout:
            raise NotFoundError(f'Payout {payout_id} not found')
        return payout

    async def _reload(self, db: AsyncSession, payout_id: int) -> Payout:
        result = await db.execute(
            select(Payout)
            .where(Payout.id == payout_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
