"""
Payout Worker

Background service that handles periodic payout tasks:
- Monthly: Allocate the previous calendar month once it has closed
- Every few minutes: Disburse pending payouts, retry failed ones whose
  backoff has elapsed, and resume payouts stuck in processing

Uses APScheduler for job scheduling.
"""
import asyncio
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from payouts.config import settings
from payouts.db.database import utcnow
from payouts.periods import previous_month
from payouts.services.disbursement_service import DisbursementCoordinator
from payouts.services.payment_provider import get_payment_provider
from payouts.services.payout_service import PayoutAllocator

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger('payout_worker')


class PayoutWorker:
    """Background worker for allocation and disbursement."""

    def __init__(self, session_factory: async_sessionmaker | None = None, provider=None):
        if session_factory is None:
            self.engine = create_async_engine(settings.database_url, echo=False)
            session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        self.async_session = session_factory
        self.coordinator = DisbursementCoordinator(
            self.async_session, provider or get_payment_provider(),
        )
        self.scheduler = AsyncIOScheduler()

    async def start(self):
        """Start the worker and scheduler."""
        logger.info('Starting Payout Worker...')

        # Monthly allocation of the previous month (1st of the month, 2 AM UTC)
        self.scheduler.add_job(
            self._run_monthly_allocation,
            CronTrigger(day=1, hour=2, minute=0),
            id='monthly_allocation',
            name='Monthly Payout Allocation',
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._run_disbursement,
            IntervalTrigger(minutes=settings.disbursement_interval_minutes),
            id='disbursement',
            name='Payout Disbursement',
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        logger.info('Scheduler started. Jobs:')
        for job in self.scheduler.get_jobs():
            logger.info(f'  - {job.name}: next run at {job.next_run_time}')

        # Keep running
        try:
            while True:
                await asyncio.sleep(60)
        except (KeyboardInterrupt, SystemExit):
            logger.info('Shutting down...')
            self.scheduler.shutdown()

    async def _run_monthly_allocation(self):
        """Allocate the month that just closed."""
        period = previous_month(utcnow())
        logger.info(f'Running payout allocation for {period.label}...')
        try:
            async with self.async_session() as session:
                async with session.begin():
                    summary = await PayoutAllocator(session).run_payout_allocation(
                        period.start, period.end,
                    )

            result = {
                'period': summary.period_label,
                'payouts': summary.payout_count,
                'creator_pool': summary.creator_pool_total,
                'residual': summary.residual,
            }
            logger.info(f'Allocation result: {result}')
            return result
        except Exception as e:
            logger.error(f'Payout allocation for {period.label} failed: {e}', exc_info=True)
            raise

    async def _run_disbursement(self):
        """Send pending payouts, then retries, then stale ones."""
        logger.info('Running disbursement...')
        try:
            resumed = await self.coordinator.resume_stale()
            retried = await self.coordinator.retry_failed()
            sent = await self.coordinator.disburse_pending()

            result = {
                'resumed': len(resumed),
                'retried': len(retried),
                'sent': len(sent),
                'failed': sum(1 for p in resumed + retried + sent if p.status == 'failed'),
            }
            logger.info(f'Disbursement result: {result}')
            return result
        except Exception as e:
            logger.error(f'Disbursement failed: {e}', exc_info=True)
            raise

    async def run_once(self, job_type: str = 'allocation'):
        """Run a single job immediately (for testing)."""
        if job_type == 'allocation':
            return await self._run_monthly_allocation()
        elif job_type == 'disbursement':
            return await self._run_disbursement()
        else:
            raise ValueError(f'Unknown job type: {job_type}')


async def main():
    """Entry point for the worker."""
    worker = PayoutWorker()
    await worker.start()


if __name__ == '__main__':
    asyncio.run(main())
