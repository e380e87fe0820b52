# background/payout_scheduler.py
"""
Payout scheduler - drains the payout queue on a fixed interval.
Uses APScheduler; the manual admin drain shares the same per-item guard.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from core.db import get_db_session_ctx
from mlm_engine.services.payout_service import PayoutService

logger = logging.getLogger(__name__)


class PayoutScheduler:
    """
    Background scheduler for the payout queue.
    """

    def __init__(self, intervalSeconds: Optional[int] = None):
        self.isRunning = False
        self.intervalSeconds = intervalSeconds or Config.get(Config.PAYOUT_QUEUE_INTERVAL_SECONDS, 30)

        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Never two drains from this process at once
                'misfire_grace_time': 300
            }
        )

        self.stats = {
            "runs": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastRunAt": None,
            "itemsApplied": 0,
            "itemsFailed": 0
        }

    async def start(self):
        if self.isRunning:
            logger.warning("Payout scheduler already running")
            return

        logger.info("=" * 60)
        logger.info("Starting payout scheduler")
        logger.info("=" * 60)

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        # ═══════════════════════════════════════════════════════════════
        # JOB: Payout Queue Processing
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_payout_queue_wrapper,
            trigger=IntervalTrigger(seconds=self.intervalSeconds),
            id='payout_queue',
            name='Payout Queue Processing',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Payout Queue (every {self.intervalSeconds} seconds)")

        self.scheduler.start()
        logger.info(f"✅ Payout scheduler started, active jobs: {len(self.scheduler.get_jobs())}")

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping payout scheduler...")
        self.isRunning = False

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ Payout scheduler stopped")

    async def _safe_payout_queue_wrapper(self):
        """Errors are counted, never allowed to kill the job."""
        try:
            await self.processPayoutQueue()
        except Exception as e:
            logger.error(f"Error in payout queue job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    async def processPayoutQueue(self, batchSize: Optional[int] = None) -> Dict:
        """Run one batch and fold its summary into the stats."""
        with get_db_session_ctx() as session:
            summary = await PayoutService(session).processQueue(batchSize)

        self.stats["runs"] += 1
        self.stats["lastRunAt"] = datetime.now(timezone.utc)
        self.stats["itemsApplied"] += summary["applied"]
        self.stats["itemsFailed"] += summary["failed"]

        if summary["applied"] or summary["failed"]:
            logger.info(
                f"Payout queue: {summary['applied']} applied, {summary['failed']} failed, "
                f"total {summary['totalAmount']}"
            )
        return summary

    def getStats(self) -> Dict:
        return dict(self.stats, isRunning=self.isRunning)
