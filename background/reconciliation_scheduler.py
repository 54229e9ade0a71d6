# background/reconciliation_scheduler.py
"""
Reconciliation scheduler - retries commission processing for paid orders
that are not reconciled yet, and runs the nightly rank check.
Uses APScheduler for task scheduling.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from core.db import get_db_session_ctx
from models.order import Order
from mlm_system.events.handlers import process_order_safely
from mlm_system.services.rank_service import RankService
from mlm_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

RECONCILE_BATCH_SIZE = 100


class ReconciliationScheduler:
    """
    Background scheduler for commission reconciliation.
    Uses APScheduler for reliable task scheduling.
    """

    def __init__(self):
        self.isRunning = False

        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 300  # 5 minutes grace period
            }
        )

        # Statistics
        self.stats = {
            "tasksExecuted": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastExecutedAt": None,
            "ordersReconciled": 0,
            "ordersFailed": 0,
        }

    async def start(self):
        """
        Start scheduler with all jobs.

        Jobs configured:
        - Order reconciliation: every RECONCILE_INTERVAL_MINUTES
        - Rank check: every day at RANK_CHECK_HOUR:00 UTC
        """
        if self.isRunning:
            logger.warning("Reconciliation scheduler already running")
            return

        interval = Config.get(Config.RECONCILE_INTERVAL_MINUTES, 10)
        rank_hour = Config.get(Config.RANK_CHECK_HOUR, 0)

        logger.info("=" * 60)
        logger.info("Starting reconciliation scheduler with APScheduler")
        logger.info("=" * 60)

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        # ═══════════════════════════════════════════════════════════════
        # JOB 1: Order reconciliation
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_reconcile_wrapper,
            trigger=IntervalTrigger(minutes=interval),
            id='order_reconciliation',
            name='Order Reconciliation',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Order Reconciliation (every {interval} minutes)")

        # ═══════════════════════════════════════════════════════════════
        # JOB 2: Daily rank check
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_rank_check_wrapper,
            trigger=CronTrigger(hour=rank_hour, minute=0),
            id='rank_check',
            name=f'Rank Check ({rank_hour:02d}:00 UTC)',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Rank Check ({rank_hour:02d}:00 UTC)")

        self.scheduler.start()

        logger.info("=" * 60)
        logger.info("✅ Reconciliation scheduler started successfully")
        logger.info(f"Active jobs: {len(self.scheduler.get_jobs())}")
        logger.info("=" * 60)

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping reconciliation scheduler...")
        self.isRunning = False

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ Reconciliation scheduler stopped")

    # ═══════════════════════════════════════════════════════════════════
    # SAFE WRAPPERS (error handling for APScheduler jobs)
    # ═══════════════════════════════════════════════════════════════════

    async def _safe_reconcile_wrapper(self):
        """Safe wrapper for order reconciliation."""
        try:
            await self.reconcilePendingOrders()
            self._mark_executed()
        except Exception as e:
            logger.error(f"Error in reconciliation job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    async def _safe_rank_check_wrapper(self):
        """Safe wrapper for daily rank check."""
        try:
            await self.checkRanks()
            self._mark_executed()
        except Exception as e:
            logger.error(f"Error in rank check job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    def _mark_executed(self):
        self.stats["tasksExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)

    # ═══════════════════════════════════════════════════════════════════
    # JOBS
    # ═══════════════════════════════════════════════════════════════════

    def findUnreconciledOrders(self, limit: int = RECONCILE_BATCH_SIZE) -> List[int]:
        """
        IDs of paid orders whose commissions are pending or failed.

        Fewest failed attempts first, then oldest: orders that keep failing
        rotate to the back and never block newer orders out of a batch.
        """
        with get_db_session_ctx() as session:
            rows = session.query(Order.orderID).filter(
                Order.paymentStatus == "paid",
                Order.commissionStatus != "reconciled"
            ).order_by(
                Order.commissionAttempts,
                Order.paidAt,
                Order.orderID
            ).limit(limit).all()
            return [orderId for (orderId,) in rows]

    async def reconcilePendingOrders(self, limit: int = RECONCILE_BATCH_SIZE) -> Dict[str, int]:
        """
        Re-run commission processing for unreconciled paid orders.
        Each order runs in its own session; one failure does not stop the batch.

        Returns:
            Statistics dict with found, reconciled and failed counts
        """
        orderIds = self.findUnreconciledOrders(limit)
        results = {"found": len(orderIds), "reconciled": 0, "failed": 0}

        if not orderIds:
            logger.debug("No unreconciled orders")
            return results

        logger.info(f"Reconciling {len(orderIds)} orders")

        for orderId in orderIds:
            result = await process_order_safely(orderId)
            if result is None:
                results["failed"] += 1
            else:
                results["reconciled"] += 1

        self.stats["ordersReconciled"] += results["reconciled"]
        self.stats["ordersFailed"] += results["failed"]

        logger.info(
            f"Reconciliation complete: found={results['found']}, "
            f"reconciled={results['reconciled']}, failed={results['failed']}"
        )
        return results

    async def checkRanks(self) -> Dict[str, int]:
        """Nightly rank check for all placed distributors."""
        with get_db_session_ctx() as session:
            rank_service = RankService(session)
            return await rank_service.checkAllRanks()

    def getStatus(self) -> dict:
        """Get scheduler status."""
        jobs_info = []
        if self.scheduler.running:
            for job in self.scheduler.get_jobs():
                jobs_info.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None
                })

        return {
            "isRunning": self.isRunning,
            "schedulerRunning": self.scheduler.running,
            "currentTime": timeMachine.now.isoformat(),
            "isTestMode": timeMachine.isTestMode,
            "stats": self.stats,
            "jobs": jobs_info
        }
