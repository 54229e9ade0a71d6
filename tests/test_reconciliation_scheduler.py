# tests/test_reconciliation_scheduler.py
"""
Tests for ReconciliationScheduler jobs.

Run:
    pytest tests/test_reconciliation_scheduler.py -v
"""
from decimal import Decimal

import pytest

from models import Commission, Order, User
from background.reconciliation_scheduler import ReconciliationScheduler


@pytest.fixture
def scheduler(rule_set, config_values, session_factory):
    return ReconciliationScheduler()


class TestReconcilePendingOrders:

    @pytest.mark.asyncio
    async def test_processes_paid_unreconciled_orders(self, session, scheduler, make_chain, make_distributor, make_order):
        grandparent, parent, buyer = make_chain(3)
        good = make_order(buyer).orderID
        stray = make_distributor(place=False)
        session.commit()
        bad = make_order(stray).orderID
        make_order(buyer, paid=False)

        assert scheduler.findUnreconciledOrders() == [good, bad]

        results = await scheduler.reconcilePendingOrders()

        assert results == {"found": 2, "reconciled": 1, "failed": 1}
        session.expire_all()
        assert session.query(Commission).filter_by(orderID=good).count() == 4
        assert session.query(Order).filter_by(orderID=bad).one().commissionStatus == "failed"
        assert scheduler.stats["ordersReconciled"] == 1
        assert scheduler.stats["ordersFailed"] == 1

        # Only the failed order is retried
        assert scheduler.findUnreconciledOrders() == [bad]

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, scheduler):
        assert await scheduler.reconcilePendingOrders() == {"found": 0, "reconciled": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_batch_limit(self, session, scheduler, make_chain, make_order):
        buyer = make_chain(2)[-1]
        for _ in range(3):
            make_order(buyer)

        results = await scheduler.reconcilePendingOrders(limit=2)

        assert results["found"] == 2
        assert len(scheduler.findUnreconciledOrders()) == 1

    @pytest.mark.asyncio
    async def test_failing_order_does_not_starve_newer_orders(self, session, scheduler, make_chain, make_distributor, make_order):
        stray = make_distributor(place=False)
        session.commit()
        bad = make_order(stray).orderID
        buyer = make_chain(2)[-1]
        good = make_order(buyer).orderID

        first = await scheduler.reconcilePendingOrders(limit=1)
        second = await scheduler.reconcilePendingOrders(limit=1)

        assert first == {"found": 1, "reconciled": 0, "failed": 1}
        assert second == {"found": 1, "reconciled": 1, "failed": 0}
        session.expire_all()
        assert session.query(Order).filter_by(orderID=good).one().commissionStatus == "reconciled"
        failed = session.query(Order).filter_by(orderID=bad).one()
        assert failed.commissionStatus == "failed"
        assert failed.commissionAttempts == 1
        assert scheduler.findUnreconciledOrders() == [bad]


class TestRankCheck:

    @pytest.mark.asyncio
    async def test_check_ranks_updates_stored_rank(self, session, scheduler, make_distributor, make_order):
        root = make_distributor()
        child = make_distributor(root)
        session.commit()
        make_order(root, items=((Decimal("600.00"), 1),))
        make_order(child, items=((Decimal("10.00"), 1),))
        rootId = root.userID

        results = await scheduler.checkRanks()

        assert results["updated"] == 1
        session.expire_all()
        assert session.query(User).filter_by(userID=rootId).one().rank == "bronze"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self, scheduler):
        await scheduler.start()
        try:
            status = scheduler.getStatus()

            assert status["isRunning"]
            assert {job["id"] for job in status["jobs"]} == {"order_reconciliation", "rank_check"}
            assert status["isTestMode"]
        finally:
            await scheduler.stop()

        assert not scheduler.isRunning

    @pytest.mark.asyncio
    async def test_safe_wrapper_counts_errors(self, scheduler, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database down")

        monkeypatch.setattr(scheduler, "reconcilePendingOrders", broken)

        await scheduler._safe_reconcile_wrapper()

        assert scheduler.stats["errors"] == 1
        assert scheduler.stats["lastError"] == "database down"
