# tests/test_event_handlers.py
"""
Tests for the event bus and the commission event handlers.

ORDER_PAID → process_order_safely → COMMISSIONS_CREATED / RANK_ACHIEVED
           → Notification rows

Handlers open their own sessions; conftest points core.db at the test
database, so results are visible from the test session after expire_all().

Run:
    pytest tests/test_event_handlers.py -v
"""
from decimal import Decimal

import pytest

from models import Commission, MatrixPosition, Notification, Order
from mlm_system.events.event_bus import EventBus, eventBus, MLMEvents
from mlm_system.events.handlers import handle_order_paid, process_order_safely
from mlm_system.events.setup import setup_mlm_event_handlers, teardown_mlm_event_handlers


@pytest.fixture
def bus(rule_set):
    setup_mlm_event_handlers()
    yield eventBus
    teardown_mlm_event_handlers()


def notifications(session, category):
    return session.query(Notification).filter_by(category=category).order_by(Notification.targetUserID).all()


# =============================================================================
# TEST CLASS: EventBus
# =============================================================================

class TestEventBus:

    def test_singleton(self):
        assert EventBus() is eventBus

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        received = []

        async def broken(data):
            raise RuntimeError("boom")

        def recorder(data):
            received.append(data["n"])

        eventBus.subscribe("test.event", broken)
        eventBus.subscribe("test.event", recorder)
        eventBus.subscribe("test.event", recorder)
        try:
            await eventBus.emit("test.event", {"n": 1})
        finally:
            eventBus.unsubscribe("test.event", broken)
            eventBus.unsubscribe("test.event", recorder)

        assert received == [1]
        assert eventBus.handlers("test.event") == []

    @pytest.mark.asyncio
    async def test_emit_without_subscribers(self):
        await eventBus.emit("nobody.listens", {})

    def test_setup_and_teardown(self):
        setup_mlm_event_handlers()
        assert handle_order_paid in eventBus.handlers(MLMEvents.ORDER_PAID)

        teardown_mlm_event_handlers()
        assert handle_order_paid not in eventBus.handlers(MLMEvents.ORDER_PAID)


# =============================================================================
# TEST CLASS: ORDER_PAID flow
# =============================================================================

class TestOrderPaidFlow:

    @pytest.mark.asyncio
    async def test_order_paid_creates_commissions_and_notifications(self, session, bus, make_chain, make_order):
        grandparent, parent, buyer = make_chain(3)
        order = make_order(buyer)
        orderId = order.orderID

        await bus.emit(MLMEvents.ORDER_PAID, {"orderId": orderId})

        session.expire_all()
        assert session.query(Commission).filter_by(orderID=orderId).count() == 4
        assert session.query(Order).filter_by(orderID=orderId).one().commissionStatus == "reconciled"

        sent = notifications(session, "commission_earned")
        assert [n.targetUserID for n in sent] == [grandparent.userID, parent.userID, buyer.userID]
        assert sent[0].payload["total"] == "6.00"
        assert sent[0].payload["orderId"] == orderId

    @pytest.mark.asyncio
    async def test_duplicate_event_is_harmless(self, session, bus, make_chain, make_order):
        grandparent, parent, buyer = make_chain(3)
        orderId = make_order(buyer).orderID

        await bus.emit(MLMEvents.ORDER_PAID, {"orderId": orderId})
        await bus.emit(MLMEvents.ORDER_PAID, {"orderId": orderId})

        session.expire_all()
        assert session.query(Commission).filter_by(orderID=orderId).count() == 4
        assert len(notifications(session, "commission_earned")) == 3

    @pytest.mark.asyncio
    async def test_rank_achieved_notification(self, session, bus, make_chain, make_distributor, make_order):
        grandparent, parent, buyer = make_chain(3)
        kid = make_distributor(buyer)
        session.commit()
        make_order(kid, items=((Decimal("10.00"), 1),))
        orderId = make_order(buyer, items=((Decimal("500.00"), 1),)).orderID

        await bus.emit(MLMEvents.ORDER_PAID, {"orderId": orderId})

        session.expire_all()
        ranked = notifications(session, "rank_achieved")
        assert [(n.targetUserID, n.payload["rank"]) for n in ranked] == [(buyer.userID, "bronze")]

    @pytest.mark.asyncio
    async def test_missing_order_id_is_logged(self, session, bus, caplog):
        await bus.emit(MLMEvents.ORDER_PAID, {})

        assert "missing orderId" in caplog.text
        assert session.query(Commission).count() == 0


# =============================================================================
# TEST CLASS: Failure handling
# =============================================================================

class TestProcessOrderSafely:

    @pytest.mark.asyncio
    async def test_fatal_error_marks_order_failed(self, session, rule_set, make_distributor, make_order):
        buyer = make_distributor(place=False)
        session.commit()
        orderId = make_order(buyer).orderID

        result = await process_order_safely(orderId)

        assert result is None
        session.expire_all()
        order = session.query(Order).filter_by(orderID=orderId).one()
        assert order.commissionStatus == "failed"
        assert order.commissionError.startswith("NotFoundError")
        assert order.commissionAttempts == 1
        assert session.query(Commission).count() == 0

    @pytest.mark.asyncio
    async def test_failed_order_recovers_on_retry(self, session, rule_set, make_distributor, make_order):
        sponsor = make_distributor()
        buyer = make_distributor(sponsor, place=False)
        session.commit()
        orderId = make_order(buyer).orderID
        buyerId = buyer.userID
        sponsorId = sponsor.userID

        assert await process_order_safely(orderId) is None

        # Placement arrives later
        session.add(MatrixPosition(
            userID=buyerId, sponsorID=sponsorId, parentID=sponsorId,
            level=2, position=1, legPosition=1,
        ))
        session.commit()

        result = await process_order_safely(orderId)

        assert result is not None
        assert result.recordsCreated == 2
        session.expire_all()
        order = session.query(Order).filter_by(orderID=orderId).one()
        assert order.commissionStatus == "reconciled"
        assert order.commissionError is None
