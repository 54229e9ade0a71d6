# tests/test_order_listeners.py
"""
Tests for Order Event Listeners.

Once an order is reconciled its commissions are derived from it, so the
monetary fields and the line items are frozen:

    Order.subtotal/total/userID/... UPDATE  → OrderLockedError
    OrderItem UPDATE/DELETE                 → OrderLockedError

Run:
    pytest tests/test_order_listeners.py -v
"""
import asyncio
import logging
from decimal import Decimal

import pytest

from models import Commission
from models.listeners.order_listeners import OrderLockedError
from mlm_system.services.commission_service import CommissionService


@pytest.fixture
def reconciled_order(session, rule_set, make_chain, make_order):
    grandparent, parent, buyer = make_chain(3)
    order = make_order(buyer)
    asyncio.run(CommissionService(session, rule_set).processOrder(order.orderID))
    session.refresh(order)
    return order


# =============================================================================
# TEST CLASS: Pending orders
# =============================================================================

class TestPendingOrder:

    def test_pending_order_is_editable(self, session, make_distributor, make_order):
        buyer = make_distributor()
        session.commit()
        order = make_order(buyer)

        order.total = Decimal("80.00")
        order.items[0].quantity = 3
        session.commit()

        session.refresh(order)
        assert order.total == Decimal("80.00")
        assert order.commissionableValue == Decimal("300.00")


# =============================================================================
# TEST CLASS: Reconciled orders
# =============================================================================

class TestReconciledOrder:

    def test_total_change_blocked(self, session, reconciled_order):
        """
        TEST: the order total cannot change after commissions exist.
        """
        reconciled_order.total = Decimal("1.00")

        with pytest.raises(OrderLockedError):
            session.commit()
        session.rollback()

        session.refresh(reconciled_order)
        assert reconciled_order.total == Decimal("100.00")

    def test_buyer_change_blocked(self, session, reconciled_order, make_distributor):
        other = make_distributor()

        reconciled_order.userID = other.userID

        with pytest.raises(OrderLockedError):
            session.commit()
        session.rollback()

    def test_item_change_blocked(self, session, reconciled_order):
        reconciled_order.items[0].commissionableValue = Decimal("500.00")

        with pytest.raises(OrderLockedError):
            session.commit()
        session.rollback()

    def test_item_delete_blocked(self, session, reconciled_order):
        session.delete(reconciled_order.items[0])

        with pytest.raises(OrderLockedError):
            session.commit()
        session.rollback()

        session.refresh(reconciled_order)
        assert len(reconciled_order.items) == 1

    def test_non_monetary_fields_still_editable(self, session, reconciled_order):
        reconciled_order.status = "shipped"
        session.commit()

        session.refresh(reconciled_order)
        assert reconciled_order.status == "shipped"


# =============================================================================
# TEST CLASS: Commission protection
# =============================================================================

class TestCommissionProtection:

    def test_amount_edit_logs_warning(self, session, reconciled_order, caplog):
        commission = session.query(Commission).filter_by(orderID=reconciled_order.orderID).first()

        with caplog.at_level(logging.WARNING, logger="models.listeners.order_listeners"):
            commission.amount = Decimal("999.00")

        assert "DIRECT commission amount modification" in caplog.text

    def test_status_change_is_silent(self, session, reconciled_order, caplog):
        commission = session.query(Commission).filter_by(orderID=reconciled_order.orderID).first()

        with caplog.at_level(logging.WARNING, logger="models.listeners.order_listeners"):
            commission.status = "approved"
            session.commit()

        assert "DIRECT commission amount modification" not in caplog.text
