# models/listeners/order_listeners.py
"""
Order Event Listeners - freeze orders once their commissions exist.

Architecture:
    Order (UPDATE of monetary fields) → OrderLockedError when reconciled
    OrderItem (UPDATE/DELETE)          → OrderLockedError when parent reconciled
    Commission.amount (set)            → warning, amounts are written once

Commission lines are derived from the order's items and totals. Changing
them after reconciliation would leave payouts that no longer match the order.
"""
import logging

from sqlalchemy import event, inspect

logger = logging.getLogger(__name__)

LOCKED_ORDER_FIELDS = ("userID", "distributorID", "subtotal", "tax", "shipping", "total")


class OrderLockedError(Exception):
    """Raised on modification of an order whose commissions were generated."""
    pass


def _previous_value(state, key):
    history = state.attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(state.object, key)


def register_order_listeners():
    """
    Register event listeners that lock reconciled orders.

    Called once during application startup from models/listeners/__init__.py
    """
    from models.order import Order, OrderItem

    def protect_order(mapper, connection, target):
        state = inspect(target)
        if _previous_value(state, "commissionStatus") != "reconciled":
            return

        changed = [key for key in LOCKED_ORDER_FIELDS if state.attrs[key].history.has_changes()]
        if changed:
            logger.error(
                f"Blocked update of reconciled order {target.orderID}: fields={changed}"
            )
            raise OrderLockedError(
                f"Order {target.orderID} has generated commissions; "
                f"fields {', '.join(changed)} are immutable"
            )

    def protect_item(mapper, connection, target):
        order = target.order
        if order is None or order.commissionStatus != "reconciled":
            return

        logger.error(
            f"Blocked change of item {target.itemID} on reconciled order {order.orderID}"
        )
        raise OrderLockedError(
            f"Order {order.orderID} has generated commissions; its items are immutable"
        )

    event.listen(Order, 'before_update', protect_order)
    event.listen(OrderItem, 'before_update', protect_item)
    event.listen(OrderItem, 'before_delete', protect_item)


# =========================================================================
# SAFETY: Warn on direct commission amount edits
# =========================================================================

def register_commission_protection():
    """
    Log warnings when Commission.amount is modified after creation.

    Adjustments belong in a new record (or a rejection), not an edit.
    """
    from models.commission import Commission

    @event.listens_for(Commission.amount, 'set')
    def warn_direct_amount_set(target, value, oldvalue, initiator):
        """Warn when amount is overwritten on an existing record."""
        if target.commissionID is not None and oldvalue is not None and value != oldvalue:
            import traceback
            stack = ''.join(traceback.format_stack()[-5:-1])

            logger.warning(
                f"DIRECT commission amount modification detected! "
                f"commission={target.commissionID}, {oldvalue} → {value}\n"
                f"Stack:\n{stack}"
            )
