# mlm_system/events/handlers.py
"""
Event handlers for the commission engine.
Process events from the event bus.
"""
import logging
from decimal import Decimal
from typing import Dict, Any, Optional

from core.db import get_session
from models.order import Order
from models.notification import Notification
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.commission_service import CommissionService, CommissionResult

logger = logging.getLogger(__name__)


async def process_order_safely(order_id: int) -> Optional[CommissionResult]:
    """
    Run commission processing for one order in its own session.

    A fatal error leaves the order unreconciled: it is marked
    commissionStatus='failed' with the error text and retried by the
    reconciliation job.

    Returns:
        CommissionResult, or None if processing failed
    """
    session = get_session()

    try:
        commission_service = CommissionService(session)
        result = await commission_service.processOrder(order_id)

    except Exception as e:
        session.rollback()
        logger.error(f"Commission processing failed for order {order_id}: {e}", exc_info=True)
        _mark_order_failed(session, order_id, e)
        return None

    else:
        if result.alreadyProcessed:
            logger.info(f"Order {order_id} was already processed, nothing to do")
        else:
            logger.info(
                f"✓ Commissions processed for order {order_id}: "
                f"{result.recordsCreated} records, total ${result.totalAmount}"
            )

    finally:
        session.close()

    if not result.alreadyProcessed:
        if result.commissions:
            await eventBus.emit(MLMEvents.COMMISSIONS_CREATED, {
                "orderId": order_id,
                "totalAmount": str(result.totalAmount),
                "commissions": [
                    {
                        "userId": line.userId,
                        "commissionType": line.commissionType,
                        "level": line.level,
                        "amount": str(line.amount),
                    }
                    for line in result.commissions
                ],
            })

        for advancement in result.rankAdvancements:
            await eventBus.emit(MLMEvents.RANK_ACHIEVED, {
                "orderId": order_id,
                "userId": advancement["userId"],
                "rank": advancement["rank"],
            })

    return result


def _mark_order_failed(session, order_id: int, error: Exception):
    """Record the failure on the order without touching reconciled orders."""
    try:
        order = session.query(Order).filter_by(orderID=order_id).first()
        if not order or order.commissionStatus == "reconciled":
            return

        order.commissionStatus = "failed"
        order.commissionError = f"{type(error).__name__}: {error}"[:500]
        order.commissionAttempts = (order.commissionAttempts or 0) + 1
        session.commit()

    except Exception as e:
        session.rollback()
        logger.error(f"Could not mark order {order_id} as failed: {e}", exc_info=True)


async def handle_order_paid(data: Dict[str, Any]):
    """
    Handle ORDER_PAID event.

    Args:
        data: Event data with 'orderId' key
    """
    order_id = data.get("orderId")

    if not order_id:
        logger.error("ORDER_PAID event missing orderId")
        return

    logger.info(f"Processing commissions for order {order_id}")
    await process_order_safely(order_id)


async def handle_commissions_created(data: Dict[str, Any]):
    """
    Handle COMMISSIONS_CREATED event.
    Queues one notification per recipient. Commissions are already
    committed; a failure here only loses the notification.
    """
    order_id = data.get("orderId")
    per_user: Dict[int, Dict[str, Any]] = {}

    for line in data.get("commissions", []):
        entry = per_user.setdefault(line["userId"], {"total": Decimal("0"), "lines": []})
        entry["total"] += Decimal(line["amount"])
        entry["lines"].append(line)

    if not per_user:
        return

    session = get_session()

    try:
        for user_id, entry in per_user.items():
            types = sorted({line["commissionType"] for line in entry["lines"]})

            notification = Notification(
                source="mlm_system",
                targetUserID=user_id,
                category="commission_earned",
                subject="You earned a commission",
                text=(
                    f"You earned ${entry['total']} in commissions "
                    f"({', '.join(types)}) from order {order_id}."
                ),
                payload={
                    "orderId": order_id,
                    "total": str(entry["total"]),
                    "lines": entry["lines"],
                },
            )
            session.add(notification)

        session.commit()
        logger.info(f"Commission notifications queued for {len(per_user)} users (order {order_id})")

    except Exception as e:
        session.rollback()
        logger.error(f"Failed to create commission notifications for order {order_id}: {e}", exc_info=True)

    finally:
        session.close()


async def handle_rank_achieved(data: Dict[str, Any]):
    """Handle RANK_ACHIEVED event: queue a congratulation notification."""
    user_id = data.get("userId")
    rank = data.get("rank")

    if not user_id or not rank:
        logger.error(f"RANK_ACHIEVED event incomplete: {data}")
        return

    session = get_session()

    try:
        notification = Notification(
            source="mlm_system",
            targetUserID=user_id,
            category="rank_achieved",
            subject="New rank achieved",
            text=f"Congratulations! You reached the rank {rank.title()}.",
            payload={"rank": rank, "orderId": data.get("orderId")},
        )
        session.add(notification)
        session.commit()

        logger.info(f"Rank notification queued for user {user_id} ({rank})")

    except Exception as e:
        session.rollback()
        logger.error(f"Failed to create rank notification for user {user_id}: {e}", exc_info=True)

    finally:
        session.close()
