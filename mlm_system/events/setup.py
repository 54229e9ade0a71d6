# mlm_system/events/setup.py
"""
Setup MLM event handlers.
Register all event handlers with the event bus.
"""
import logging

from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.events.handlers import (
    handle_order_paid,
    handle_commissions_created,
    handle_rank_achieved,
)

logger = logging.getLogger(__name__)

_SUBSCRIPTIONS = (
    (MLMEvents.ORDER_PAID, handle_order_paid),
    (MLMEvents.COMMISSIONS_CREATED, handle_commissions_created),
    (MLMEvents.RANK_ACHIEVED, handle_rank_achieved),
)


def setup_mlm_event_handlers():
    """
    Register all MLM event handlers with the event bus.

    This function should be called during application startup.
    """
    logger.info("Setting up MLM event handlers...")

    for event_name, handler in _SUBSCRIPTIONS:
        eventBus.subscribe(event_name, handler)
        logger.debug(f"Registered handler for {event_name}")

    logger.info("MLM event handlers registered successfully")


def teardown_mlm_event_handlers():
    """
    Unregister all MLM event handlers.
    Useful for testing or shutdown.
    """
    logger.info("Tearing down MLM event handlers...")

    for event_name, handler in _SUBSCRIPTIONS:
        eventBus.unsubscribe(event_name, handler)

    logger.info("MLM event handlers unregistered")
