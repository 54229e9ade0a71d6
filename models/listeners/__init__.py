"""
SQLAlchemy Event Listeners Package.

Registers all event listeners for the application.
Import this module once during app startup to activate listeners.

Listeners:
    - order_listeners: Lock reconciled orders, warn on commission edits
"""
import logging

logger = logging.getLogger(__name__)

_listeners_registered = False


def register_all_listeners():
    """
    Register all event listeners.

    Safe to call multiple times - listeners are registered only once.

    Call this from application startup, e.g.:
        from models.listeners import register_all_listeners
        register_all_listeners()
    """
    global _listeners_registered

    if _listeners_registered:
        logger.debug("Listeners already registered, skipping")
        return

    from models.listeners.order_listeners import (
        register_order_listeners,
        register_commission_protection
    )

    register_order_listeners()
    logger.info("Order lock listeners registered (Order, OrderItem)")

    register_commission_protection()
    logger.info("Commission protection listeners registered (direct amount edit warnings)")

    _listeners_registered = True
    logger.info("All event listeners registered successfully")
