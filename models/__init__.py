"""
Database models for the commission engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.user import User
from models.matrix_position import MatrixPosition
from models.order import Order, OrderItem
from models.commission import Commission, CommissionRun
from models.rank_achievement import RankAchievement
from models.notification import Notification

# Event listeners
from models.listeners import register_all_listeners

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'User',
    'MatrixPosition',
    'Order',
    'OrderItem',
    'Commission',
    'CommissionRun',
    'RankAchievement',
    'Notification',

    # Listeners
    'register_all_listeners',
]
