"""
Commission models.

Commission     - one payout line (retail, matrix, rank_bonus, matching).
CommissionRun  - one row per processed order; UNIQUE(orderID) guarantees
                 that an order's commissions are written at most once.
"""
from sqlalchemy import (
    Column, Integer, String, DECIMAL, DateTime, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Commission(Base, AuditMixin):
    __tablename__ = 'commissions'

    commissionID = Column(Integer, primary_key=True, autoincrement=True)

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)  # Recipient
    fromUserID = Column(Integer, ForeignKey('users.userID'), nullable=False)  # Who generated it
    orderID = Column(Integer, ForeignKey('orders.orderID'), nullable=False, index=True)

    commissionType = Column(String(20), nullable=False)  # retail, matrix, rank_bonus, matching
    level = Column(Integer, nullable=True)  # Matrix level / matching generation
    amount = Column(DECIMAL(12, 2), nullable=False)
    percentage = Column(DECIMAL(7, 4), nullable=True)  # Rate applied (fraction)

    status = Column(String(20), nullable=False, default="pending")  # pending, approved, paid, rejected
    description = Column(String, nullable=True)
    ruleSetVersion = Column(String(50), nullable=True)

    # Payout tracking (external batch process)
    paymentBatchID = Column(Integer, nullable=True)
    paidAt = Column(DateTime, nullable=True)

    recipient = relationship('User', foreign_keys=[userID])
    order = relationship('Order', backref='commissions')

    def __repr__(self):
        return (
            f"<Commission(commissionID={self.commissionID}, userID={self.userID}, "
            f"type={self.commissionType}, level={self.level}, amount={self.amount})>"
        )


class CommissionRun(Base, AuditMixin):
    __tablename__ = 'commission_runs'
    __table_args__ = (
        UniqueConstraint('orderID', name='uq_commission_runs_order'),
    )

    runID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('orders.orderID'), nullable=False)

    ruleSetVersion = Column(String(50), nullable=True)
    recordsCreated = Column(Integer, nullable=False, default=0)
    totalAmount = Column(DECIMAL(12, 2), nullable=False)
    skippedLevels = Column(JSON, nullable=True)
    # [{"userId": 12, "level": 3, "reason": "not_qualified"}, ...]

    def __repr__(self):
        return f"<CommissionRun(orderID={self.orderID}, records={self.recordsCreated}, total={self.totalAmount})>"
