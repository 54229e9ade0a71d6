"""
Order and OrderItem models - completed purchases that feed the commission engine.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Order(Base, AuditMixin):
    __tablename__ = 'orders'

    orderID = Column(Integer, primary_key=True, autoincrement=True)
    orderNumber = Column(String(50), nullable=False, unique=True)

    # Buyer (distributor or retail customer)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    # Who gets credit for the sale (replicated-site owner)
    distributorID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)

    subtotal = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    tax = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    shipping = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    total = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))

    status = Column(String(20), nullable=False, default="pending")  # pending, processing, completed, cancelled, refunded
    paymentStatus = Column(String(20), nullable=False, default="pending")  # pending, paid, failed, refunded
    paidAt = Column(DateTime, nullable=True, index=True)

    # Commission reconciliation
    commissionStatus = Column(String(20), nullable=False, default="pending", index=True)  # pending, reconciled, failed
    commissionError = Column(String, nullable=True)
    commissionAttempts = Column(Integer, nullable=False, default=0)  # Failed processing attempts
    commissionedAt = Column(DateTime, nullable=True)

    # Relationships
    buyer = relationship('User', foreign_keys=[userID])
    distributor = relationship('User', foreign_keys=[distributorID])
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan',
                         order_by='OrderItem.itemID')

    @property
    def commissionableValue(self) -> Decimal:
        """Total commissionable value: sum of per-unit CV times quantity."""
        total = Decimal("0")
        for item in self.items:
            total += item.lineCommissionableValue
        return total

    def __repr__(self):
        return (
            f"<Order(orderID={self.orderID}, number={self.orderNumber}, "
            f"paymentStatus={self.paymentStatus}, commissionStatus={self.commissionStatus})>"
        )


class OrderItem(Base):
    __tablename__ = 'order_items'

    itemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('orders.orderID'), nullable=False, index=True)
    productID = Column(Integer, nullable=True)

    quantity = Column(Integer, nullable=False, default=1)
    price = Column(DECIMAL(12, 2), nullable=False)  # Unit price at time of purchase
    commissionableValue = Column(DECIMAL(12, 2), nullable=False)  # Unit CV, may be below price

    order = relationship('Order', back_populates='items')

    @property
    def lineCommissionableValue(self) -> Decimal:
        return Decimal(str(self.commissionableValue or 0)) * int(self.quantity or 0)

    def __repr__(self):
        return f"<OrderItem(itemID={self.itemID}, qty={self.quantity}, cv={self.commissionableValue})>"
