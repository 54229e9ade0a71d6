"""
User model - distributors and their retail customers.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class User(Base, AuditMixin):
    __tablename__ = 'users'

    userID = Column(Integer, primary_key=True, autoincrement=True)

    email = Column(String, nullable=True, unique=True)
    firstname = Column(String, nullable=True)
    surname = Column(String, nullable=True)

    role = Column(String(20), nullable=False, default="distributor")  # distributor, customer

    # Enrollment sponsor; for a customer this is the referring distributor
    sponsorID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)

    rank = Column(String(50), nullable=False, default="distributor")
    status = Column(String(20), nullable=False, default="active")  # active, inactive, suspended

    # Autoship qualification
    autoshipActive = Column(Boolean, nullable=False, default=False)
    autoshipAmount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))

    # Relationships
    sponsor = relationship('User', remote_side=[userID], backref='enrolled')

    @property
    def isDistributor(self) -> bool:
        return self.role == "distributor"

    @property
    def isActive(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<User(userID={self.userID}, role={self.role}, rank={self.rank}, status={self.status})>"
