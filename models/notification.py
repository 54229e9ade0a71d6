"""
Notification model - outbox for distributor notifications.
Rows are picked up by the external email sender.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from models.base import Base, AuditMixin


class Notification(Base, AuditMixin):
    __tablename__ = 'notifications'

    notificationID = Column(Integer, primary_key=True, autoincrement=True)

    source = Column(String(50), nullable=False, default="mlm_system")
    targetUserID = Column(Integer, nullable=False, index=True)
    category = Column(String(50), nullable=False)  # commission_earned, rank_achieved
    subject = Column(String, nullable=True)
    text = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default="pending")  # pending, sent, failed
    sentAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Notification(id={self.notificationID}, user={self.targetUserID}, category={self.category})>"
