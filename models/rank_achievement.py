"""
RankAchievement model - history of ranks reached, one row per user and rank.
A rank bonus is never paid twice for the same rank.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, UniqueConstraint
from models.base import Base, _get_current_time


class RankAchievement(Base):
    __tablename__ = 'rank_achievements'
    __table_args__ = (
        UniqueConstraint('userID', 'rank', name='uq_rank_achievements_user_rank'),
    )

    achievementID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    rank = Column(String(50), nullable=False)
    achievedAt = Column(DateTime, default=_get_current_time)

    # Order that pushed the user over the threshold (None for scheduled checks)
    orderID = Column(Integer, nullable=True)

    # Snapshot of qualifying stats
    personalSales = Column(DECIMAL(14, 2), nullable=True)
    teamVolume = Column(DECIMAL(14, 2), nullable=True)
    activeLegs = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<RankAchievement(userID={self.userID}, rank={self.rank})>"
