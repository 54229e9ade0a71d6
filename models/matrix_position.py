"""
MatrixPosition model - placement of a distributor in the forced matrix.

One row per distributor. parentID points at the distributor occupying the
slot above; the root has parentID = NULL.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship, backref
from models.base import Base, AuditMixin, _get_current_time


class MatrixPosition(Base, AuditMixin):
    __tablename__ = 'matrix_positions'

    positionID = Column(Integer, primary_key=True, autoincrement=True)

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, unique=True)
    sponsorID = Column(Integer, nullable=True)  # Enrollment sponsor at placement time
    parentID = Column(Integer, nullable=True, index=True)  # No ForeignKey: administrative re-parenting may leave dangling links

    level = Column(Integer, nullable=False)  # 1-based depth from root
    position = Column(Integer, nullable=False)  # Sequential slot within level
    legPosition = Column(Integer, nullable=True)  # 1..W under parent

    status = Column(String(20), nullable=False, default="active")  # active, spilled, cycled
    placedAt = Column(DateTime, default=_get_current_time)

    user = relationship('User', backref=backref('matrixPosition', uselist=False))

    def __repr__(self):
        return (
            f"<MatrixPosition(userID={self.userID}, parentID={self.parentID}, "
            f"level={self.level}, leg={self.legPosition})>"
        )
