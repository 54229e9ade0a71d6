# mlm_system/services/volume_service.py
"""
Sales volume service for rank qualification.

Personal sales: commissionable value of paid orders credited to a
distributor within a qualifying period (calendar month).
Team volume: personal sales of the distributor plus every matrix
descendant within matrix depth.
Active legs: direct matrix children whose own subtree made at least one
paid sale in the period.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session, aliased
from sqlalchemy import case, func
import logging

from models.user import User
from models.order import Order, OrderItem
from mlm_system.config.ranks import MATRIX_DEPTH
from mlm_system.errors import NotFoundError
from mlm_system.utils.chain_walker import ChainWalker
from mlm_system.utils.time_machine import timeMachine, Period

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class VolumeStats:
    """Qualification inputs of one distributor for one period."""
    userId: int
    period: str
    personalSales: Decimal
    teamVolume: Decimal
    activeLegs: int


def credited_distributor_id(order: Order) -> Optional[int]:
    """
    Distributor credited with an order's sale.

    A distributor buying for themselves is credited directly. A retail
    customer's order goes to the replicated-site owner (order.distributorID),
    falling back to the customer's referring distributor.
    """
    buyer = order.buyer
    if buyer is not None and buyer.isDistributor:
        return buyer.userID
    if order.distributorID is not None:
        return order.distributorID
    if buyer is not None:
        return buyer.sponsorID
    return None


def resolve_credited_distributor(session: Session, order: Order) -> User:
    """
    Load the credited distributor of an order.

    Raises:
        NotFoundError: If nobody can be credited or the row is missing
    """
    distributorId = credited_distributor_id(order)
    if distributorId is None:
        raise NotFoundError(
            "Distributor", None,
            f"Order {order.orderID} has no distributor to credit"
        )

    distributor = session.query(User).filter_by(userID=distributorId).first()
    if distributor is None:
        raise NotFoundError("User", distributorId)
    return distributor


class VolumeService:
    """Service for computing sales volumes over the matrix."""

    def __init__(self, session: Session, matrixDepth: int = MATRIX_DEPTH, walker: Optional[ChainWalker] = None):
        self.session = session
        self.matrixDepth = matrixDepth
        self.walker = walker or ChainWalker(session, matrixDepth=matrixDepth)

    # ============================================================
    # PUBLIC API
    # ============================================================

    def getPersonalSales(
            self,
            userId: int,
            period: Optional[Period] = None,
            excludeOrderId: Optional[int] = None
    ) -> Decimal:
        """
        Personal sales of a distributor in a period.

        Args:
            userId: Distributor ID
            period: Qualifying period (current month by default)
            excludeOrderId: Order to leave out (rank evaluation "without" an order)
        """
        sales = self._salesByDistributor([userId], period, excludeOrderId)
        return sales.get(userId, ZERO)

    def getTeamVolume(
            self,
            userId: int,
            period: Optional[Period] = None,
            excludeOrderId: Optional[int] = None
    ) -> Decimal:
        """Own sales plus sales of every descendant within matrix depth."""
        legs = self._collectLegs(userId)
        ids = [userId] + [memberId for members in legs.values() for memberId in members]
        sales = self._salesByDistributor(ids, period, excludeOrderId)
        return sum(sales.values(), ZERO)

    def getActiveLegs(
            self,
            userId: int,
            period: Optional[Period] = None,
            excludeOrderId: Optional[int] = None
    ) -> int:
        """Number of direct children whose subtree sold anything in the period."""
        legs = self._collectLegs(userId)
        ids = [memberId for members in legs.values() for memberId in members]
        sales = self._salesByDistributor(ids, period, excludeOrderId)
        return self._countActiveLegs(legs, sales)

    def getStats(
            self,
            userId: int,
            period: Optional[Period] = None,
            excludeOrderId: Optional[int] = None
    ) -> VolumeStats:
        """
        All qualification inputs with a single sales query.

        Raises:
            NotFoundError: If the distributor has no matrix position
        """
        period = period or timeMachine.currentPeriod
        legs = self._collectLegs(userId)
        ids = [userId] + [memberId for members in legs.values() for memberId in members]
        sales = self._salesByDistributor(ids, period, excludeOrderId)

        stats = VolumeStats(
            userId=userId,
            period=period.label,
            personalSales=sales.get(userId, ZERO),
            teamVolume=sum(sales.values(), ZERO),
            activeLegs=self._countActiveLegs(legs, sales),
        )

        logger.debug(
            f"Stats for user {userId} in {period.label}: PS={stats.personalSales}, "
            f"TV={stats.teamVolume}, legs={stats.activeLegs}"
        )
        return stats

    # ============================================================
    # INTERNALS
    # ============================================================

    def _collectLegs(self, userId: int) -> Dict[int, List[int]]:
        """
        Map each direct child to the IDs of its subtree (child included),
        bounded by matrix depth below userId.
        """
        legs: Dict[int, List[int]] = {}
        currentLeg = [None]

        def collect(position, depth):
            # Depth-first in leg order: a child's subtree follows the child
            if depth == 1:
                currentLeg[0] = position.userID
                legs[position.userID] = []
            legs[currentLeg[0]].append(position.userID)

        self.walker.walk_downline(userId, collect, self.matrixDepth)
        return legs

    @staticmethod
    def _countActiveLegs(legs: Dict[int, List[int]], sales: Dict[int, Decimal]) -> int:
        return sum(
            1 for members in legs.values()
            if any(sales.get(memberId, ZERO) > ZERO for memberId in members)
        )

    def _salesByDistributor(
            self,
            userIds: Iterable[int],
            period: Optional[Period],
            excludeOrderId: Optional[int]
    ) -> Dict[int, Decimal]:
        """Sum of line CV (unit CV x quantity) per credited distributor."""
        ids = list(userIds)
        if not ids:
            return {}

        period = period or timeMachine.currentPeriod

        Buyer = aliased(User)
        credited = case(
            (Buyer.role == "distributor", Order.userID),
            else_=func.coalesce(Order.distributorID, Buyer.sponsorID)
        )

        query = self.session.query(
            credited.label("creditedID"),
            OrderItem.commissionableValue,
            OrderItem.quantity
        ).join(
            OrderItem, OrderItem.orderID == Order.orderID
        ).join(
            Buyer, Buyer.userID == Order.userID
        ).filter(
            Order.paymentStatus == "paid",
            Order.paidAt >= period.start,
            Order.paidAt < period.end,
            credited.in_(ids)
        )

        if excludeOrderId is not None:
            query = query.filter(Order.orderID != excludeOrderId)

        # Summed in Python: SQLite aggregates DECIMAL as float
        sales: Dict[int, Decimal] = {}
        for creditedId, unitValue, quantity in query.all():
            lineValue = Decimal(str(unitValue or 0)) * int(quantity or 0)
            sales[creditedId] = sales.get(creditedId, ZERO) + lineValue

        return sales
