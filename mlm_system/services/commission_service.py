# mlm_system/services/commission_service.py
"""
Commission calculation service - turns a paid order into payout records.

Per order, in this sequence:
1. Idempotency guard (CommissionRun / existing records)
2. Retail commission to the credited distributor
3. Matrix bonuses up the matrix, gated by rank depth and qualification
4. Rank achievement bonuses for ranks reached because of this order
5. Matching bonuses on every matrix bonus
6. Single commit; at most one CommissionRun per order
"""
from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from models.user import User
from models.order import Order
from models.commission import Commission, CommissionRun
from models.rank_achievement import RankAchievement
from mlm_system.config.ranks import CENTS
from mlm_system.config.rule_set import RuleSet, get_rule_set
from mlm_system.errors import NotFoundError, OrderNotPaidError
from mlm_system.services.rank_service import RankService
from mlm_system.services.volume_service import VolumeService, resolve_credited_distributor
from mlm_system.utils.chain_walker import ChainWalker, UplineLink
from mlm_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Skip reasons
SKIP_MISSING_DISTRIBUTOR = "missing_distributor"
SKIP_MISSING_POSITION = "missing_position"
SKIP_LEVEL_LOCKED = "level_locked"
SKIP_NOT_QUALIFIED = "not_qualified"


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def apply_rate(base: Decimal, rate: Decimal) -> Decimal:
    """base x rate at full precision, rounded to cents once."""
    return quantize_money(base * rate)


@dataclass
class CommissionLine:
    """One payout line before (or after) persistence."""
    userId: int
    fromUserId: int
    commissionType: str
    amount: Decimal
    percentage: Optional[Decimal] = None
    level: Optional[int] = None
    description: Optional[str] = None


@dataclass
class SkippedLevel:
    userId: Optional[int]
    level: int
    reason: str
    commissionType: str = "matrix"


def unreachable_levels(chain: List[UplineLink], depth: int, commissionType: str) -> List[SkippedLevel]:
    """Levels above a truncated chain end, up to depth; the upline is unknown."""
    if not chain or not chain[-1].isTruncated:
        return []
    return [
        SkippedLevel(None, level, SKIP_MISSING_POSITION, commissionType)
        for level in range(chain[-1].level + 1, depth + 1)
    ]


@dataclass
class CommissionResult:
    orderId: int
    recordsCreated: int
    totalAmount: Decimal
    alreadyProcessed: bool = False
    commissions: List[CommissionLine] = field(default_factory=list)
    skipped: List[SkippedLevel] = field(default_factory=list)
    rankAdvancements: List[Dict] = field(default_factory=list)


class CommissionService:
    """Service for calculating MLM commissions."""

    def __init__(self, session: Session, ruleSet: Optional[RuleSet] = None):
        self.session = session
        self.ruleSet = ruleSet or get_rule_set()
        self.walker = ChainWalker(
            session,
            matrixDepth=self.ruleSet.matrixDepth,
            matrixWidth=self.ruleSet.matrixWidth
        )
        self.volumeService = VolumeService(session, matrixDepth=self.ruleSet.matrixDepth, walker=self.walker)
        self.rankService = RankService(session, volumeService=self.volumeService)

    async def processOrder(self, orderId: int) -> CommissionResult:
        """
        Process all commissions for a paid order.

        Args:
            orderId: Order ID

        Returns:
            CommissionResult; alreadyProcessed=True when the order was done before

        Raises:
            NotFoundError: Order, credited distributor or its matrix position missing
            OrderNotPaidError: Order payment not confirmed
            CorruptGenealogyError: Cycle in the upline
        """
        # 1. Idempotency guard
        existing = self._existingResult(orderId)
        if existing:
            logger.info(
                f"Order {orderId} already processed: "
                f"{existing.recordsCreated} commissions, total {existing.totalAmount}"
            )
            return existing

        order = self.session.query(Order).filter_by(orderID=orderId).first()
        if not order:
            raise NotFoundError("Order", orderId)

        if order.paymentStatus != "paid":
            raise OrderNotPaidError(orderId, order.paymentStatus)

        try:
            result = await self._calculate(order)
            self._persist(order, result)
            self.session.commit()

        except IntegrityError:
            # Concurrent delivery of the same order won the unique run row
            self.session.rollback()
            existing = self._existingResult(orderId)
            if existing:
                logger.warning(f"Order {orderId} processed concurrently, returning stored result")
                return existing
            raise

        except Exception as e:
            self.session.rollback()
            logger.error(f"Error processing commissions for order {orderId}: {e}", exc_info=True)
            raise

        logger.info(
            f"Processed order {orderId}: {result.recordsCreated} commissions, "
            f"total {result.totalAmount}, skipped {len(result.skipped)}"
        )
        return result

    # ============================================================
    # CALCULATION
    # ============================================================

    async def _calculate(self, order: Order) -> CommissionResult:
        ruleSet = self.ruleSet
        credited = resolve_credited_distributor(self.session, order)

        # Fatal: the credited distributor must be placed
        self.walker.get_position(credited.userID)

        value = order.commissionableValue
        commissions: List[CommissionLine] = []
        skipped: List[SkippedLevel] = []

        # 2. Retail
        retail = self._calculateRetail(order, credited, value)
        if retail:
            commissions.append(retail)

        # 3. Matrix
        chain = self.walker.get_upline_chain(credited.userID, ruleSet.commissionDepth)
        matrixLines = self._calculateMatrix(credited, chain, value, skipped)
        commissions.extend(matrixLines)

        # 4. Rank achievement bonuses
        rankLines, advancements = await self._calculateRankBonuses(order, credited, chain)
        commissions.extend(rankLines)

        # 5. Matching
        commissions.extend(self._calculateMatching(matrixLines, skipped))

        return CommissionResult(
            orderId=order.orderID,
            recordsCreated=len(commissions),
            totalAmount=sum((line.amount for line in commissions), ZERO),
            commissions=commissions,
            skipped=skipped,
            rankAdvancements=advancements,
        )

    def _calculateRetail(self, order: Order, credited: User, value: Decimal) -> Optional[CommissionLine]:
        amount = apply_rate(value, self.ruleSet.retailRate)
        if amount <= ZERO:
            return None

        return CommissionLine(
            userId=credited.userID,
            fromUserId=order.userID,
            commissionType="retail",
            amount=amount,
            percentage=self.ruleSet.retailRate,
            description=f"Retail commission on order {order.orderNumber}",
        )

    def _calculateMatrix(
            self,
            credited: User,
            chain: List[UplineLink],
            value: Decimal,
            skipped: List[SkippedLevel]
    ) -> List[CommissionLine]:
        """Matrix bonus per upline level, nearest first."""
        lines = []

        for link in chain:
            level = link.level

            if link.isBroken:
                logger.warning(f"Matrix level {level}: distributor {link.userId} missing, skipping")
                skipped.append(SkippedLevel(link.userId, level, SKIP_MISSING_DISTRIBUTOR))
                continue

            upline = link.user
            unlocked = self.ruleSet.unlockedDepth(upline.rank)
            if unlocked < level:
                logger.debug(
                    f"Matrix level {level}: user {upline.userID} rank {upline.rank} "
                    f"unlocks {unlocked} levels, skipping"
                )
                skipped.append(SkippedLevel(upline.userID, level, SKIP_LEVEL_LOCKED))
                continue

            if not self._isQualified(upline):
                logger.info(f"Matrix level {level}: user {upline.userID} not qualified, skipping")
                skipped.append(SkippedLevel(upline.userID, level, SKIP_NOT_QUALIFIED))
                continue

            rate = self.ruleSet.matrixRate(level)
            amount = apply_rate(value, rate)
            if amount <= ZERO:
                continue

            lines.append(CommissionLine(
                userId=upline.userID,
                fromUserId=credited.userID,
                commissionType="matrix",
                amount=amount,
                percentage=rate,
                level=level,
                description=f"Matrix level {level} bonus",
            ))

        unreachable = unreachable_levels(chain, self.ruleSet.commissionDepth, "matrix")
        if unreachable:
            logger.warning(
                f"Matrix levels {unreachable[0].level}-{unreachable[-1].level} above user "
                f"{credited.userID} unreachable: missing matrix position"
            )
            skipped.extend(unreachable)

        return lines

    async def _calculateRankBonuses(
            self,
            order: Order,
            credited: User,
            chain: List[UplineLink]
    ) -> Tuple[List[CommissionLine], List[Dict]]:
        """
        One-time bonus for every rank reached because this order counted.
        Ranks already in the achievement history are never paid again.
        """
        ruleSet = self.ruleSet
        moment = order.paidAt or timeMachine.now
        period = timeMachine.periodFor(moment.strftime('%Y-%m'))

        touched = [credited] + [link.user for link in chain if not link.isBroken]

        lines = []
        advancements = []

        for user in touched:
            statsWith = self.volumeService.getStats(user.userID, period)
            statsWithout = self.volumeService.getStats(user.userID, period, excludeOrderId=order.orderID)
            rankWith = RankService.rankFromStats(statsWith, ruleSet)
            rankWithout = RankService.rankFromStats(statsWithout, ruleSet)

            for rank in ruleSet.ranksBetween(rankWithout, rankWith):
                if self._hasAchieved(user.userID, rank.id):
                    logger.debug(f"User {user.userID} already achieved {rank.id}, no bonus")
                    continue

                achievement = RankAchievement()
                achievement.userID = user.userID
                achievement.rank = rank.id
                achievement.achievedAt = timeMachine.now
                achievement.orderID = order.orderID
                achievement.personalSales = statsWith.personalSales
                achievement.teamVolume = statsWith.teamVolume
                achievement.activeLegs = statsWith.activeLegs
                self.session.add(achievement)

                advancements.append({"userId": user.userID, "rank": rank.id})
                logger.info(f"User {user.userID} achieved rank {rank.id} with order {order.orderID}")

                bonus = quantize_money(rank.bonus)
                if bonus > ZERO:
                    lines.append(CommissionLine(
                        userId=user.userID,
                        fromUserId=credited.userID,
                        commissionType="rank_bonus",
                        amount=bonus,
                        description=f"Rank achievement bonus: {rank.name}",
                    ))

            self.rankService.raiseStoredRank(user, rankWith, ruleSet)

        return lines, advancements

    def _calculateMatching(
            self,
            matrixLines: List[CommissionLine],
            skipped: List[SkippedLevel]
    ) -> List[CommissionLine]:
        """Matching bonus on each matrix bonus, for matchingDepth generations above its recipient."""
        ruleSet = self.ruleSet
        lines = []

        if ruleSet.matchingDepth <= 0 or ruleSet.matchingRate <= ZERO:
            return lines

        for matrixLine in matrixLines:
            recipientId = matrixLine.userId
            try:
                chain = self.walker.get_upline_chain(recipientId, ruleSet.matchingDepth)
            except NotFoundError:
                logger.warning(f"Matching: user {recipientId} has no matrix position, skipping")
                for generation in range(1, ruleSet.matchingDepth + 1):
                    skipped.append(SkippedLevel(recipientId, generation, SKIP_MISSING_POSITION, "matching"))
                continue

            for link in chain:
                generation = link.level

                if link.isBroken:
                    skipped.append(SkippedLevel(link.userId, generation, SKIP_MISSING_DISTRIBUTOR, "matching"))
                    continue

                if not self._isQualified(link.user):
                    skipped.append(SkippedLevel(link.userId, generation, SKIP_NOT_QUALIFIED, "matching"))
                    continue

                amount = apply_rate(matrixLine.amount, ruleSet.matchingRate)
                if amount <= ZERO:
                    continue

                lines.append(CommissionLine(
                    userId=link.userId,
                    fromUserId=recipientId,
                    commissionType="matching",
                    amount=amount,
                    percentage=ruleSet.matchingRate,
                    level=generation,
                    description=f"Matching bonus on level {matrixLine.level} matrix bonus",
                ))

            skipped.extend(unreachable_levels(chain, ruleSet.matchingDepth, "matching"))

        return lines

    def _isQualified(self, user: User) -> bool:
        """Active status and, when the plan requires it, a sufficient autoship."""
        if not user.isActive:
            return False

        minimum = self.ruleSet.autoshipMinimum
        if minimum > ZERO:
            if not user.autoshipActive:
                return False
            if Decimal(str(user.autoshipAmount or 0)) < minimum:
                return False

        return True

    def _hasAchieved(self, userId: int, rankId: str) -> bool:
        # Includes achievements added earlier in this calculation (autoflush)
        return self.session.query(RankAchievement).filter_by(
            userID=userId,
            rank=rankId
        ).first() is not None

    # ============================================================
    # PERSISTENCE
    # ============================================================

    def _persist(self, order: Order, result: CommissionResult):
        """Stage commissions, run row and order status. Caller commits."""
        for line in result.commissions:
            self._saveCommission(line, order)

        run = CommissionRun()
        run.orderID = order.orderID
        run.ruleSetVersion = self.ruleSet.version
        run.recordsCreated = result.recordsCreated
        run.totalAmount = result.totalAmount
        run.skippedLevels = [asdict(skip) for skip in result.skipped]
        self.session.add(run)

        order.commissionStatus = "reconciled"
        order.commissionError = None
        order.commissionedAt = timeMachine.now

    def _saveCommission(self, line: CommissionLine, order: Order):
        commission = Commission()
        commission.userID = line.userId
        commission.fromUserID = line.fromUserId
        commission.orderID = order.orderID
        commission.commissionType = line.commissionType
        commission.level = line.level
        commission.amount = line.amount
        commission.percentage = line.percentage
        commission.status = "pending"
        commission.description = line.description
        commission.ruleSetVersion = self.ruleSet.version

        self.session.add(commission)

    def _existingResult(self, orderId: int) -> Optional[CommissionResult]:
        """Stored result of an earlier run, or None if never processed."""
        run = self.session.query(CommissionRun).filter_by(orderID=orderId).first()
        records = self.session.query(Commission).filter_by(
            orderID=orderId
        ).order_by(Commission.commissionID).all()

        if run is None and not records:
            return None

        lines = [
            CommissionLine(
                userId=record.userID,
                fromUserId=record.fromUserID,
                commissionType=record.commissionType,
                amount=Decimal(str(record.amount)),
                percentage=Decimal(str(record.percentage)) if record.percentage is not None else None,
                level=record.level,
                description=record.description,
            )
            for record in records
        ]

        if run is not None:
            total = Decimal(str(run.totalAmount))
            count = run.recordsCreated
        else:
            total = sum((line.amount for line in lines), ZERO)
            count = len(lines)

        return CommissionResult(
            orderId=orderId,
            recordsCreated=count,
            totalAmount=quantize_money(total),
            alreadyProcessed=True,
            commissions=lines,
        )

    # ============================================================
    # REPORTING
    # ============================================================

    async def getUserCommissionSummary(self, userId: int) -> Dict:
        """
        Totals of a distributor's commissions by status and by type.

        Returns:
            Dict with total, count, byStatus, byType (Decimal amounts)
        """
        records = self.session.query(Commission).filter_by(userID=userId).all()

        summary = {
            "userId": userId,
            "total": ZERO,
            "count": len(records),
            "byStatus": {},
            "byType": {},
        }

        for record in records:
            amount = Decimal(str(record.amount))
            summary["total"] += amount
            summary["byStatus"][record.status] = summary["byStatus"].get(record.status, ZERO) + amount
            summary["byType"][record.commissionType] = summary["byType"].get(record.commissionType, ZERO) + amount

        return summary
