# mlm_system/services/rank_service.py
"""
Rank management service.

A distributor holds the highest rank whose three thresholds (personal
sales, team volume, active legs) are all met in the qualifying period.
Stored ranks are never downgraded.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Dict
from sqlalchemy.orm import Session
import logging

from models.user import User
from models.matrix_position import MatrixPosition
from mlm_system.config.rule_set import RuleSet, RankDefinition, get_rule_set
from mlm_system.errors import MLMError, NotFoundError
from mlm_system.services.volume_service import VolumeService, VolumeStats
from mlm_system.utils.time_machine import Period

logger = logging.getLogger(__name__)


@dataclass
class RankQualification:
    """Progress of a distributor towards a rank."""
    userId: int
    rank: str
    qualified: bool
    stats: VolumeStats
    requirements: RankDefinition
    missing: Dict[str, Decimal] = field(default_factory=dict)


class RankService:
    """Service for evaluating and maintaining distributor ranks."""

    def __init__(self, session: Session, volumeService: Optional[VolumeService] = None):
        self.session = session
        self._volumeService = volumeService

    def _volume(self, ruleSet: RuleSet) -> VolumeService:
        if self._volumeService is not None:
            return self._volumeService
        return VolumeService(self.session, matrixDepth=ruleSet.matrixDepth)

    # ============================================================
    # EVALUATION
    # ============================================================

    @staticmethod
    def meetsRequirements(stats: VolumeStats, rank: RankDefinition) -> bool:
        return (
            stats.personalSales >= rank.personalSales
            and stats.teamVolume >= rank.teamVolume
            and stats.activeLegs >= rank.activeLegs
        )

    @staticmethod
    def rankFromStats(stats: VolumeStats, ruleSet: RuleSet) -> str:
        """
        Highest rank whose thresholds are all met; base rank otherwise.
        Checks ranks from highest to lowest and returns first qualifying rank.
        """
        for rank in reversed(ruleSet.ranks):
            if RankService.meetsRequirements(stats, rank):
                return rank.id
        return ruleSet.baseRank.id

    async def evaluateRank(
            self,
            distributorId: int,
            ruleSet: Optional[RuleSet] = None,
            period: Optional[Period] = None,
            excludeOrderId: Optional[int] = None
    ) -> str:
        """
        Evaluate the rank a distributor qualifies for. Read-only.

        Args:
            distributorId: Distributor ID
            ruleSet: Compensation plan (active plan by default)
            period: Qualifying period (current month by default)
            excludeOrderId: Evaluate as if this order did not exist

        Returns:
            Rank id

        Raises:
            NotFoundError: If the distributor has no matrix position
        """
        ruleSet = ruleSet or get_rule_set()
        stats = self._volume(ruleSet).getStats(distributorId, period, excludeOrderId)
        return self.rankFromStats(stats, ruleSet)

    async def checkRankQualification(
            self,
            distributorId: int,
            rankId: str,
            ruleSet: Optional[RuleSet] = None,
            period: Optional[Period] = None
    ) -> RankQualification:
        """
        Check a distributor against one rank's requirements.

        Returns:
            RankQualification with the shortfall per requirement in `missing`

        Raises:
            NotFoundError: If rankId is not part of the plan
        """
        ruleSet = ruleSet or get_rule_set()
        if not ruleSet.hasRank(rankId):
            raise NotFoundError("Rank", rankId)

        rank = ruleSet.getRank(rankId)
        stats = self._volume(ruleSet).getStats(distributorId, period)

        missing: Dict[str, Decimal] = {}
        if stats.personalSales < rank.personalSales:
            missing["personalSales"] = rank.personalSales - stats.personalSales
        if stats.teamVolume < rank.teamVolume:
            missing["teamVolume"] = rank.teamVolume - stats.teamVolume
        if stats.activeLegs < rank.activeLegs:
            missing["activeLegs"] = Decimal(rank.activeLegs - stats.activeLegs)

        qualified = not missing
        if qualified:
            logger.info(f"User {distributorId} qualified for {rankId}")
        else:
            logger.debug(f"User {distributorId} not qualified for {rankId}: missing {missing}")

        return RankQualification(
            userId=distributorId,
            rank=rankId,
            qualified=qualified,
            stats=stats,
            requirements=rank,
            missing=missing,
        )

    async def getRankStats(
            self,
            distributorId: int,
            ruleSet: Optional[RuleSet] = None,
            period: Optional[Period] = None
    ) -> Dict:
        """
        Rank progress for the dashboard: stored rank, next rank and the
        qualification status of both.

        Returns:
            Dict with currentRank, currentQualification, nextRank (None at
            the top rank) and nextQualification

        Raises:
            NotFoundError: If the distributor does not exist
        """
        ruleSet = ruleSet or get_rule_set()

        user = self.session.query(User).filter_by(userID=distributorId).first()
        if not user:
            raise NotFoundError("User", distributorId)

        current = ruleSet.getRank(user.rank)
        currentQualification = await self.checkRankQualification(distributorId, current.id, ruleSet, period)

        following = [rank for rank in ruleSet.ranks if rank.level > current.level]
        nextRank = following[0] if following else None
        nextQualification = None
        if nextRank is not None:
            nextQualification = await self.checkRankQualification(distributorId, nextRank.id, ruleSet, period)

        return {
            "userId": distributorId,
            "currentRank": {
                "id": current.id,
                "name": current.name,
                "level": current.level,
            },
            "currentQualification": currentQualification,
            "nextRank": {
                "id": nextRank.id,
                "name": nextRank.name,
                "level": nextRank.level,
                "bonus": ruleSet.rankBonus(nextRank.id),
            } if nextRank else None,
            "nextQualification": nextQualification,
        }

    # ============================================================
    # STORED RANK
    # ============================================================

    def raiseStoredRank(self, user: User, newRank: str, ruleSet: RuleSet) -> bool:
        """
        Raise user's stored rank. Ranks cannot be downgraded.

        Returns:
            True if the stored rank changed
        """
        oldRank = user.rank
        if ruleSet.compareRanks(newRank, oldRank) <= 0:
            return False

        user.rank = newRank
        logger.info(f"User {user.userID} rank updated: {oldRank} → {newRank}")
        return True

    async def processRankAdvancement(
            self,
            distributorId: int,
            ruleSet: Optional[RuleSet] = None,
            period: Optional[Period] = None
    ) -> Optional[str]:
        """
        Re-evaluate a distributor and raise the stored rank when higher.
        Does not commit. Rank achievements and their bonuses are written
        only by order commission processing.

        Returns:
            New rank if raised, None otherwise
        """
        ruleSet = ruleSet or get_rule_set()

        user = self.session.query(User).filter_by(userID=distributorId).first()
        if not user:
            raise NotFoundError("User", distributorId)

        evaluated = await self.evaluateRank(distributorId, ruleSet, period)
        if self.raiseStoredRank(user, evaluated, ruleSet):
            return evaluated
        return None

    async def checkAllRanks(self, ruleSet: Optional[RuleSet] = None) -> Dict[str, int]:
        """
        Check and update ranks for all placed distributors.
        Called by daily scheduler task.

        Returns:
            Statistics dict with:
            - checked: Number of distributors checked
            - updated: Number of distributors with rank raised
            - errors: Number of errors encountered
        """
        ruleSet = ruleSet or get_rule_set()
        results = {
            "checked": 0,
            "updated": 0,
            "errors": 0
        }

        userIds = [
            userId for (userId,) in self.session.query(User.userID).join(
                MatrixPosition, MatrixPosition.userID == User.userID
            ).filter(
                User.role == "distributor"
            ).order_by(User.userID).all()
        ]

        for userId in userIds:
            results["checked"] += 1
            try:
                if await self.processRankAdvancement(userId, ruleSet):
                    results["updated"] += 1
            except MLMError as e:
                logger.error(f"Error checking rank for user {userId}: {e}", exc_info=True)
                results["errors"] += 1

        self.session.commit()

        logger.info(
            f"Rank check complete: checked={results['checked']}, "
            f"updated={results['updated']}, errors={results['errors']}"
        )

        return results
