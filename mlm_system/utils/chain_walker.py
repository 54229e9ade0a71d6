# mlm_system/utils/chain_walker.py
"""
Safe forced-matrix walking utilities.
Follows MatrixPosition.parentID links by keyed lookups, caps every walk
and raises on cycles instead of looping.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Callable, Dict, Iterator, List, Set
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models.user import User
from models.matrix_position import MatrixPosition
from mlm_system.config.ranks import MATRIX_WIDTH, MATRIX_DEPTH
from mlm_system.errors import NotFoundError, CorruptGenealogyError

logger = logging.getLogger(__name__)


@dataclass
class UplineLink:
    """One step of an upline chain. level 1 is the immediate parent."""
    level: int
    userId: int
    user: Optional[User]
    position: Optional[MatrixPosition]

    @property
    def isBroken(self) -> bool:
        """Distributor row missing for this slot."""
        return self.user is None

    @property
    def isTruncated(self) -> bool:
        """Slot has no matrix position, so nothing above it is reachable."""
        return self.position is None


@dataclass
class DownlineNode:
    """Downline tree node annotated with qualifying-period stats."""
    user: User
    position: MatrixPosition
    depth: int
    personalSales: Decimal = Decimal("0")
    teamVolume: Decimal = Decimal("0")
    activeLegs: int = 0
    children: List["DownlineNode"] = field(default_factory=list)

    def iter_nodes(self) -> Iterator["DownlineNode"]:
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def to_dict(self) -> Dict:
        return {
            "userId": self.user.userID,
            "name": f"{self.user.firstname or ''} {self.user.surname or ''}".strip(),
            "rank": self.user.rank,
            "status": self.user.status,
            "level": self.position.level,
            "legPosition": self.position.legPosition,
            "personalSales": str(self.personalSales),
            "teamVolume": str(self.teamVolume),
            "activeLegs": self.activeLegs,
            "children": [child.to_dict() for child in self.children],
        }


class ChainWalker:
    """
    Safe utilities for walking matrix upline/downline chains.
    Prevents infinite loops and validates chain integrity.
    """

    def __init__(self, session: Session, matrixDepth: int = MATRIX_DEPTH, matrixWidth: int = MATRIX_WIDTH):
        self.session = session
        self.matrixDepth = matrixDepth
        self.matrixWidth = matrixWidth

    # ============================================================
    # LOOKUPS
    # ============================================================

    def find_position(self, userId: int) -> Optional[MatrixPosition]:
        return self.session.query(MatrixPosition).filter_by(userID=userId).first()

    def get_position(self, userId: int) -> MatrixPosition:
        """
        Get matrix position of a distributor.

        Raises:
            NotFoundError: If the distributor was never placed
        """
        position = self.find_position(userId)
        if position is None:
            raise NotFoundError("MatrixPosition", userId, f"User {userId} has no matrix position")
        return position

    def get_children(self, userId: int) -> List[MatrixPosition]:
        """Direct children, ordered by legPosition ascending (unset slots last)."""
        return self.session.query(MatrixPosition).filter(
            MatrixPosition.parentID == userId
        ).order_by(
            MatrixPosition.legPosition.is_(None),
            MatrixPosition.legPosition,
            MatrixPosition.userID
        ).all()

    # ============================================================
    # UPLINE
    # ============================================================

    def walk_upline(
            self,
            startUserId: int,
            callback: Callable[[UplineLink], bool],
            maxLevels: int = MATRIX_DEPTH
    ) -> int:
        """
        Safely walk up the matrix, calling callback for each upline slot.

        Args:
            startUserId: Distributor to start from (not included)
            callback: Function(link) -> continue_walking (bool)
            maxLevels: Maximum number of links to produce

        Returns:
            Number of links processed

        Raises:
            NotFoundError: If start distributor has no matrix position
            CorruptGenealogyError: If a distributor is visited twice

        Example:
            def process_upline(link):
                print(f"Level {link.level}: {link.userId}")
                return True  # Continue walking

            walker.walk_upline(userId, process_upline)
        """
        position = self.get_position(startUserId)
        path = [startUserId]
        visited = {startUserId}
        level = 1
        processed = 0

        while position.parentID is not None and level <= maxLevels:
            parentId = position.parentID

            # Check for cycles
            if parentId in visited:
                logger.error(
                    f"Cycle detected walking upline from user {startUserId}: "
                    f"{parentId} revisited at level {level}"
                )
                raise CorruptGenealogyError(parentId, path + [parentId])

            visited.add(parentId)
            path.append(parentId)

            upline_user = self.session.query(User).filter_by(userID=parentId).first()
            parent_position = self.find_position(parentId)

            if upline_user is None:
                logger.warning(
                    f"Upline distributor {parentId} not found "
                    f"(level {level} above user {startUserId})"
                )

            link = UplineLink(level=level, userId=parentId, user=upline_user, position=parent_position)
            processed += 1

            if not callback(link):
                break

            if link.isTruncated:
                logger.warning(
                    f"Matrix position missing for upline {parentId}; "
                    f"chain from user {startUserId} ends at level {level}"
                )
                break

            position = parent_position
            level += 1

        return processed

    def get_upline_chain(self, userId: int, maxLevels: int = MATRIX_DEPTH) -> List[UplineLink]:
        """
        Get ordered upline chain, nearest first.

        Args:
            userId: Starting distributor
            maxLevels: Maximum number of links returned

        Returns:
            List of at most maxLevels links
        """
        chain = []

        def collect(link):
            chain.append(link)
            return True  # Continue

        self.walk_upline(userId, collect, maxLevels)
        return chain

    # ============================================================
    # DOWNLINE
    # ============================================================

    def walk_downline(
            self,
            startUserId: int,
            callback: Callable[[MatrixPosition, int], None],
            maxDepth: int = MATRIX_DEPTH,
            visited: Optional[Set[int]] = None,
            _depth: int = 1
    ) -> int:
        """
        Safely walk down the matrix recursively (depth-first, leg order).

        Args:
            startUserId: Distributor whose downline is walked (not included)
            callback: Function(position, depth) for each descendant,
                      depth 1 = direct child
            maxDepth: Maximum relative depth
            visited: Set of visited user IDs (for cycle detection)

        Returns:
            Total number of positions processed
        """
        if visited is None:
            visited = {startUserId}

        if _depth > maxDepth:
            return 0

        processed = 0

        for child in self.get_children(startUserId):
            if child.userID in visited:
                logger.error(f"Cycle detected in downline at user {child.userID}")
                raise CorruptGenealogyError(child.userID, [startUserId, child.userID])

            visited.add(child.userID)

            callback(child, _depth)
            processed += 1

            processed += self.walk_downline(
                child.userID,
                callback,
                maxDepth,
                visited,
                _depth + 1
            )

        return processed

    def collect_downline_ids(self, userId: int, maxDepth: Optional[int] = None) -> List[int]:
        """IDs of all descendants within maxDepth (defaults to matrix depth)."""
        ids = []

        def collect(position, depth):
            ids.append(position.userID)

        self.walk_downline(userId, collect, maxDepth if maxDepth is not None else self.matrixDepth)
        return ids

    def count_downline(self, userId: int, maxDepth: Optional[int] = None) -> int:
        """
        Count total number of positions in downline.

        Args:
            userId: Starting distributor
            maxDepth: Maximum depth (defaults to matrix depth)

        Returns:
            Total count of downline positions
        """
        count = [0]  # Use list to allow modification in callback

        def counter(position, depth):
            count[0] += 1

        self.walk_downline(userId, counter, maxDepth if maxDepth is not None else self.matrixDepth)
        return count[0]

    def build_downline_tree(
            self,
            userId: int,
            maxDepth: Optional[int] = None,
            period=None,
            volumeService=None
    ) -> DownlineNode:
        """
        Expand a distributor's downline into a stats-annotated tree.

        Every node fans out to at most matrixWidth children, so the tree holds
        up to W^maxDepth nodes. Keep maxDepth small.

        Args:
            userId: Tree root
            maxDepth: Levels below the root to expand (Config DOWNLINE_TREE_DEPTH, 3)
            period: Qualifying period for stats (current month by default)
            volumeService: VolumeService to reuse

        Raises:
            NotFoundError: If root distributor or its position is missing
        """
        if maxDepth is None:
            from config import Config
            maxDepth = Config.get(Config.DOWNLINE_TREE_DEPTH, 3)

        if volumeService is None:
            from mlm_system.services.volume_service import VolumeService
            volumeService = VolumeService(self.session, walker=self)

        root_position = self.get_position(userId)
        root_user = self.session.query(User).filter_by(userID=userId).first()
        if root_user is None:
            raise NotFoundError("User", userId)

        visited = {userId}

        def expand(user: User, position: MatrixPosition, depth: int) -> DownlineNode:
            stats = volumeService.getStats(user.userID, period)
            node = DownlineNode(
                user=user,
                position=position,
                depth=depth,
                personalSales=stats.personalSales,
                teamVolume=stats.teamVolume,
                activeLegs=stats.activeLegs,
            )

            if depth >= maxDepth:
                return node

            for child_position in self.get_children(user.userID):
                if child_position.userID in visited:
                    raise CorruptGenealogyError(child_position.userID, [user.userID, child_position.userID])
                visited.add(child_position.userID)

                child_user = self.session.query(User).filter_by(userID=child_position.userID).first()
                if child_user is None:
                    logger.warning(
                        f"Downline distributor {child_position.userID} not found "
                        f"under user {user.userID}, skipping branch"
                    )
                    continue

                node.children.append(expand(child_user, child_position, depth + 1))

            return node

        return expand(root_user, root_position, 0)

    # ============================================================
    # DIAGNOSTICS
    # ============================================================

    def get_matrix_stats(self, userId: int) -> Dict:
        """Placement summary for a distributor."""
        position = self.get_position(userId)
        direct_children = self.session.query(func.count(MatrixPosition.positionID)).filter(
            MatrixPosition.parentID == userId
        ).scalar() or 0

        return {
            "level": position.level,
            "position": position.position,
            "legPosition": position.legPosition,
            "totalDownline": self.count_downline(userId),
            "directChildren": direct_children,
            "availableSlots": max(self.matrixWidth - direct_children, 0),
        }

    def validate_matrix(self) -> Dict[str, List[int]]:
        """
        Check matrix shape invariants.

        Returns:
            Dict with lists of user IDs:
            - overfilled: parents with more than matrixWidth children
            - tooDeep: positions deeper than matrixDepth
            - orphans: positions whose parent has no position
        """
        overfilled = [
            parentId for parentId, count in self.session.query(
                MatrixPosition.parentID,
                func.count(MatrixPosition.positionID)
            ).filter(
                MatrixPosition.parentID.isnot(None)
            ).group_by(MatrixPosition.parentID).all()
            if count > self.matrixWidth
        ]

        too_deep = [
            userId for (userId,) in self.session.query(MatrixPosition.userID).filter(
                MatrixPosition.level > self.matrixDepth
            ).all()
        ]

        placed = {userId for (userId,) in self.session.query(MatrixPosition.userID).all()}
        orphans = [
            userId for userId, parentId in self.session.query(
                MatrixPosition.userID, MatrixPosition.parentID
            ).filter(MatrixPosition.parentID.isnot(None)).all()
            if parentId not in placed
        ]

        if overfilled or too_deep or orphans:
            logger.warning(
                f"Matrix validation: overfilled={overfilled}, "
                f"tooDeep={too_deep}, orphans={orphans}"
            )
        else:
            logger.info("Matrix validation passed")

        return {
            "overfilled": sorted(overfilled),
            "tooDeep": sorted(too_deep),
            "orphans": sorted(orphans),
        }
