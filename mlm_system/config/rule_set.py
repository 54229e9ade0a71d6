# mlm_system/config/rule_set.py
"""
Compensation plan (RuleSet) parsing and validation.

A plan arrives as a loosely typed mapping (JSON file or the built-in
DEFAULT_PLAN) and is turned into a frozen, range-checked RuleSet once.
Every percentage is a fraction in [0, 1]. Anything malformed fails with
InvalidRuleSet listing all problems found.
"""
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from mlm_system.config.ranks import (
    DEFAULT_PLAN,
    MIN_MATRIX_WIDTH,
    MAX_MATRIX_WIDTH,
    MIN_MATRIX_DEPTH,
    MAX_MATRIX_DEPTH,
    MAX_MATCHING_DEPTH,
)
from mlm_system.errors import InvalidRuleSet

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass(frozen=True)
class RankDefinition:
    """Single rank: qualification thresholds and what it unlocks."""
    id: str
    name: str
    level: int
    personalSales: Decimal
    teamVolume: Decimal
    activeLegs: int
    unlockedDepth: int
    bonus: Decimal


@dataclass(frozen=True)
class RuleSet:
    """Validated, immutable compensation plan."""
    version: str
    matrixWidth: int
    matrixDepth: int
    retailRate: Decimal
    matrixRates: Tuple[Decimal, ...]
    matchingRate: Decimal
    matchingDepth: int
    autoshipMinimum: Decimal
    ranks: Tuple[RankDefinition, ...]  # ascending by level

    @property
    def commissionDepth(self) -> int:
        """Number of upline levels that can earn a matrix bonus."""
        return min(self.matrixDepth, len(self.matrixRates))

    @property
    def baseRank(self) -> RankDefinition:
        return self.ranks[0]

    @property
    def maxPayoutRate(self) -> Decimal:
        matrixTotal = sum(self.matrixRates, ZERO)
        return self.retailRate + matrixTotal + self.matchingRate * self.matchingDepth * matrixTotal

    def matrixRate(self, level: int) -> Decimal:
        """Rate for 1-based matrix level; 0 outside the table."""
        if 1 <= level <= len(self.matrixRates):
            return self.matrixRates[level - 1]
        return ZERO

    def getRank(self, rankId: Optional[str]) -> RankDefinition:
        """
        Look up a rank by id. Unknown or empty ids resolve to the base rank.
        """
        for rank in self.ranks:
            if rank.id == rankId:
                return rank
        if rankId:
            logger.warning(f"Unknown rank '{rankId}', using base rank '{self.baseRank.id}'")
        return self.baseRank

    def hasRank(self, rankId: str) -> bool:
        return any(rank.id == rankId for rank in self.ranks)

    def unlockedDepth(self, rankId: Optional[str]) -> int:
        return self.getRank(rankId).unlockedDepth

    def rankBonus(self, rankId: str) -> Decimal:
        return self.getRank(rankId).bonus

    def compareRanks(self, rank1: Optional[str], rank2: Optional[str]) -> int:
        """
        Compare two ranks.

        Returns:
            -1 if rank1 < rank2
             0 if rank1 == rank2
             1 if rank1 > rank2
        """
        value1 = self.getRank(rank1).level
        value2 = self.getRank(rank2).level

        if value1 < value2:
            return -1
        elif value1 > value2:
            return 1
        else:
            return 0

    def ranksBetween(self, lowRankId: Optional[str], highRankId: Optional[str]) -> List[RankDefinition]:
        """Ranks strictly above lowRankId up to and including highRankId."""
        low = self.getRank(lowRankId).level
        high = self.getRank(highRankId).level
        return [rank for rank in self.ranks if low < rank.level <= high]


# ═══════════════════════════════════════════════════════════════════════════
# PARSING HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _decimal(value: Any, field: str, errors: List[str]) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        errors.append(f"{field} must be a number, got {value!r}")
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        errors.append(f"{field} must be a number, got {value!r}")
        return None
    if not result.is_finite():
        errors.append(f"{field} must be finite, got {value!r}")
        return None
    return result


def _integer(value: Any, field: str, errors: List[str]) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        errors.append(f"{field} must be a whole number, got {value!r}")
        return None
    if isinstance(value, int):
        return value
    number = _decimal(value, field, errors)
    if number is None:
        return None
    if number != number.to_integral_value():
        errors.append(f"{field} must be a whole number, got {value!r}")
        return None
    return int(number)


def _rate(value: Any, field: str, errors: List[str]) -> Optional[Decimal]:
    rate = _decimal(value, field, errors)
    if rate is None:
        return None
    if rate < ZERO or rate > ONE:
        errors.append(f"{field} must be within [0, 1], got {rate}")
        return None
    return rate


def _parse_rank(raw: Any, index: int, matrixDepth: Optional[int], errors: List[str]) -> Optional[RankDefinition]:
    prefix = f"ranks[{index}]"
    if not isinstance(raw, Mapping):
        errors.append(f"{prefix} must be an object")
        return None

    rankId = raw.get("id")
    if not isinstance(rankId, str) or not rankId.strip():
        errors.append(f"{prefix}.id must be a non-empty string")
        return None
    prefix = f"rank '{rankId}'"
    before = len(errors)

    level = _integer(raw.get("level", index), f"{prefix}.level", errors)
    personalSales = _decimal(raw.get("personalSales", 0), f"{prefix}.personalSales", errors)
    teamVolume = _decimal(raw.get("teamVolume", 0), f"{prefix}.teamVolume", errors)
    activeLegs = _integer(raw.get("activeLegs", 0), f"{prefix}.activeLegs", errors)
    unlockedDepth = _integer(raw.get("unlockedDepth", 0), f"{prefix}.unlockedDepth", errors)
    bonus = _decimal(raw.get("bonus", 0), f"{prefix}.bonus", errors)

    if personalSales is not None and personalSales < ZERO:
        errors.append(f"{prefix}.personalSales cannot be negative")
    if teamVolume is not None and teamVolume < ZERO:
        errors.append(f"{prefix}.teamVolume cannot be negative")
    if activeLegs is not None and activeLegs < 0:
        errors.append(f"{prefix}.activeLegs cannot be negative")
    if bonus is not None and bonus < ZERO:
        errors.append(f"{prefix}.bonus cannot be negative")
    if unlockedDepth is not None:
        upper = matrixDepth if matrixDepth is not None else MAX_MATRIX_DEPTH
        if unlockedDepth < 0 or unlockedDepth > upper:
            errors.append(f"{prefix}.unlockedDepth must be within [0, {upper}], got {unlockedDepth}")

    if len(errors) != before:
        return None

    return RankDefinition(
        id=rankId,
        name=str(raw.get("name") or rankId.title()),
        level=level,
        personalSales=personalSales,
        teamVolume=teamVolume,
        activeLegs=activeLegs,
        unlockedDepth=unlockedDepth,
        bonus=bonus,
    )


def _warn_inconsistencies(ruleSet: RuleSet) -> None:
    """Log plan smells that are legal but probably unintended."""
    if len(ruleSet.matrixRates) != ruleSet.matrixDepth:
        logger.warning(
            f"Plan {ruleSet.version}: matrix depth ({ruleSet.matrixDepth}) doesn't match "
            f"number of commission levels ({len(ruleSet.matrixRates)})"
        )

    for lower, higher in zip(ruleSet.ranks, ruleSet.ranks[1:]):
        if (higher.personalSales < lower.personalSales
                or higher.teamVolume < lower.teamVolume
                or higher.activeLegs < lower.activeLegs):
            logger.warning(
                f"Plan {ruleSet.version}: rank '{higher.id}' has lower thresholds "
                f"than '{lower.id}'"
            )


# ═══════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════

def load_rule_set(raw: Mapping[str, Any]) -> RuleSet:
    """
    Parse and validate a raw compensation plan.

    Args:
        raw: Plan mapping (see DEFAULT_PLAN for the shape)

    Returns:
        Validated RuleSet

    Raises:
        InvalidRuleSet: With every validation error found
    """
    if not isinstance(raw, Mapping):
        raise InvalidRuleSet([f"plan must be an object, got {type(raw).__name__}"])

    errors: List[str] = []

    version = str(raw.get("version") or "unversioned")

    matrixWidth = _integer(raw.get("matrixWidth"), "matrixWidth", errors)
    if matrixWidth is not None and not MIN_MATRIX_WIDTH <= matrixWidth <= MAX_MATRIX_WIDTH:
        errors.append(
            f"matrixWidth must be within [{MIN_MATRIX_WIDTH}, {MAX_MATRIX_WIDTH}], got {matrixWidth}"
        )
        matrixWidth = None

    matrixDepth = _integer(raw.get("matrixDepth"), "matrixDepth", errors)
    if matrixDepth is not None and not MIN_MATRIX_DEPTH <= matrixDepth <= MAX_MATRIX_DEPTH:
        errors.append(
            f"matrixDepth must be within [{MIN_MATRIX_DEPTH}, {MAX_MATRIX_DEPTH}], got {matrixDepth}"
        )
        matrixDepth = None

    retailRate = _rate(raw.get("retailRate"), "retailRate", errors)
    matchingRate = _rate(raw.get("matchingRate", 0), "matchingRate", errors)

    matchingDepth = _integer(raw.get("matchingDepth", 0), "matchingDepth", errors)
    if matchingDepth is not None and not 0 <= matchingDepth <= MAX_MATCHING_DEPTH:
        errors.append(f"matchingDepth must be within [0, {MAX_MATCHING_DEPTH}], got {matchingDepth}")
        matchingDepth = None

    autoshipMinimum = _decimal(raw.get("autoshipMinimum", 0), "autoshipMinimum", errors)
    if autoshipMinimum is not None and autoshipMinimum < ZERO:
        errors.append("autoshipMinimum cannot be negative")

    # Matrix rates
    matrixRates: List[Decimal] = []
    rawRates = raw.get("matrixRates")
    if not isinstance(rawRates, (list, tuple)) or not rawRates:
        errors.append("matrixRates must be a non-empty list")
    else:
        for index, value in enumerate(rawRates):
            rate = _rate(value, f"matrixRates[{index}] (level {index + 1})", errors)
            if rate is not None:
                matrixRates.append(rate)
        if matrixDepth is not None and len(rawRates) > matrixDepth:
            errors.append(
                f"matrixRates has {len(rawRates)} levels but matrixDepth is {matrixDepth}"
            )

    # Matching on every generation must stay within matchingRate of the order value
    if matchingDepth and matchingRate and matrixRates:
        matchedShare = matchingDepth * sum(matrixRates, ZERO)
        if matchedShare > ONE:
            errors.append(
                f"matchingDepth {matchingDepth} x total matrixRates {sum(matrixRates, ZERO)} "
                f"= {matchedShare} exceeds 1; matching would pay more than matchingRate of order value"
            )

    # Ranks
    ranks: List[RankDefinition] = []
    rawRanks = raw.get("ranks")
    if not isinstance(rawRanks, (list, tuple)) or not rawRanks:
        errors.append("ranks must be a non-empty list")
    else:
        for index, rawRank in enumerate(rawRanks):
            rank = _parse_rank(rawRank, index, matrixDepth, errors)
            if rank is not None:
                ranks.append(rank)

        ids = [rank.id for rank in ranks]
        duplicates = sorted({rankId for rankId in ids if ids.count(rankId) > 1})
        if duplicates:
            errors.append(f"duplicate rank ids: {', '.join(duplicates)}")
        levels = [rank.level for rank in ranks]
        if len(set(levels)) != len(levels):
            errors.append("rank levels must be unique")

    if errors:
        logger.error(f"Compensation plan '{version}' rejected: {len(errors)} error(s)")
        raise InvalidRuleSet(errors)

    ruleSet = RuleSet(
        version=version,
        matrixWidth=matrixWidth,
        matrixDepth=matrixDepth,
        retailRate=retailRate,
        matrixRates=tuple(matrixRates),
        matchingRate=matchingRate,
        matchingDepth=matchingDepth,
        autoshipMinimum=autoshipMinimum,
        ranks=tuple(sorted(ranks, key=lambda r: r.level)),
    )

    if ruleSet.maxPayoutRate > ONE:
        raise InvalidRuleSet([
            f"total potential payout ({ruleSet.maxPayoutRate * 100:.2f}%) exceeds 100%"
        ])

    _warn_inconsistencies(ruleSet)
    return ruleSet


def load_rule_set_file(path: str) -> RuleSet:
    """
    Load a plan from a JSON file.

    Raises:
        InvalidRuleSet: If the file is unreadable, not JSON, or invalid
    """
    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidRuleSet([f"cannot read plan file {path}: {e}"])

    return load_rule_set(raw)


# Lazy-loaded plan cache
_RULE_SET_CACHE: Optional[RuleSet] = None


def get_rule_set() -> RuleSet:
    """
    Get the active compensation plan with caching.
    Loads from Config.COMPENSATION_PLAN_PATH on first access, or uses
    DEFAULT_PLAN when no path is configured.
    """
    global _RULE_SET_CACHE

    if _RULE_SET_CACHE is None:
        from config import Config

        path = Config.get(Config.COMPENSATION_PLAN_PATH)
        if path:
            _RULE_SET_CACHE = load_rule_set_file(path)
        else:
            _RULE_SET_CACHE = load_rule_set(DEFAULT_PLAN)

        logger.info(
            f"Loaded compensation plan {_RULE_SET_CACHE.version}: "
            f"{len(_RULE_SET_CACHE.ranks)} ranks, "
            f"{len(_RULE_SET_CACHE.matrixRates)} matrix levels"
        )

    return _RULE_SET_CACHE


def reset_rule_set_cache() -> None:
    """Forget the cached plan (after the plan file changed)."""
    global _RULE_SET_CACHE
    _RULE_SET_CACHE = None


def rule_set_to_dict(ruleSet: RuleSet) -> Dict[str, Any]:
    """Serialize back to the raw plan shape (strings for decimals)."""
    return {
        "version": ruleSet.version,
        "matrixWidth": ruleSet.matrixWidth,
        "matrixDepth": ruleSet.matrixDepth,
        "retailRate": str(ruleSet.retailRate),
        "matrixRates": [str(rate) for rate in ruleSet.matrixRates],
        "matchingRate": str(ruleSet.matchingRate),
        "matchingDepth": ruleSet.matchingDepth,
        "autoshipMinimum": str(ruleSet.autoshipMinimum),
        "ranks": [
            {
                "id": rank.id,
                "name": rank.name,
                "level": rank.level,
                "personalSales": str(rank.personalSales),
                "teamVolume": str(rank.teamVolume),
                "activeLegs": rank.activeLegs,
                "unlockedDepth": rank.unlockedDepth,
                "bonus": str(rank.bonus),
            }
            for rank in ruleSet.ranks
        ],
    }
