"""
MLM ranks configuration and constants.
Built-in compensation plan; a JSON plan file can replace it via Config.
"""
from enum import Enum
from decimal import Decimal
from typing import Dict, Any
import logging

logger = logging.getLogger(__name__)


class Rank(Enum):
    """MLM rank enumeration (ordered from base rank upwards)."""
    DISTRIBUTOR = "distributor"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"
    PRESIDENTIAL = "presidential"


# Forced matrix shape: 5 wide, 9 deep
MATRIX_WIDTH = 5
MATRIX_DEPTH = 9

# Rounding
CENTS = Decimal("0.01")


# Raw plan, same shape as a JSON plan file. Percentages are fractions.
DEFAULT_PLAN: Dict[str, Any] = {
    "version": "default-2024.1",
    "matrixWidth": MATRIX_WIDTH,
    "matrixDepth": MATRIX_DEPTH,
    "retailRate": "0.25",
    "matrixRates": ["0.10", "0.05", "0.05", "0.03", "0.03", "0.02", "0.02", "0.01", "0.01"],
    "matchingRate": "0.10",
    "matchingDepth": 1,
    "autoshipMinimum": "0.00",
    "ranks": [
        {
            "id": Rank.DISTRIBUTOR.value,
            "name": "Distributor",
            "level": 0,
            "personalSales": "0",
            "teamVolume": "0",
            "activeLegs": 0,
            "unlockedDepth": 2,
            "bonus": "0",
        },
        {
            "id": Rank.BRONZE.value,
            "name": "Bronze",
            "level": 1,
            "personalSales": "500",
            "teamVolume": "0",
            "activeLegs": 3,
            "unlockedDepth": 3,
            "bonus": "100",
        },
        {
            "id": Rank.SILVER.value,
            "name": "Silver",
            "level": 2,
            "personalSales": "2000",
            "teamVolume": "5000",
            "activeLegs": 5,
            "unlockedDepth": 5,
            "bonus": "500",
        },
        {
            "id": Rank.GOLD.value,
            "name": "Gold",
            "level": 3,
            "personalSales": "5000",
            "teamVolume": "20000",
            "activeLegs": 5,
            "unlockedDepth": 7,
            "bonus": "2000",
        },
        {
            "id": Rank.PLATINUM.value,
            "name": "Platinum",
            "level": 4,
            "personalSales": "10000",
            "teamVolume": "50000",
            "activeLegs": 5,
            "unlockedDepth": 9,
            "bonus": "10000",
        },
        {
            "id": Rank.DIAMOND.value,
            "name": "Diamond",
            "level": 5,
            "personalSales": "20000",
            "teamVolume": "100000",
            "activeLegs": 5,
            "unlockedDepth": 9,
            "bonus": "50000",
        },
        {
            "id": Rank.PRESIDENTIAL.value,
            "name": "Presidential",
            "level": 6,
            "personalSales": "50000",
            "teamVolume": "250000",
            "activeLegs": 5,
            "unlockedDepth": 9,
            "bonus": "100000",
        },
    ],
}

# Validation limits
MIN_MATRIX_WIDTH = 2
MAX_MATRIX_WIDTH = 10
MIN_MATRIX_DEPTH = 1
MAX_MATRIX_DEPTH = 15
MAX_MATCHING_DEPTH = 10
