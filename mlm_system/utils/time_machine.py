# mlm_system/utils/time_machine.py
"""
Time source for the MLM system.

Qualifying periods are calendar months in UTC. Virtual time can be set for
tests and for re-running a past month.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Period:
    """Half-open interval [start, end) of a qualifying period."""
    start: datetime
    end: datetime

    @property
    def label(self) -> str:
        return self.start.strftime('%Y-%m')

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


class TimeMachine:
    """Current time with optional virtual override."""

    def __init__(self):
        self._virtualTime: Optional[datetime] = None

    @property
    def now(self) -> datetime:
        if self._virtualTime is not None:
            return self._virtualTime
        # Naive UTC, matching DateTime columns
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @property
    def isTestMode(self) -> bool:
        return self._virtualTime is not None

    @property
    def currentMonth(self) -> str:
        return self.now.strftime('%Y-%m')

    @property
    def currentPeriod(self) -> Period:
        return self.periodFor(self.currentMonth)

    def periodFor(self, month: str) -> Period:
        """
        Build the period for a 'YYYY-MM' month label.

        Args:
            month: Month label, e.g. "2026-10"

        Returns:
            Period covering the whole month
        """
        year, mon = map(int, month.split('-'))
        start = datetime(year, mon, 1)
        if mon == 12:
            end = datetime(year + 1, 1, 1)
        else:
            end = datetime(year, mon + 1, 1)
        return Period(start=start, end=end)

    def setTime(self, moment: datetime) -> None:
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
        self._virtualTime = moment
        logger.info(f"Virtual time set to {moment.isoformat()}")

    def resetTime(self) -> None:
        self._virtualTime = None
        logger.info("Virtual time reset to real time")


timeMachine = TimeMachine()
