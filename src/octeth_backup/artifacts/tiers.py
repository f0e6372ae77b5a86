"""
Tier classification.

A run is classified by its calendar date with a fixed precedence: the
monthly anchor day wins over the weekly anchor day, which wins over daily.
When both anchors fall on the same date only a monthly artifact is made,
so the weekly tier has a gap for that cycle.
"""

import logging
from datetime import date

from octeth_backup.core.models import Tier

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def weekday_number(day: date) -> int:
    """Return the weekday with 0 = Sunday, matching `date +%w`."""
    return (day.weekday() + 1) % 7


class TierClassifier:
    """Maps a calendar date to a backup tier."""

    def __init__(self, monthly_day: int = 1, weekly_day: int = 0):
        """
        Initialize classifier.

        Args:
            monthly_day: Day of month producing monthly artifacts (1-31)
            weekly_day: Weekday producing weekly artifacts, 0 = Sunday
        """
        if not 1 <= monthly_day <= 31:
            raise ValueError(f"monthly_day must be 1-31, got {monthly_day}")
        if not 0 <= weekly_day <= 6:
            raise ValueError(f"weekly_day must be 0-6, got {weekly_day}")
        self.monthly_day = monthly_day
        self.weekly_day = weekly_day

    def classify(self, day: date) -> Tier:
        """Classify a date. Pure and total."""
        if day.day == self.monthly_day:
            return Tier.MONTHLY
        if weekday_number(day) == self.weekly_day:
            return Tier.WEEKLY
        return Tier.DAILY

    def skipped_weekly(self, day: date) -> bool:
        """Check if the weekly anchor on this date is absorbed by a monthly run."""
        return day.day == self.monthly_day and weekday_number(day) == self.weekly_day

    def classify_and_log(self, day: date) -> Tier:
        tier = self.classify(day)
        if self.skipped_weekly(day):
            logger.info(
                f"{day.isoformat()} is both the monthly anchor and a "
                f"{WEEKDAY_NAMES[self.weekly_day]}; writing a monthly backup only"
            )
        return tier
