"""
Fine policy - tiered overdue fines
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class FinePolicy:
    """
    Maps a count of overdue days to a fine.

    Days 1..first_tier_days cost first_tier_rate each; the days up to
    second_tier_days cost second_tier_rate each on top of the first tier's
    total; every later day costs third_tier_rate on top of both.
    """

    first_tier_days: int = 7
    second_tier_days: int = 14
    first_tier_rate: Decimal = Decimal("5")
    second_tier_rate: Decimal = Decimal("10")
    third_tier_rate: Decimal = Decimal("15")

    @classmethod
    def from_settings(cls, fines) -> "FinePolicy":
        """Build from ``core.config.FineSettings`` (duck typed, domain does not import core)"""
        return cls(
            first_tier_days=fines.first_tier_days,
            second_tier_days=fines.second_tier_days,
            first_tier_rate=Decimal(str(fines.first_tier_rate)),
            second_tier_rate=Decimal(str(fines.second_tier_rate)),
            third_tier_rate=Decimal(str(fines.third_tier_rate)),
        )

    def compute(self, overdue_days: int) -> Decimal:
        if overdue_days <= 0:
            return Decimal("0")

        first_cap = self.first_tier_days * self.first_tier_rate
        if overdue_days <= self.first_tier_days:
            return overdue_days * self.first_tier_rate

        second_cap = first_cap + (self.second_tier_days - self.first_tier_days) * self.second_tier_rate
        if overdue_days <= self.second_tier_days:
            return first_cap + (overdue_days - self.first_tier_days) * self.second_tier_rate

        return second_cap + (overdue_days - self.second_tier_days) * self.third_tier_rate
