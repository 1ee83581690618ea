from decimal import Decimal

import pytest

from core.config import FineSettings
from domain.loan.policy import FinePolicy


@pytest.mark.parametrize(
    "days, expected",
    [
        (-3, "0"),
        (0, "0"),
        (1, "5"),
        (5, "25"),
        (7, "35"),
        (8, "45"),
        (10, "65"),
        (14, "105"),
        (15, "120"),
        (20, "195"),
    ],
)
def test_tiered_amounts_with_default_rates(days, expected):
    assert FinePolicy().compute(days) == Decimal(expected)


def test_tiers_are_configurable():
    policy = FinePolicy.from_settings(
        FineSettings(
            first_tier_days=3,
            second_tier_days=5,
            first_tier_rate=Decimal("2"),
            second_tier_rate=Decimal("4"),
            third_tier_rate=Decimal("8"),
        )
    )
    # 3*2 + 2*4 + 1*8
    assert policy.compute(6) == Decimal("22")


def test_invalid_tier_boundaries_rejected():
    with pytest.raises(ValueError):
        FineSettings(first_tier_days=14, second_tier_days=7)
