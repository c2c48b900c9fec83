"""
Rate Pair value object
Platform/instructor percentage split, always summing to 100
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple

from app.core.exceptions import ValidationError

MIN_PLATFORM_RATE = 1
MAX_PLATFORM_RATE = 99


@dataclass(frozen=True)
class RatePair:
    """
    Immutable commission split.

    Only the platform rate is stored; the instructor rate is always
    100 - platform_rate.
    """

    platform_rate: int

    def __post_init__(self):
        rate = self.platform_rate
        # bool is an int subclass
        if isinstance(rate, bool) or not isinstance(rate, int):
            raise ValidationError(
                "Platform rate must be an integer percentage",
                field="platform_rate",
            )
        if not MIN_PLATFORM_RATE <= rate <= MAX_PLATFORM_RATE:
            raise ValidationError(
                f"Platform rate must be between {MIN_PLATFORM_RATE} and {MAX_PLATFORM_RATE}",
                field="platform_rate",
                detail=f"got {rate}",
            )

    @property
    def instructor_rate(self) -> int:
        return 100 - self.platform_rate

    def with_platform_rate(self, platform_rate: int) -> "RatePair":
        return RatePair(platform_rate)

    def split(self, amount: int) -> Tuple[int, int]:
        """
        Split an amount (smallest currency unit) into platform and instructor parts

        The platform share is rounded half-up; the instructor gets the remainder
        so both parts always add up to the amount.

        Args:
            amount: Non-negative integer amount

        Returns:
            Tuple of (platform_amount, instructor_amount)
        """
        if amount < 0:
            raise ValidationError("Amount must not be negative", field="amount")

        platform_amount = int(
            (Decimal(amount) * self.platform_rate / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
        return platform_amount, amount - platform_amount

    def to_dict(self) -> dict:
        return {
            "platform_rate": self.platform_rate,
            "instructor_rate": self.instructor_rate,
        }

    def __repr__(self):
        return f"<RatePair(platform={self.platform_rate}, instructor={self.instructor_rate})>"
