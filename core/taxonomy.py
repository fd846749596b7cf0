"""
Risk Taxonomy - the closed vocabulary every hazard resolves to.

Five ordered levels (Very Low .. Very High) plus two sentinels that sit
outside the order:

- UNDETERMINED: a provider answered but gave no usable indicator.
- NOT_APPLICABLE: the hazard does not apply here (water, no structures).

Sentinel ordering rule: for comparison and aggregation both sentinels
rank BELOW Very Low and equal to each other. They are never "low risk";
callers that need to tell them apart must check ``is_sentinel`` rather
than compare.
"""

from enum import Enum
from typing import Optional


class RiskLevel(Enum):
    """Normalized risk level."""
    VERY_LOW = "Very Low"
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"
    VERY_HIGH = "Very High"
    UNDETERMINED = "Undetermined"
    NOT_APPLICABLE = "Not Applicable"

    @property
    def severity(self) -> Optional[int]:
        """1..5 for ordered levels, None for sentinels."""
        return _SEVERITY.get(self)

    @property
    def is_sentinel(self) -> bool:
        return self in (RiskLevel.UNDETERMINED, RiskLevel.NOT_APPLICABLE)

    @property
    def is_usable(self) -> bool:
        return not self.is_sentinel

    @classmethod
    def from_class_code(cls, code: int) -> "RiskLevel":
        """1..5 -> VERY_LOW..VERY_HIGH, anything else -> UNDETERMINED."""
        return _BY_SEVERITY.get(code, cls.UNDETERMINED)


_SEVERITY = {
    RiskLevel.VERY_LOW: 1,
    RiskLevel.LOW: 2,
    RiskLevel.MODERATE: 3,
    RiskLevel.HIGH: 4,
    RiskLevel.VERY_HIGH: 5,
}
_BY_SEVERITY = {v: k for k, v in _SEVERITY.items()}


def _rank(level: RiskLevel) -> int:
    # Sentinels share rank 0, below VERY_LOW.
    return _SEVERITY.get(level, 0)


def compare(a: RiskLevel, b: RiskLevel) -> int:
    """
    Three-way comparison by severity.

    Returns -1, 0 or 1. Sentinels compare equal to each other and lower
    than every ordered level.
    """
    ra, rb = _rank(a), _rank(b)
    if ra < rb:
        return -1
    if ra > rb:
        return 1
    return 0


def max_level(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    """Return the more severe of two levels; ties keep ``a``."""
    return b if compare(b, a) > 0 else a
