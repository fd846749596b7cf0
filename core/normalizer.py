"""
Label / Score / Class Normalizer.

Pure, total functions that turn a provider's raw indicator into a
RiskLevel. None of them raise: anything unparseable, non-finite or out of
its declared range comes back as UNDETERMINED, never as a risk-bearing
level.

Sentinel phrases map the same way for every hazard:

    "not applicable"     -> NOT_APPLICABLE
    "no rating"          -> NOT_APPLICABLE
    "insufficient data"  -> UNDETERMINED
"""

import math
import re
from typing import Optional, Sequence

from core.models import RawIndicator, Scale
from core.taxonomy import RiskLevel

# Score thresholds (0-100) for VERY_LOW | LOW | MODERATE | HIGH | VERY_HIGH
DEFAULT_SCORE_THRESHOLDS = (20.0, 40.0, 60.0, 80.0)
RPS_THRESHOLDS = (160.0, 350.0, 600.0, 850.0)
RPS_MAX = 1020.0

_STRIP = re.compile(r"[\s_\-()/.,:;'\"]+")

# Order matters: "very ..." must be tested before the bare words, and the
# sentinel phrases before everything else.
_SENTINEL_PHRASES = (
    ("notapplicable", RiskLevel.NOT_APPLICABLE),
    ("norating", RiskLevel.NOT_APPLICABLE),
    ("insufficientdata", RiskLevel.UNDETERMINED),
)
_CONTAINS_PHRASES = (
    ("veryhigh", RiskLevel.VERY_HIGH),
    ("verylow", RiskLevel.VERY_LOW),
    ("relativelyhigh", RiskLevel.HIGH),
    ("relativelymoderate", RiskLevel.MODERATE),
    ("relativelylow", RiskLevel.LOW),
)
_EXACT_WORDS = {
    "high": RiskLevel.HIGH,
    "h": RiskLevel.HIGH,
    "moderate": RiskLevel.MODERATE,
    "medium": RiskLevel.MODERATE,
    "m": RiskLevel.MODERATE,
    "low": RiskLevel.LOW,
    "l": RiskLevel.LOW,
    "vh": RiskLevel.VERY_HIGH,
    "vl": RiskLevel.VERY_LOW,
}


def _squash(text: str) -> str:
    return _STRIP.sub("", text.lower())


def label_to_level(raw) -> RiskLevel:
    """Map a free-text rating ("Relatively High", "very_low", "No Rating") to a level."""
    if raw is None:
        return RiskLevel.UNDETERMINED
    try:
        s = _squash(str(raw))
    except Exception:
        return RiskLevel.UNDETERMINED
    if not s:
        return RiskLevel.UNDETERMINED

    for phrase, level in _SENTINEL_PHRASES:
        if phrase in s:
            return level
    for phrase, level in _CONTAINS_PHRASES:
        if phrase in s:
            return level
    return _EXACT_WORDS.get(s, RiskLevel.UNDETERMINED)


def _as_number(value) -> Optional[float]:
    """float(value) if it is a finite number (or numeric string), else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return num if math.isfinite(num) else None


def class_code_to_level(value) -> RiskLevel:
    """Round to the nearest integer; 1..5 -> VERY_LOW..VERY_HIGH."""
    num = _as_number(value)
    if num is None:
        return RiskLevel.UNDETERMINED
    code = int(math.floor(num + 0.5))
    return RiskLevel.from_class_code(code)


def byte_to_class(value) -> Optional[int]:
    """
    Bucket a palette byte (0..255) into five equal bins of 51.2.

    byte_to_class(0) == 1, byte_to_class(128) == 3, byte_to_class(255) == 5.
    Returns None outside 0..255.
    """
    num = _as_number(value)
    if num is None or num < 0 or num > 255:
        return None
    cls = 1 + int(math.floor(num * 5 / 256))
    return min(max(cls, 1), 5)


def _threshold(value: float, thresholds: Sequence[float]) -> RiskLevel:
    t1, t2, t3, t4 = thresholds
    if value < t1:
        return RiskLevel.VERY_LOW
    if value < t2:
        return RiskLevel.LOW
    if value < t3:
        return RiskLevel.MODERATE
    if value < t4:
        return RiskLevel.HIGH
    return RiskLevel.VERY_HIGH


def to_score_100(value) -> Optional[float]:
    """Normalize a 0-1 or 0-100 score onto 0-100, None if out of range."""
    num = _as_number(value)
    if num is None or num < 0:
        return None
    if num <= 1.5:
        num *= 100
    if num > 100:
        return None
    return num


def score_to_level(value, thresholds: Sequence[float] = DEFAULT_SCORE_THRESHOLDS) -> RiskLevel:
    score = to_score_100(value)
    if score is None:
        return RiskLevel.UNDETERMINED
    return _threshold(score, thresholds)


def rps_to_level(value) -> RiskLevel:
    """Risk-to-potential-structures index (0..1020) -> level."""
    num = _as_number(value)
    if num is None or num < 0 or num > RPS_MAX:
        return RiskLevel.UNDETERMINED
    return _threshold(num, RPS_THRESHOLDS)


def normalize(indicator: Optional[RawIndicator]) -> RiskLevel:
    """
    Map any RawIndicator onto the taxonomy.

    A text label takes priority; a numeric score is used per its scale.
    Never raises and never returns None.
    """
    if not isinstance(indicator, RawIndicator):
        return RiskLevel.UNDETERMINED

    if indicator.text_label is not None:
        return label_to_level(indicator.text_label)

    value = indicator.numeric_score
    scale = indicator.scale
    if scale is Scale.CLASS_CODE_1_TO_5:
        return class_code_to_level(value)
    if scale is Scale.BYTE_0_TO_255:
        cls = byte_to_class(value)
        return RiskLevel.UNDETERMINED if cls is None else class_code_to_level(cls)
    if scale in (Scale.ZERO_TO_ONE, Scale.ZERO_TO_HUNDRED):
        return score_to_level(value)
    if scale is Scale.ZERO_TO_1020:
        return rps_to_level(value)
    return RiskLevel.UNDETERMINED


def sentinel_for(raw) -> Optional[RiskLevel]:
    """The sentinel an explicit "no rating"-style phrase stands for, else None."""
    if raw is None:
        return None
    s = _squash(str(raw))
    for phrase, level in _SENTINEL_PHRASES:
        if phrase in s:
            return level
    return None
