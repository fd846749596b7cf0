"""
Core data models for the Hazard Risk Engine.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from core.taxonomy import RiskLevel


class InvalidCoordinateError(ValueError):
    """Latitude/longitude out of range or not a finite number."""


class HazardKind(Enum):
    """Hazards the engine can resolve."""
    FLOOD = "flood"
    EARTHQUAKE = "earthquake"
    LANDSLIDE = "landslide"
    WILDFIRE = "wildfire"
    HEATWAVE = "heatwave"
    COLD_WAVE = "cold_wave"
    HURRICANE = "hurricane"
    TORNADO = "tornado"

    @classmethod
    def parse(cls, value) -> "HazardKind":
        """Accept an enum member or a name like 'cold-wave' / 'COLD_WAVE'."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        if key == "coldwave":
            key = "cold_wave"
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown hazard: {value!r}") from None


class AdminUnit(Enum):
    """Granularity of the feature or pixel a result came from."""
    TRACT = "tract"
    COUNTY = "county"
    PIXEL = "pixel"
    ZONE = "zone"
    SITE = "site"


class Scale(Enum):
    """Declared range of a numeric indicator."""
    ZERO_TO_ONE = "0-1"
    ZERO_TO_HUNDRED = "0-100"
    ZERO_TO_1020 = "0-1020"
    CLASS_CODE_1_TO_5 = "class-1-5"
    BYTE_0_TO_255 = "byte-0-255"


class Outcome(Enum):
    """Result of a single spatial/raster attempt."""
    OK = "ok"
    NO_FEATURE = "no-feature"
    HTTP_ERROR = "http-error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Coordinate:
    """
    A WGS84 point. Validated on construction, never mutated.

    Raises:
        InvalidCoordinateError: if either value is non-numeric,
            non-finite or out of range.
    """
    lat: float
    lon: float

    def __post_init__(self):
        try:
            lat = float(self.lat)
            lon = float(self.lon)
        except (TypeError, ValueError):
            raise InvalidCoordinateError(f"lat/lon must be numbers, got ({self.lat!r}, {self.lon!r})")
        if isinstance(self.lat, bool) or isinstance(self.lon, bool):
            raise InvalidCoordinateError("lat/lon must be numbers, got bool")
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidCoordinateError(f"lat/lon must be finite, got ({lat}, {lon})")
        if not -90.0 <= lat <= 90.0:
            raise InvalidCoordinateError(f"lat {lat} outside [-90, 90]")
        if not -180.0 <= lon <= 180.0:
            raise InvalidCoordinateError(f"lon {lon} outside [-180, 180]")
        object.__setattr__(self, "lat", lat)
        object.__setattr__(self, "lon", lon)

    def offset(self, north_m: float, east_m: float) -> "Coordinate":
        """New coordinate displaced by the given meters (small-distance approximation)."""
        d_lat = north_m / METERS_PER_DEGREE_LAT
        d_lon = east_m / (METERS_PER_DEGREE_LAT * max(math.cos(math.radians(self.lat)), 1e-6))
        lat = max(-90.0, min(90.0, self.lat + d_lat))
        lon = self.lon + d_lon
        if not -180.0 <= lon <= 180.0:
            # near the poles one ring step can span many turns
            lon = ((lon + 180.0) % 360.0) - 180.0
        return Coordinate(lat, lon)


METERS_PER_DEGREE_LAT = 111_320.0


@dataclass(frozen=True)
class RawIndicator:
    """
    A provider's raw risk indicator, before normalization.

    Exactly one of ``text_label`` or ``numeric_score`` is expected; the
    normalizer copes with anything else.
    """
    text_label: Optional[str] = None
    numeric_score: Optional[float] = None
    scale: Optional[Scale] = None

    @classmethod
    def label(cls, text) -> "RawIndicator":
        return cls(text_label=None if text is None else str(text))

    @classmethod
    def score(cls, value, scale: Scale) -> "RawIndicator":
        return cls(numeric_score=value, scale=scale)


@dataclass(frozen=True)
class Attempt:
    """One outbound spatial/raster query and how it went."""
    step: str
    url: str
    outcome: Outcome

    def to_dict(self) -> Dict[str, str]:
        return {"step": self.step, "url": self.url, "outcome": self.outcome.value}


class AttemptTrace:
    """
    Ordered diagnostic record of every attempt made for one resolution.

    Observational only: nothing reads it to make decisions.
    """

    def __init__(self):
        self._attempts: List[Attempt] = []

    def record(self, step: str, url: str, outcome: Outcome) -> Attempt:
        attempt = Attempt(step=step, url=url, outcome=outcome)
        self._attempts.append(attempt)
        return attempt

    @property
    def attempts(self) -> Tuple[Attempt, ...]:
        return tuple(self._attempts)

    def __len__(self) -> int:
        return len(self._attempts)

    def __iter__(self):
        return iter(self._attempts)


@dataclass(frozen=True)
class RiskResult:
    """
    The normalized answer for one hazard at one coordinate.

    ``provider`` is None when no source produced a usable result.
    """
    level: RiskLevel
    label: Optional[str] = None
    score: Optional[float] = None
    admin_unit: Optional[AdminUnit] = None
    provider: Optional[str] = None
    trace: Tuple[Attempt, ...] = ()
    note: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, debug: bool = False) -> Dict[str, Any]:
        body = {
            "level": self.level.value,
            "label": self.label,
            "score": self.score,
            "adminUnit": self.admin_unit.value if self.admin_unit else None,
            "provider": self.provider,
            "note": self.note,
        }
        if debug:
            body["trace"] = [a.to_dict() for a in self.trace]
            body["details"] = dict(self.details)
        return body


@dataclass(frozen=True)
class HazardRequest:
    """A single check: which hazard, where."""
    coordinate: Coordinate
    hazard: HazardKind

    @classmethod
    def create(cls, hazard, lat, lon) -> "HazardRequest":
        return cls(coordinate=Coordinate(lat, lon), hazard=HazardKind.parse(hazard))
