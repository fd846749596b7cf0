"""
Raster Pixel Sampler - read a classified value from an ArcGIS ImageServer.

Raster products carry no-data holes (water, non-burnable land, no
structures) right next to valued pixels. The sampler reads the pixel at
the point through each known rendering rule; if everything there is
no-data it walks outward on concentric rings and takes the NEAREST
valued pixel.

At a single point both a discrete class and a continuous index may be
available. The more severe of the two wins: raster edges are noisy, so
the sampler errs high.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Set, Tuple

import numpy as np

from core.config import EngineConfig
from core.fallback import AttemptBudget
from core.models import AttemptTrace, Coordinate, Outcome, RawIndicator, Scale
from core.normalizer import normalize
from core.taxonomy import RiskLevel, compare
from loaders.arcgis import ArcGISClient

log = logging.getLogger(__name__)

NO_DATA_SENTINEL = -9999.0
NO_DATA_MAGNITUDE = 1e20


@dataclass(frozen=True)
class RasterSource:
    """An image service and the rendering rules that expose its values."""
    url: str
    name: str
    class_rules: Tuple[str, ...] = ()
    continuous_rule: Optional[str] = None
    pixel_size_deg: float = 0.0025


@dataclass
class PixelReading:
    """A valid pixel value and what it normalized to."""
    level: RiskLevel
    value: float
    raw: float
    rule: str
    kind: str  # "class" or "continuous"
    distance_m: float = 0.0
    location: Optional[Coordinate] = None


@dataclass
class SampleRun:
    """Outcome of one sampling run against one source."""
    reading: Optional[PixelReading] = None
    responded: bool = False
    failed_rules: Set[str] = field(default_factory=set)


def parse_sample_value(raw: Any) -> Optional[float]:
    """
    Pull a number out of a getSamples value.

    Servers return numbers, numeric strings, multi-band strings ("12 3"
    or "12,3") or "NaN". Only the first band is used.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text or "nan" in text.lower():
            return None
        raw = text.replace(",", " ").split()[0]
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def is_no_data(value: Optional[float]) -> bool:
    """None, 0, -9999 and absurd magnitudes all mean "no measurement"."""
    if value is None or not math.isfinite(value):
        return True
    return value == 0 or value == NO_DATA_SENTINEL or abs(value) > NO_DATA_MAGNITUDE


def class_indicator(value: float) -> Optional[RawIndicator]:
    """Integer 1..5 is a class code; anything else in 0..255 is a palette byte."""
    if abs(value - round(value)) < 1e-6 and 1 <= value <= 5:
        return RawIndicator.score(value, Scale.CLASS_CODE_1_TO_5)
    if 0 <= value <= 255:
        return RawIndicator.score(value, Scale.BYTE_0_TO_255)
    return None


def rescale_rps(value: float) -> Optional[float]:
    """
    Bring a continuous risk-to-structures value onto 0..1020.

    Mirrors publish it as 0..1, 0..100, 0..255 or 0..2000; the checks run
    from the narrowest range up.
    """
    if value < 0:
        return None
    if value <= 1.5:
        return value * 1020
    if value <= 100:
        return value * 10.2
    if value <= 255:
        return value / 255 * 1020
    if value <= 1020:
        return value
    if value <= 2000:
        return value / 2000 * 1020
    return None


def ring_offsets(step_m: float, max_radius_m: float) -> Iterator[Tuple[float, float, float]]:
    """
    (radius, north_m, east_m) for each ring point, nearest ring first.

    Angular samples grow with circumference, at least eight per ring.
    """
    if max_radius_m < step_m:
        return
    for radius in np.arange(step_m, max_radius_m + step_m / 2, step_m):
        n = max(8, int(round(2 * math.pi * radius / step_m)))
        for angle in np.linspace(0.0, 2 * math.pi, n, endpoint=False):
            yield float(radius), float(radius * np.sin(angle)), float(radius * np.cos(angle))


class RasterPixelSampler:
    """
    Samples one image service around a coordinate.

    Usage:
        sampler = RasterPixelSampler(client, config)
        run = sampler.sample(source, coord, budget, trace)
    """

    def __init__(self, client: ArcGISClient, config: Optional[EngineConfig] = None):
        self.client = client
        self.config = config or client.config

    def _get_sample(self, source: RasterSource, point: Coordinate, rule: str,
                    budget: AttemptBudget, trace: AttemptTrace, step: str,
                    run: SampleRun) -> Tuple[bool, Optional[float]]:
        """
        One getSamples call. Returns (attempted, value-or-None).

        attempted is False only when the budget refused the call.
        """
        params = {
            "f": "json",
            "geometry": json.dumps({"x": point.lon, "y": point.lat, "spatialReference": {"wkid": 4326}}),
            "geometryType": "esriGeometryPoint",
            "sr": "4326",
            "returnFirstValueOnly": "true",
            "interpolation": "RSP_NearestNeighbor",
            "pixelSize": json.dumps({
                "x": source.pixel_size_deg, "y": source.pixel_size_deg,
                "spatialReference": {"wkid": 4326},
            }),
            "renderingRule": json.dumps({"rasterFunction": rule}),
        }
        fetched = self.client.get_json(f"{source.url.rstrip('/')}/getSamples", params, budget)
        if fetched is None:
            return False, None

        if not fetched.ok:
            trace.record(f"{step}:{rule}", fetched.url, fetched.outcome)
            if fetched.outcome is Outcome.HTTP_ERROR:
                run.failed_rules.add(rule)
            return True, None

        samples = fetched.data.get("samples") if fetched.data else None
        raw = samples[0].get("value") if isinstance(samples, list) and samples and isinstance(samples[0], dict) else None
        value = parse_sample_value(raw)
        run.responded = True
        outcome = Outcome.NO_FEATURE if is_no_data(value) else Outcome.OK
        trace.record(f"{step}:{rule}", fetched.url, outcome)
        return True, None if outcome is Outcome.NO_FEATURE else value

    def _read_class(self, source, point, budget, trace, step, run) -> Tuple[bool, Optional[PixelReading]]:
        for rule in source.class_rules:
            if rule in run.failed_rules:
                continue
            attempted, value = self._get_sample(source, point, rule, budget, trace, step, run)
            if not attempted:
                return False, None
            if value is None:
                continue
            indicator = class_indicator(value)
            if indicator is None:
                continue
            level = normalize(indicator)
            if level.is_sentinel:
                continue
            return True, PixelReading(level=level, value=float(level.severity), raw=value,
                                      rule=rule, kind="class", location=point)
        return True, None

    def _read_continuous(self, source, point, budget, trace, step, run) -> Tuple[bool, Optional[PixelReading]]:
        rule = source.continuous_rule
        if not rule or rule in run.failed_rules:
            return True, None
        attempted, value = self._get_sample(source, point, rule, budget, trace, step, run)
        if not attempted:
            return False, None
        if value is None:
            return True, None
        rps = rescale_rps(value)
        level = normalize(RawIndicator.score(rps, Scale.ZERO_TO_1020))
        if level.is_sentinel:
            return True, None
        return True, PixelReading(level=level, value=round(rps, 1), raw=value,
                                  rule=rule, kind="continuous", location=point)

    def read_point(self, source: RasterSource, point: Coordinate, budget: AttemptBudget,
                   trace: AttemptTrace, step: str, run: SampleRun) -> Tuple[bool, Optional[PixelReading]]:
        """
        Class and continuous readings at one point; the more severe wins.

        Returns (budget_ok, reading). budget_ok is False once the budget
        ran out partway.
        """
        budget_ok, by_class = self._read_class(source, point, budget, trace, step, run)
        if not budget_ok:
            return False, by_class
        budget_ok, by_value = self._read_continuous(source, point, budget, trace, step, run)

        candidates: List[PixelReading] = [r for r in (by_class, by_value) if r is not None]
        if not candidates:
            return budget_ok, None
        best = candidates[0]
        for reading in candidates[1:]:
            if compare(reading.level, best.level) > 0:
                best = reading
        return budget_ok, best

    def sample(self, source: RasterSource, coordinate: Coordinate, budget: AttemptBudget,
               trace: AttemptTrace) -> SampleRun:
        """Direct pixel first, then rings outward; nearest valid pixel wins."""
        run = SampleRun()

        budget_ok, reading = self.read_point(source, coordinate, budget, trace, "pixel:direct", run)
        if reading is not None:
            run.reading = reading
            return run
        if not budget_ok:
            return run

        all_rules = set(source.class_rules)
        if source.continuous_rule:
            all_rules.add(source.continuous_rule)

        for radius, north, east in ring_offsets(self.config.ring_step_m, self.config.max_search_radius_m):
            # Every rule is rejected by this server; more points won't help.
            if run.failed_rules >= all_rules:
                break
            point = coordinate.offset(north, east)
            budget_ok, reading = self.read_point(source, point, budget, trace, f"ring:{radius:g}m", run)
            if reading is not None:
                reading.distance_m = radius
                run.reading = reading
                log.debug(f"{source.name}: nearest valued pixel at ~{radius:g} m ({reading.level.value})")
                return run
            if not budget_ok:
                break

        return run
