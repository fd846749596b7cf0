"""
USGS Design Maps - seismic design category (SDC) at a site.

The service answers per ASCE 7 edition and site class; not every
combination is populated everywhere, so a fixed list is tried in order
until one returns an SDC letter.
"""

import logging
from typing import Optional, Sequence, Tuple

from core.fallback import AttemptBudget, DataSource, SourceOutcome
from core.models import AdminUnit, AttemptTrace, Coordinate, Outcome, RawIndicator, Scale
from core.normalizer import normalize
from loaders.arcgis import ArcGISClient

log = logging.getLogger(__name__)

DESIGN_MAP_TRIES: Tuple[Tuple[str, str], ...] = (
    ("asce7-22", "D"),
    ("asce7-22", "Default"),
    ("asce7-16", "D"),
    ("asce7-16", "Default"),
)

# Seismic design category -> class code
SDC_CLASS = {"A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 5}


def sdc_indicator(sdc) -> Optional[RawIndicator]:
    """SDC letter as a 1..5 class code, None for anything unrecognized."""
    code = SDC_CLASS.get(str(sdc or "").strip().upper())
    return None if code is None else RawIndicator.score(code, Scale.CLASS_CODE_1_TO_5)


class DesignMapsSource(DataSource):
    """Earthquake source backed by the USGS Design Maps web service."""

    name = "USGS Design Maps"

    def __init__(self, client: ArcGISClient, base_url: Optional[str] = None,
                 tries: Sequence[Tuple[str, str]] = DESIGN_MAP_TRIES):
        self.client = client
        self.base_url = (base_url or client.config.design_maps_url).rstrip("/")
        self.tries = tuple(tries)

    def fetch(self, coordinate: Coordinate, budget: AttemptBudget,
              trace: AttemptTrace) -> Optional[SourceOutcome]:
        for edition, site_class in self.tries:
            params = {
                "latitude": f"{coordinate.lat}",
                "longitude": f"{coordinate.lon}",
                "riskCategory": "I",
                "siteClass": site_class,
                "title": "RiskChecker",
            }
            fetched = self.client.get_json(f"{self.base_url}/{edition}.json", params, budget)
            if fetched is None:
                return None

            step = f"designmaps:{edition}:{site_class}"
            if not fetched.ok:
                trace.record(step, fetched.url, fetched.outcome)
                continue

            body = fetched.data or {}
            data = body.get("data")
            if not isinstance(data, dict):
                response = body.get("response")
                data = response.get("data") if isinstance(response, dict) else None
            data = data if isinstance(data, dict) else {}

            sdc = data.get("sdc")
            indicator = sdc_indicator(sdc)
            if indicator is None:
                trace.record(step, fetched.url, Outcome.NO_FEATURE)
                continue

            trace.record(step, fetched.url, Outcome.OK)
            level = normalize(indicator)
            log.debug(f"SDC {sdc} ({edition}, site class {site_class}) -> {level.value}")
            return SourceOutcome(
                level=level,
                provider=self.name,
                label=f"SDC {str(sdc).upper()}",
                admin_unit=AdminUnit.SITE,
                note=f"USGS Design Maps ({edition.upper()}), Risk Category I",
                details={
                    "sdc": str(sdc).upper(),
                    "sds": data.get("sds"),
                    "sd1": data.get("sd1"),
                    "pgam": data.get("pgam"),
                    "edition": edition.upper(),
                    "siteClass": site_class,
                },
            )
        return None
