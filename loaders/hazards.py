"""
Hazard Resolution Façades.

One engine, eight configurations. Each hazard contributes only what is
specific to it: which sources to try (in order), which fields hold its
rating, and how a raw value reads as a level. The resolution machinery
(spatial escalation, ring sampling, fallback chain) is shared.

Sources per hazard:

    flood       FEMA NFHL zones (layer found by name, identify as a last
                stage), primary mirror -> secondary mirror
    earthquake  USGS Design Maps SDC -> NRI ERQK tract -> county
    landslide   NRI LNDS tract -> county (county skipped when tract-only)
    wildfire    Risk to Homes image service, AGOL mirror -> USFS
    heatwave    NRI HWAV tract -> county
    cold_wave   NRI CWAV tract -> county
    hurricane   NRI HRCN tract -> county
    tornado     NRI TRND tract -> county
"""

import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from core.config import NFHL_DEFAULT_LAYER, EngineConfig
from core.fallback import AttemptBudget, DataSource, ProviderChain, SourceOutcome
from core.field_locator import FieldPattern, first_present, nri_rating_pattern, nri_score_pattern
from core.models import (
    AdminUnit, AttemptTrace, Coordinate, HazardKind, RawIndicator, RiskResult, Scale,
)
from core.normalizer import label_to_level, normalize, sentinel_for, to_score_100
from core.taxonomy import RiskLevel
from loaders.arcgis import ArcGISClient
from loaders.design_maps import DesignMapsSource
from loaders.feature_resolver import SpatialFeatureResolver
from loaders.pixel_sampler import RasterPixelSampler, RasterSource

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# NATIONAL RISK INDEX (vector, tract -> county)
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class NRIProfile:
    """
    Field family for one NRI hazard.

    mode "label": the qualitative rating decides, the score is a fallback.
    mode "score": the 0-100 score decides, the rating is a fallback.
    """
    prefix: str
    aliases: Tuple[str, ...] = ()
    mode: str = "label"

    @property
    def rating(self) -> FieldPattern:
        return nri_rating_pattern(self.prefix, self.aliases)

    @property
    def score(self) -> FieldPattern:
        return nri_score_pattern(self.prefix, self.aliases)


NRI_PROFILES = {
    HazardKind.LANDSLIDE: NRIProfile("LNDS", ("LANDSLIDE",)),
    HazardKind.HEATWAVE: NRIProfile("HWAV", ("HEAT_?WAVE",)),
    HazardKind.COLD_WAVE: NRIProfile("CWAV", ("COLD_?WAVE",)),
    HazardKind.HURRICANE: NRIProfile("HRCN", ("HURRICANE",)),
    HazardKind.TORNADO: NRIProfile("TRND", ("TORNADO",)),
    HazardKind.EARTHQUAKE: NRIProfile("ERQK", ("EARTHQUAKE",)),
}

COUNTY_FIELDS = ("COUNTY", "COUNTY_NAME", "COUNTYNAME", "NAME")
STATE_FIELDS = ("STATE", "STATE_NAME", "STATENAME", "ST_ABBR", "STATEABBRV")


def profile_for(kind: HazardKind, config: EngineConfig) -> NRIProfile:
    """The hazard's NRI profile with its configured classification mode."""
    return replace(NRI_PROFILES[kind], mode=config.nri_mode_for(kind.value))


def classify_nri(attrs: Dict, profile: NRIProfile) -> Dict:
    """
    Rating, score and level from an NRI attribute bag.

    Returns a dict with level, label, score (0-100) and the fields used.
    """
    rating = profile.rating.locate(attrs)
    score = profile.score.locate(attrs)

    label = None if rating is None or rating.value is None else str(rating.value)
    score100 = to_score_100(score.value) if score is not None else None

    by_label = label_to_level(label)
    by_score = normalize(RawIndicator.score(score.value, Scale.ZERO_TO_HUNDRED)) \
        if score is not None else RiskLevel.UNDETERMINED

    if profile.mode == "score":
        level, decided_by = by_score, "score"
        if by_score is RiskLevel.UNDETERMINED and label is not None:
            level, decided_by = by_label, "label"
    else:
        level, decided_by = by_label, "label"
        # An explicit "Insufficient Data" stands; only a missing or garbled
        # rating falls through to the score.
        if by_label is RiskLevel.UNDETERMINED and sentinel_for(label) is None and by_score.is_usable:
            level, decided_by = by_score, "score"

    return {
        "level": level,
        "label": label,
        "score": None if score100 is None else round(score100, 2),
        "used_fields": {
            "labelField": rating.key if rating else None,
            "scoreField": score.key if score else None,
            "decidedBy": decided_by,
        },
    }


class NRISource(DataSource):
    """One NRI feature layer (tract or county) for one hazard."""

    def __init__(self, resolver: SpatialFeatureResolver, layer_url: str,
                 unit: AdminUnit, profile: NRIProfile):
        self.resolver = resolver
        self.layer_url = layer_url
        self.unit = unit
        self.profile = profile
        self.name = f"FEMA National Risk Index ({unit.value})"

    def fetch(self, coordinate: Coordinate, budget: AttemptBudget,
              trace: AttemptTrace) -> Optional[SourceOutcome]:
        hit = self.resolver.resolve(self.layer_url, coordinate, budget, trace, unit=self.unit.value)
        if hit is None:
            return None

        out = classify_nri(hit.attributes, self.profile)
        return SourceOutcome(
            level=out["level"],
            provider=self.name,
            label=out["label"],
            score=out["score"],
            admin_unit=self.unit,
            details={
                "usedFields": out["used_fields"],
                "county": first_present(hit.attributes, COUNTY_FIELDS),
                "state": first_present(hit.attributes, STATE_FIELDS),
                "matchedBy": hit.step,
            },
        )


def nri_sources(resolver: SpatialFeatureResolver, config: EngineConfig,
                profile: NRIProfile) -> List[DataSource]:
    sources: List[DataSource] = [NRISource(resolver, config.nri_tracts_url, AdminUnit.TRACT, profile)]
    if not config.nri_tract_only:
        sources.append(NRISource(resolver, config.nri_counties_url, AdminUnit.COUNTY, profile))
    return sources


# ═══════════════════════════════════════════════════════════════════════════
# FEMA NFHL FLOOD ZONES
# ═══════════════════════════════════════════════════════════════════════════
ZONE_FIELD = FieldPattern(exact=("FLD_ZONE",), fuzzy=(r"(^|_)FLD_ZONE$", r"^ZONE$"))
SUBTYPE_FIELD = FieldPattern(exact=("ZONE_SUBTY", "ZONE_SUBTYPE"), fuzzy=(r"(^|_)ZONE_SUBTY(PE)?$",))
SFHA_FIELD = FieldPattern(exact=("SFHA_TF",), fuzzy=(r"(^|_)SFHA(_TF)?$",))
BFE_FIELD = FieldPattern(exact=("STATIC_BFE", "BFE", "DEPTH"), fuzzy=(r"(^|_)STATIC_BFE$",))

HIGH_RISK_ZONES = {
    "A": "High risk (1% annual chance)",
    "AE": "High risk (1% annual chance), BFE determined",
    "AH": "High risk (ponding), BFE in feet",
    "AO": "High risk (depth-based)",
    "AR": "High risk (temporarily increased, levee restoration)",
    "A99": "High risk (protected by levee under construction)",
}
_NUMBERED_A = re.compile(r"^A\d{1,2}$")
_V_ZONE = re.compile(r"^V(E|\d{1,2})?$")


@dataclass(frozen=True)
class FloodZone:
    level: RiskLevel
    zone: str
    note: str


def classify_flood_zone(zone, subtype=None, sfha=None) -> FloodZone:
    """
    Map an NFHL FLD_ZONE (plus subtype and SFHA flag) to a level.

    V/VE -> Very High, A-family -> High, X shaded / B -> Moderate,
    X unshaded / C -> Low, D -> Undetermined, open water -> Not Applicable.
    A truthy SFHA flag lifts a lower zone to High.
    """
    z = re.sub(r"^ZONE\s+", "", str(zone or "").strip().upper())
    sub = str(subtype or "").upper()

    if not z:
        result = FloodZone(RiskLevel.UNDETERMINED, "", "No flood zone on this feature")
    elif "OPEN WATER" in z or "AREA NOT INCLUDED" in z:
        result = FloodZone(RiskLevel.NOT_APPLICABLE, z, "Open water / area not mapped")
    elif _V_ZONE.match(z):
        result = FloodZone(RiskLevel.VERY_HIGH, z, "Coastal high hazard (wave action)")
    elif z in HIGH_RISK_ZONES:
        result = FloodZone(RiskLevel.HIGH, z, HIGH_RISK_ZONES[z])
    elif _NUMBERED_A.match(z):
        result = FloodZone(RiskLevel.HIGH, z, "High risk (1% annual chance)")
    elif z == "X":
        if "0.2" in sub or "500" in sub or "LEVEE" in sub:
            result = FloodZone(RiskLevel.MODERATE, z, "Moderate risk (0.2% annual chance, shaded X)")
        else:
            result = FloodZone(RiskLevel.LOW, z, "Minimal risk (outside SFHA)")
    elif z == "B":
        result = FloodZone(RiskLevel.MODERATE, z, "Moderate risk (older designation)")
    elif z == "C":
        result = FloodZone(RiskLevel.LOW, z, "Minimal risk (older designation)")
    elif z == "D":
        result = FloodZone(RiskLevel.UNDETERMINED, z, "Possible but undetermined flood hazard")
    else:
        result = FloodZone(RiskLevel.UNDETERMINED, z, "See FEMA NFHL for details")

    in_sfha = sfha is True or str(sfha or "").strip().upper() in ("T", "Y", "TRUE")
    if in_sfha and result.level in (RiskLevel.VERY_LOW, RiskLevel.LOW, RiskLevel.MODERATE):
        result = FloodZone(RiskLevel.HIGH, result.zone, "Special Flood Hazard Area")
    return result


def _bfe(value) -> Optional[float]:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return None if num == -9999 else num


FLOOD_LAYER_NAMES = ("S_FLD_HAZ_AR", "FLOOD HAZARD ZONES")


class FloodZoneSource(DataSource):
    """
    The flood hazard zone layer of one NFHL map service.

    The layer id is looked up by name on first use and remembered; if the
    service lists no such layer the long-standing id 28 is used. When
    every query stage misses, an ``identify`` on the same layer is tried.
    """

    def __init__(self, resolver: SpatialFeatureResolver, service_url: str, name: str,
                 layer_id: Optional[int] = None):
        self.resolver = resolver
        self.service_url = service_url.rstrip("/")
        self.name = name
        self.layer_id = layer_id
        self._lock = threading.Lock()

    def _layer(self, budget: AttemptBudget, trace: AttemptTrace) -> int:
        with self._lock:
            if self.layer_id is not None:
                return self.layer_id

        answered, found = self.resolver.find_layer(self.service_url, FLOOD_LAYER_NAMES,
                                                   budget, trace, unit="zone")
        layer_id = NFHL_DEFAULT_LAYER if found is None else found
        if answered:
            with self._lock:
                self.layer_id = layer_id
        return layer_id

    def fetch(self, coordinate: Coordinate, budget: AttemptBudget,
              trace: AttemptTrace) -> Optional[SourceOutcome]:
        layer_id = self._layer(budget, trace)
        layer_url = f"{self.service_url}/{layer_id}"
        hit = self.resolver.resolve(layer_url, coordinate, budget, trace, unit="zone")
        if hit is None:
            hit = self.resolver.identify(self.service_url, layer_id, coordinate, budget, trace, unit="zone")
        if hit is None:
            return None

        attrs = hit.attributes
        zone = ZONE_FIELD.locate(attrs)
        subtype = SUBTYPE_FIELD.locate(attrs)
        sfha = SFHA_FIELD.locate(attrs)
        bfe = BFE_FIELD.locate(attrs)

        flood = classify_flood_zone(
            zone.value if zone else None,
            subtype.value if subtype else None,
            sfha.value if sfha else None,
        )
        return SourceOutcome(
            level=flood.level,
            provider=self.name,
            label=f"Zone {flood.zone}" if flood.zone else None,
            admin_unit=AdminUnit.ZONE,
            note=flood.note,
            details={
                "zone": flood.zone or None,
                "subtype": subtype.value if subtype else None,
                "sfha": sfha.value if sfha else None,
                "bfe": _bfe(bfe.value) if bfe else None,
                "panel": first_present(attrs, ("DFIRM_ID",)),
                "layerId": layer_id,
                "matchedBy": hit.step,
            },
        )


# ═══════════════════════════════════════════════════════════════════════════
# WILDFIRE RISK TO POTENTIAL STRUCTURES (raster)
# ═══════════════════════════════════════════════════════════════════════════
WILDFIRE_CLASS_RULES = ("RPS_Class", "ClassifiedRPS", "ClassRPS")
WILDFIRE_CONTINUOUS_RULE = "RPS"
NO_PIXEL_NOTE = "No pixel value at this location (water / non-burnable / no structures)."


class RasterHazardSource(DataSource):
    """An image-service source read through the pixel sampler."""

    def __init__(self, sampler: RasterPixelSampler, raster: RasterSource):
        self.sampler = sampler
        self.raster = raster
        self.name = raster.name

    def fetch(self, coordinate: Coordinate, budget: AttemptBudget,
              trace: AttemptTrace) -> Optional[SourceOutcome]:
        run = self.sampler.sample(self.raster, coordinate, budget, trace)
        reading = run.reading

        if reading is None:
            if run.responded:
                return SourceOutcome(
                    level=RiskLevel.NOT_APPLICABLE,
                    provider=self.name,
                    admin_unit=AdminUnit.PIXEL,
                    note=NO_PIXEL_NOTE,
                )
            return None

        note = None
        if reading.distance_m > 0:
            note = f"Nearest valued pixel used (~{reading.distance_m:g} m)."
        return SourceOutcome(
            level=reading.level,
            provider=self.name,
            score=reading.value if reading.kind == "continuous" else None,
            admin_unit=AdminUnit.PIXEL,
            note=note,
            details={
                "rule": reading.rule,
                "kind": reading.kind,
                "raw": reading.raw,
                "value": reading.value,
                "distanceMeters": reading.distance_m,
            },
        )


def wildfire_rasters(config: EngineConfig) -> List[RasterSource]:
    rasters = [RasterSource(config.wildfire_primary_url, "Wildfire Risk to Homes (AGOL)",
                            WILDFIRE_CLASS_RULES, WILDFIRE_CONTINUOUS_RULE)]
    if config.wildfire_secondary_url:
        rasters.append(RasterSource(config.wildfire_secondary_url, "Wildfire Risk to Potential Structures (USFS)",
                                    WILDFIRE_CLASS_RULES, WILDFIRE_CONTINUOUS_RULE))
    return rasters


# ═══════════════════════════════════════════════════════════════════════════
# PROFILES & FAÇADE
# ═══════════════════════════════════════════════════════════════════════════
SourceBuilder = Callable[[ArcGISClient, EngineConfig], List[DataSource]]


def _flood_sources(client: ArcGISClient, config: EngineConfig) -> List[DataSource]:
    resolver = SpatialFeatureResolver(client, config)
    sources: List[DataSource] = [
        FloodZoneSource(resolver, config.nfhl_primary_url, "FEMA NFHL", config.nfhl_layer_id),
    ]
    if config.nfhl_secondary_url:
        sources.append(FloodZoneSource(resolver, config.nfhl_secondary_url, "FEMA NFHL (mirror)",
                                       config.nfhl_layer_id))
    return sources


def _earthquake_sources(client: ArcGISClient, config: EngineConfig) -> List[DataSource]:
    resolver = SpatialFeatureResolver(client, config)
    return [DesignMapsSource(client, config.design_maps_url)] + \
        nri_sources(resolver, config, profile_for(HazardKind.EARTHQUAKE, config))


def _wildfire_sources(client: ArcGISClient, config: EngineConfig) -> List[DataSource]:
    sampler = RasterPixelSampler(client, config)
    return [RasterHazardSource(sampler, raster) for raster in wildfire_rasters(config)]


def _nri_builder(kind: HazardKind) -> SourceBuilder:
    def build(client: ArcGISClient, config: EngineConfig) -> List[DataSource]:
        return nri_sources(SpatialFeatureResolver(client, config), config, profile_for(kind, config))
    return build


SOURCE_BUILDERS: Dict[HazardKind, SourceBuilder] = {
    HazardKind.FLOOD: _flood_sources,
    HazardKind.EARTHQUAKE: _earthquake_sources,
    HazardKind.WILDFIRE: _wildfire_sources,
    HazardKind.LANDSLIDE: _nri_builder(HazardKind.LANDSLIDE),
    HazardKind.HEATWAVE: _nri_builder(HazardKind.HEATWAVE),
    HazardKind.COLD_WAVE: _nri_builder(HazardKind.COLD_WAVE),
    HazardKind.HURRICANE: _nri_builder(HazardKind.HURRICANE),
    HazardKind.TORNADO: _nri_builder(HazardKind.TORNADO),
}


class HazardResolver:
    """
    Resolution façade for one hazard.

    Holds no per-call state: every ``resolve`` gets its own trace and
    attempt budget, so one instance can serve concurrent callers. (The
    NFHL layer id, once looked up, is shared under a lock.)

    Usage:
        resolver = HazardResolver(HazardKind.TORNADO)
        result = resolver.resolve(Coordinate(35.47, -97.52))
    """

    def __init__(self, hazard, config: Optional[EngineConfig] = None,
                 client: Optional[ArcGISClient] = None,
                 sources: Optional[List[DataSource]] = None):
        self.hazard = HazardKind.parse(hazard)
        self.config = config or (client.config if client else EngineConfig())
        self.client = client or ArcGISClient(self.config)
        if sources is None:
            sources = SOURCE_BUILDERS[self.hazard](self.client, self.config)
        self.chain = ProviderChain(sources, self.config.source_attempt_cap,
                                   self.config.max_consecutive_timeouts)

    def resolve(self, coordinate: Coordinate, debug: Optional[bool] = None,
                cancel_event=None) -> RiskResult:
        """
        Resolve this hazard at ``coordinate``.

        Never raises for provider trouble; the trace is kept only when
        debug is on (argument, else config).
        """
        debug = self.config.debug if debug is None else debug
        budget = AttemptBudget(self.config.attempt_cap, cancel_event)
        trace = AttemptTrace()

        result = self.chain.resolve(coordinate, budget, trace)
        log.info(f"{self.hazard.value} at ({coordinate.lat:.5f}, {coordinate.lon:.5f}): "
                 f"{result.level.value} via {result.provider or 'none'} "
                 f"({budget.used} attempts)")
        if not debug:
            result = replace(result, trace=())
        return result
