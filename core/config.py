"""
Engine configuration.

One explicit object handed to the engine at construction time. Nothing in
the engine reads environment variables on its own; ``EngineConfig.from_env``
exists for entry points that want the old ``NRI_TRACTS_URL`` / ``WFR_*``
style overrides.
"""

import math
import os
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple

NRI_TRACTS_URL = (
    "https://services.arcgis.com/XG15cJAlne2vxtgt/arcgis/rest/services/"
    "National_Risk_Index_Census_Tracts/FeatureServer/0"
)
NRI_COUNTIES_URL = (
    "https://services5.arcgis.com/W1uyphp8h2tna3qJ/ArcGIS/rest/services/"
    "NRI_GDB_Counties_%282%29/FeatureServer/0"
)
# NFHL map services; the flood hazard zone layer is looked up by name
NFHL_PRIMARY_URL = "https://hazards.fema.gov/gis/nfhl/rest/services/public/NFHL/MapServer"
NFHL_SECONDARY_URL = "https://gis.fema.gov/arcgis/rest/services/NFHL/MapServer"
NFHL_DEFAULT_LAYER = 28
WILDFIRE_PRIMARY_URL = (
    "https://services3.arcgis.com/T4QMspbfLg3qTGWY/ArcGIS/rest/services/"
    "Risk_to_Homes/ImageServer"
)
WILDFIRE_SECONDARY_URL = (
    "https://apps.fs.usda.gov/fsgisx01/rest/services/RDW_Wildfire/"
    "RMRS_WRC_RiskToPotentialStructures/ImageServer"
)
DESIGN_MAPS_URL = "https://earthquake.usgs.gov/ws/designmaps"

NRI_MODES = ("label", "score")

# getSamples calls per sampled point: three class rules and one continuous rule
RASTER_CALLS_PER_POINT = 4

# Deep wildfire search: finer rings, wider radius, more patient timeout
DEEP_PRESET = {
    "ring_step_m": 30.0,
    "max_search_radius_m": 300.0,
    "per_attempt_timeout_ms": 2000,
}


class ConfigError(ValueError):
    """Invalid engine configuration."""


def ring_point_count(step_m: float, max_radius_m: float) -> int:
    """Number of points on all search rings out to ``max_radius_m``."""
    if step_m <= 0 or max_radius_m < step_m:
        return 0
    count, k = 0, 1
    while k * step_m < max_radius_m + step_m / 2:
        count += max(8, int(round(2 * math.pi * k)))
        k += 1
    return count


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables for every hazard resolution.

    Each provider family has a primary and a secondary source URL; the
    secondary is only queried when the primary yields nothing usable.

    Attempt caps left as None are sized from the ring geometry: one
    source may sample the direct pixel plus every ring point through
    every rendering rule, and a façade may do that for two sources.
    """
    nri_tracts_url: str = NRI_TRACTS_URL
    nri_counties_url: str = NRI_COUNTIES_URL
    nfhl_primary_url: str = NFHL_PRIMARY_URL
    nfhl_secondary_url: Optional[str] = NFHL_SECONDARY_URL
    nfhl_layer_id: Optional[int] = None
    wildfire_primary_url: str = WILDFIRE_PRIMARY_URL
    wildfire_secondary_url: Optional[str] = WILDFIRE_SECONDARY_URL
    design_maps_url: str = DESIGN_MAPS_URL

    max_search_radius_m: float = 180.0
    ring_step_m: float = 60.0
    per_attempt_timeout_ms: int = 1500
    max_attempts: Optional[int] = None
    max_attempts_per_source: Optional[int] = None
    max_consecutive_timeouts: Optional[int] = 4
    tolerances_m: Tuple[float, ...] = (3.0, 7.0, 15.0, 30.0)
    envelope_m: float = 50.0
    identify_tolerance_px: int = 6
    connect_retries: int = 1

    nri_mode: str = "label"
    nri_hazard_modes: Mapping[str, str] = field(default_factory=dict)
    nri_tract_only: bool = False

    user_agent: str = "RiskChecker/1.0 (+engine)"
    debug: bool = False

    def __post_init__(self):
        if self.per_attempt_timeout_ms <= 0:
            raise ConfigError("per_attempt_timeout_ms must be positive")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.max_attempts_per_source is not None and self.max_attempts_per_source < 1:
            raise ConfigError("max_attempts_per_source must be at least 1")
        if self.max_consecutive_timeouts is not None and self.max_consecutive_timeouts < 1:
            raise ConfigError("max_consecutive_timeouts must be at least 1")
        if self.ring_step_m <= 0:
            raise ConfigError("ring_step_m must be positive")
        if self.max_search_radius_m < 0:
            raise ConfigError("max_search_radius_m must not be negative")
        if self.envelope_m <= 0:
            raise ConfigError("envelope_m must be positive")
        if self.identify_tolerance_px < 0:
            raise ConfigError("identify_tolerance_px must not be negative")
        if self.connect_retries < 0:
            raise ConfigError("connect_retries must not be negative")
        if any(t <= 0 for t in self.tolerances_m):
            raise ConfigError("tolerances_m must all be positive")
        for mode in (self.nri_mode, *self.nri_hazard_modes.values()):
            if mode not in NRI_MODES:
                raise ConfigError(f"NRI mode must be one of {NRI_MODES}, got {mode!r}")

    @property
    def timeout_seconds(self) -> float:
        return self.per_attempt_timeout_ms / 1000.0

    @property
    def source_attempt_cap(self) -> int:
        """Calls one source may make."""
        if self.max_attempts_per_source is not None:
            return self.max_attempts_per_source
        points = 1 + ring_point_count(self.ring_step_m, self.max_search_radius_m)
        return RASTER_CALLS_PER_POINT * points

    @property
    def attempt_cap(self) -> int:
        """Calls one façade may make across all its sources."""
        if self.max_attempts is not None:
            return self.max_attempts
        return 2 * self.source_attempt_cap

    @property
    def worst_case_seconds(self) -> float:
        """Upper bound on one façade's wall time (attempts x timeout)."""
        return self.attempt_cap * self.timeout_seconds

    def nri_mode_for(self, hazard: str) -> str:
        return self.nri_hazard_modes.get(hazard, self.nri_mode)

    def with_overrides(self, **changes) -> "EngineConfig":
        return replace(self, **changes)

    @classmethod
    def deep(cls, **changes) -> "EngineConfig":
        """Preset for a slower, wider wildfire pixel search."""
        return cls(**{**DEEP_PRESET, **changes})

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None,
                 deep: Optional[bool] = None) -> "EngineConfig":
        """
        Build a config from environment-style overrides.

        ``WFR_MODE=deep`` (or ``deep=True``) starts from the deep preset;
        explicit ``WFR_*`` values still win over it.
        """
        env = os.environ if environ is None else environ
        mapping = {
            "NRI_TRACTS_URL": ("nri_tracts_url", str),
            "NRI_COUNTIES_URL": ("nri_counties_url", str),
            "NRI_MODE": ("nri_mode", _parse_mode),
            "NRI_TRACT_ONLY": ("nri_tract_only", _parse_bool),
            "NFHL_PRIMARY_URL": ("nfhl_primary_url", str),
            "NFHL_SECONDARY_URL": ("nfhl_secondary_url", str),
            "NFHL_LAYER_ID": ("nfhl_layer_id", int),
            "WFR_PRIMARY_URL": ("wildfire_primary_url", str),
            "WFR_SECONDARY_URL": ("wildfire_secondary_url", str),
            "DESIGN_MAPS_URL": ("design_maps_url", str),
            "WFR_MAX_RADIUS": ("max_search_radius_m", float),
            "WFR_STEP": ("ring_step_m", float),
            "WFR_TIMEOUT_MS": ("per_attempt_timeout_ms", int),
            "RISK_MAX_ATTEMPTS": ("max_attempts", int),
            "RISK_SOURCE_ATTEMPTS": ("max_attempts_per_source", int),
            "RISK_USER_AGENT": ("user_agent", str),
            "RISK_DEBUG": ("debug", _parse_bool),
        }
        kwargs = {}
        for var, (name, conv) in mapping.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                kwargs[name] = conv(raw)
            except ValueError:
                raise ConfigError(f"{var}={raw!r} is not a valid {conv.__name__}") from None

        if deep is None:
            deep = str(env.get("WFR_MODE", "")).strip().lower() == "deep"
        return cls.deep(**kwargs) if deep else cls(**kwargs)


def _parse_bool(raw: str) -> bool:
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def _parse_mode(raw: str) -> str:
    return str(raw).strip().lower()
