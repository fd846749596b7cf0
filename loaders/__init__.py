"""
Data loaders for the Hazard Risk Engine.

Includes:
- ArcGIS REST client (FeatureServer / MapServer / ImageServer)
- Spatial feature resolver (point -> tolerance -> envelope)
- Raster pixel sampler (direct pixel -> ring search)
- USGS Design Maps (seismic design category)
- Hazard façades (NRI, NFHL, wildfire)
- Unified fetcher (all hazards at once)
"""

from loaders.arcgis import ArcGISClient, FetchResult
from loaders.feature_resolver import SpatialFeatureResolver, FeatureHit
from loaders.pixel_sampler import RasterPixelSampler, RasterSource, PixelReading
from loaders.design_maps import DesignMapsSource
from loaders.hazards import HazardResolver, classify_flood_zone, classify_nri
from loaders.unified import UnifiedHazardFetcher, HazardReport, get_hazard_fetcher, resolve_hazard

__all__ = [
    # Transport
    "ArcGISClient",
    "FetchResult",
    # Resolution
    "SpatialFeatureResolver",
    "FeatureHit",
    "RasterPixelSampler",
    "RasterSource",
    "PixelReading",
    "DesignMapsSource",
    # Hazards
    "HazardResolver",
    "classify_flood_zone",
    "classify_nri",
    # Unified
    "UnifiedHazardFetcher",
    "HazardReport",
    "get_hazard_fetcher",
    "resolve_hazard",
]
