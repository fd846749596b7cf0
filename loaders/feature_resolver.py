"""
Spatial Feature Resolver - find the polygon covering a point.

Provider polygons do not always tile cleanly: points on a boundary, a
rounding error in reprojection or a quirky spatial index can make a plain
point-in-polygon query come back empty. The resolver escalates:

    1. point WITHIN
    2. point INTERSECTS with a growing search distance (3, 7, 15, 30 m)
    3. small envelope INTERSECTS (~50 m)

and stops at the first stage that returns a feature. Each stage builds a
fresh query geometry; the input coordinate is never touched.

Map services add two helpers: looking a layer up by name, and an
``identify`` call with a pixel tolerance as a last stage.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from core.config import EngineConfig
from core.fallback import AttemptBudget
from core.models import AttemptTrace, Coordinate, Outcome
from loaders.arcgis import ArcGISClient

log = logging.getLogger(__name__)

WGS84 = {"wkid": 4326}
IDENTIFY_EXTENT_DEG = 0.01


@dataclass(frozen=True)
class QueryStage:
    """One escalation step: a label and the spatial query parameters."""
    step: str
    params: Dict[str, str]


@dataclass
class FeatureHit:
    """The winning feature's attributes and the stage that found it."""
    attributes: Dict[str, Any]
    step: str
    url: str


def point_geometry(coordinate: Coordinate) -> str:
    return json.dumps({"x": coordinate.lon, "y": coordinate.lat, "spatialReference": WGS84})


def envelope_geometry(coordinate: Coordinate, meters: float) -> str:
    """Square envelope of half-width ``meters`` around the coordinate."""
    sw = coordinate.offset(-meters, -meters)
    ne = coordinate.offset(meters, meters)
    return json.dumps({
        "xmin": sw.lon, "ymin": sw.lat,
        "xmax": ne.lon, "ymax": ne.lat,
        "spatialReference": WGS84,
    })


def escalation_stages(coordinate: Coordinate, tolerances_m: Tuple[float, ...],
                      envelope_m: float) -> Iterator[QueryStage]:
    """Yield the query stages in escalation order."""
    point = point_geometry(coordinate)
    base = {"geometryType": "esriGeometryPoint", "inSR": "4326", "geometry": point}

    yield QueryStage("point:within", {**base, "spatialRel": "esriSpatialRelWithin"})

    for d in tolerances_m:
        yield QueryStage(f"point:intersects:{d:g}m", {
            **base,
            "spatialRel": "esriSpatialRelIntersects",
            "distance": f"{d:g}",
            "units": "esriSRUnit_Meter",
        })

    yield QueryStage(f"envelope:intersects:{envelope_m:g}m", {
        "geometryType": "esriGeometryEnvelope",
        "inSR": "4326",
        "geometry": envelope_geometry(coordinate, envelope_m),
        "spatialRel": "esriSpatialRelIntersects",
    })


def first_attributes(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Attributes of the first feature in a query response, if any."""
    if not isinstance(data, dict):
        return None
    features = data.get("features")
    if not isinstance(features, list):
        return None
    for feature in features:
        attrs = feature.get("attributes") if isinstance(feature, dict) else None
        if isinstance(attrs, dict) and attrs:
            return attrs
    return None


class SpatialFeatureResolver:
    """
    Runs the escalation sequence against one feature layer.

    Usage:
        resolver = SpatialFeatureResolver(client, config)
        hit = resolver.resolve(layer_url, coord, budget, trace, unit="tract")
    """

    def __init__(self, client: ArcGISClient, config: Optional[EngineConfig] = None,
                 out_fields: str = "*"):
        self.client = client
        self.config = config or client.config
        self.out_fields = out_fields

    def stages(self, coordinate: Coordinate) -> List[QueryStage]:
        return list(escalation_stages(coordinate, self.config.tolerances_m, self.config.envelope_m))

    def resolve(self, layer_url: str, coordinate: Coordinate, budget: AttemptBudget,
                trace: AttemptTrace, unit: str = "") -> Optional[FeatureHit]:
        """
        First feature found by the escalation sequence, or None.

        Every stage tried is recorded in ``trace``; an HTTP error or
        timeout on one stage just moves on to the next.
        """
        query_url = f"{layer_url.rstrip('/')}/query"
        prefix = f"{unit}:" if unit else ""

        for stage in self.stages(coordinate):
            params = {
                "f": "json",
                "where": "1=1",
                "outFields": self.out_fields,
                "returnGeometry": "false",
                "resultRecordCount": "1",
                **stage.params,
            }
            fetched = self.client.get_json(query_url, params, budget)
            if fetched is None:
                log.debug(f"{prefix}{stage.step}: attempt budget exhausted")
                return None

            attrs = first_attributes(fetched.data) if fetched.ok else None
            outcome = Outcome.OK if attrs else (
                fetched.outcome if not fetched.ok else Outcome.NO_FEATURE)
            trace.record(prefix + stage.step, fetched.url, outcome)

            if attrs:
                log.debug(f"{prefix}{stage.step}: feature found")
                return FeatureHit(attributes=attrs, step=stage.step, url=fetched.url)

        return None

    def find_layer(self, service_url: str, names: Tuple[str, ...], budget: AttemptBudget,
                   trace: AttemptTrace, unit: str = "") -> Tuple[bool, Optional[int]]:
        """
        Look a layer up by name in a map service's layer list.

        Returns (answered, layer_id). answered is False when the service
        could not be read at all, so callers know not to remember the
        miss; layer_id is None when it answered without a matching layer.
        """
        prefix = f"{unit}:" if unit else ""
        fetched = self.client.get_json(service_url.rstrip("/"), {"f": "json"}, budget)
        if fetched is None:
            return False, None
        if not fetched.ok:
            trace.record(f"{prefix}discover", fetched.url, fetched.outcome)
            return False, None

        wanted = tuple(n.upper() for n in names)
        layers = fetched.data.get("layers") if fetched.data else None
        for layer in layers if isinstance(layers, list) else []:
            if not isinstance(layer, dict):
                continue
            name = str(layer.get("name") or "").upper()
            if isinstance(layer.get("id"), int) and any(w in name for w in wanted):
                trace.record(f"{prefix}discover", fetched.url, Outcome.OK)
                log.debug(f"{prefix}discover: layer {layer['id']} ({layer.get('name')})")
                return True, layer["id"]

        trace.record(f"{prefix}discover", fetched.url, Outcome.NO_FEATURE)
        return True, None

    def identify(self, service_url: str, layer_id: int, coordinate: Coordinate,
                 budget: AttemptBudget, trace: AttemptTrace, unit: str = "") -> Optional[FeatureHit]:
        """
        Map-service ``identify`` with a pixel tolerance, as a map click
        would. Run after every query stage came back empty.
        """
        prefix = f"{unit}:" if unit else ""
        tolerance = self.config.identify_tolerance_px
        step = f"identify:{tolerance}px"
        params = {
            "f": "json",
            "sr": "4326",
            "geometryType": "esriGeometryPoint",
            "geometry": point_geometry(coordinate),
            "mapExtent": json.dumps({
                "xmin": coordinate.lon - IDENTIFY_EXTENT_DEG, "ymin": coordinate.lat - IDENTIFY_EXTENT_DEG,
                "xmax": coordinate.lon + IDENTIFY_EXTENT_DEG, "ymax": coordinate.lat + IDENTIFY_EXTENT_DEG,
                "spatialReference": WGS84,
            }),
            "imageDisplay": "800,600,96",
            "tolerance": str(tolerance),
            "layers": f"all:{layer_id}",
            "returnGeometry": "false",
        }
        fetched = self.client.get_json(f"{service_url.rstrip('/')}/identify", params, budget)
        if fetched is None:
            return None

        attrs = None
        if fetched.ok:
            results = fetched.data.get("results") if fetched.data else None
            attrs = first_attributes({"features": results})
        trace.record(prefix + step, fetched.url,
                     Outcome.OK if attrs else (fetched.outcome if not fetched.ok else Outcome.NO_FEATURE))
        if attrs:
            return FeatureHit(attributes=attrs, step=step, url=fetched.url)
        return None
