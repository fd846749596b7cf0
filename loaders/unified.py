"""
Unified Hazard Fetcher - all eight hazards for one coordinate.

Runs every hazard façade in parallel and waits for all of them to settle.
A façade that crashes or runs past the deadline is reported as
Undetermined for that hazard only; it never takes the others down.

Usage:
    fetcher = UnifiedHazardFetcher()
    report = fetcher.fetch_all(36.9741, -122.0308)
    cards = report.to_dict()
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from core.config import EngineConfig
from core.models import Coordinate, HazardKind, HazardRequest, RiskResult
from core.taxonomy import RiskLevel
from loaders.arcgis import ArcGISClient
from loaders.hazards import HazardResolver

log = logging.getLogger(__name__)


@dataclass
class HazardReport:
    """Per-hazard results for one coordinate."""
    latitude: float
    longitude: float
    results: Dict[HazardKind, RiskResult] = field(default_factory=dict)
    fetch_errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def data_complete(self) -> bool:
        return not self.fetch_errors and not self.cancelled

    def to_dict(self, debug: bool = False) -> Dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "hazards": {k.value: r.to_dict(debug) for k, r in self.results.items()},
            "fetch_errors": list(self.fetch_errors),
            "data_complete": self.data_complete,
        }


class UnifiedHazardFetcher:
    """
    Fan-out aggregator over the hazard façades.

    Façades are built once and are safe to share between concurrent
    calls; each call owns its trace and attempt budget.
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 client: Optional[ArcGISClient] = None,
                 resolvers: Optional[Dict[HazardKind, HazardResolver]] = None):
        self.config = config or EngineConfig()
        self.client = client or ArcGISClient(self.config)
        if resolvers is None:
            resolvers = {kind: HazardResolver(kind, self.config, self.client) for kind in HazardKind}
        self.resolvers = resolvers

    def close(self):
        self.client.close()

    def resolve(self, hazard, lat: float, lon: float, debug: Optional[bool] = None) -> RiskResult:
        """Resolve a single hazard. Raises InvalidCoordinateError on bad input."""
        request = HazardRequest.create(hazard, lat, lon)
        return self.resolvers[request.hazard].resolve(request.coordinate, debug=debug)

    def fetch_all(
        self,
        lat: float,
        lon: float,
        hazards: Optional[Iterable] = None,
        debug: Optional[bool] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> HazardReport:
        """
        Resolve every requested hazard concurrently.

        Args:
            lat: Latitude
            lon: Longitude
            hazards: Subset of hazards (default: all)
            debug: Keep attempt traces in the results
            timeout: Overall deadline in seconds; unfinished hazards are
                abandoned and reported Undetermined
            cancel_event: Set it from another thread to abandon the request

        Returns:
            HazardReport with one RiskResult per hazard

        Raises:
            InvalidCoordinateError: before any network call
        """
        coordinate = Coordinate(lat, lon)
        kinds = [HazardKind.parse(h) for h in hazards] if hazards is not None else list(self.resolvers)
        cancel = cancel_event or threading.Event()
        report = HazardReport(latitude=coordinate.lat, longitude=coordinate.lon)

        executor = ThreadPoolExecutor(max_workers=max(1, len(kinds)), thread_name_prefix="hazard")
        try:
            futures = {
                executor.submit(self.resolvers[kind].resolve, coordinate, debug, cancel): kind
                for kind in kinds
            }
            pending = set(futures)
            deadline = None if timeout is None else time.monotonic() + timeout

            while pending:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                # Wake up periodically to notice an external cancellation.
                slice_s = 0.25 if remaining is None else min(0.25, remaining)
                done, pending = wait(pending, timeout=slice_s, return_when=FIRST_COMPLETED)

                for future in done:
                    kind = futures[future]
                    try:
                        report.results[kind] = future.result()
                    except Exception as e:
                        log.error(f"Error resolving {kind.value}: {e}")
                        report.fetch_errors.append(f"{kind.value}: {e}")
                        report.results[kind] = RiskResult(level=RiskLevel.UNDETERMINED,
                                                          note="Resolution failed.")

                if pending and (cancel.is_set() or (deadline is not None and time.monotonic() >= deadline)):
                    cancel.set()
                    report.cancelled = True
                    for future in pending:
                        kind = futures[future]
                        future.cancel()
                        report.results[kind] = RiskResult(level=RiskLevel.UNDETERMINED,
                                                          note="Abandoned before completion.")
                    log.warning(f"Abandoned {len(pending)} hazard(s) at ({lat}, {lon})")
                    break
        finally:
            # Don't block on abandoned façades; their budgets refuse new attempts.
            executor.shutdown(wait=not report.cancelled)

        report.results = {kind: report.results[kind] for kind in kinds}
        return report


def resolve_hazard(hazard, lat: float, lon: float, debug: bool = False,
                   config: Optional[EngineConfig] = None) -> RiskResult:
    """
    Resolve one hazard at one point.

    ``debug=True`` keeps the attempt trace on the result. Invalid
    coordinates raise InvalidCoordinateError before any network call.
    """
    request = HazardRequest.create(hazard, lat, lon)
    with ArcGISClient(config or EngineConfig()) as client:
        resolver = HazardResolver(request.hazard, client.config, client)
        return resolver.resolve(request.coordinate, debug=debug)


# Singleton
_fetcher: Optional[UnifiedHazardFetcher] = None


def get_hazard_fetcher() -> UnifiedHazardFetcher:
    """Get singleton hazard fetcher."""
    global _fetcher
    if _fetcher is None:
        _fetcher = UnifiedHazardFetcher()
    return _fetcher
