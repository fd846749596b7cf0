import threading
import time

import pytest
from unittest.mock import MagicMock, patch
from core.models import AdminUnit, Coordinate, HazardKind, InvalidCoordinateError, RiskResult
from core.taxonomy import RiskLevel
from loaders.unified import HazardReport, UnifiedHazardFetcher, get_hazard_fetcher, resolve_hazard

CANNED = {
    HazardKind.FLOOD: RiskLevel.LOW,
    HazardKind.EARTHQUAKE: RiskLevel.HIGH,
    HazardKind.LANDSLIDE: RiskLevel.MODERATE,
    HazardKind.WILDFIRE: RiskLevel.NOT_APPLICABLE,
    HazardKind.HEATWAVE: RiskLevel.LOW,
    HazardKind.COLD_WAVE: RiskLevel.VERY_LOW,
    HazardKind.HURRICANE: RiskLevel.NOT_APPLICABLE,
    HazardKind.TORNADO: RiskLevel.VERY_LOW,
}


@pytest.fixture
def mock_fetcher(config):
    resolvers = {}
    for kind, level in CANNED.items():
        resolver = MagicMock()
        resolver.resolve.return_value = RiskResult(level=level, provider=f"{kind.value}-source",
                                                   admin_unit=AdminUnit.TRACT)
        resolvers[kind] = resolver
    yield UnifiedHazardFetcher(config, client=MagicMock(), resolvers=resolvers)


def test_fetch_all_hazards(mock_fetcher):
    """Verify every hazard is resolved and reported in order."""
    report = mock_fetcher.fetch_all(36.9741, -122.0308)

    assert list(report.results) == list(CANNED)
    assert {k: r.level for k, r in report.results.items()} == CANNED
    assert report.data_complete
    for resolver in mock_fetcher.resolvers.values():
        coordinate = resolver.resolve.call_args.args[0]
        assert coordinate == Coordinate(36.9741, -122.0308)


def test_fetch_subset(mock_fetcher):
    report = mock_fetcher.fetch_all(36.9741, -122.0308, hazards=["flood", "cold-wave"])
    assert list(report.results) == [HazardKind.FLOOD, HazardKind.COLD_WAVE]
    mock_fetcher.resolvers[HazardKind.TORNADO].resolve.assert_not_called()


def test_invalid_coordinate_before_any_call(mock_fetcher):
    with pytest.raises(InvalidCoordinateError):
        mock_fetcher.fetch_all(95.0, -122.0)
    for resolver in mock_fetcher.resolvers.values():
        resolver.resolve.assert_not_called()


def test_one_failure_is_isolated(mock_fetcher):
    mock_fetcher.resolvers[HazardKind.TORNADO].resolve.side_effect = RuntimeError("boom")

    report = mock_fetcher.fetch_all(36.9741, -122.0308)
    assert report.results[HazardKind.TORNADO].level is RiskLevel.UNDETERMINED
    assert report.results[HazardKind.FLOOD].level is RiskLevel.LOW
    assert not report.data_complete
    assert report.fetch_errors == ["tornado: boom"]


def test_deadline_abandons_slow_hazards(mock_fetcher):
    def slow(coordinate, debug, cancel):
        cancel.wait(5)
        return RiskResult(level=RiskLevel.HIGH)

    mock_fetcher.resolvers[HazardKind.WILDFIRE].resolve.side_effect = slow

    started = time.monotonic()
    report = mock_fetcher.fetch_all(36.9741, -122.0308, timeout=0.3)
    assert time.monotonic() - started < 3

    assert report.cancelled
    assert report.results[HazardKind.WILDFIRE].level is RiskLevel.UNDETERMINED
    assert report.results[HazardKind.WILDFIRE].note == "Abandoned before completion."
    assert report.results[HazardKind.FLOOD].level is RiskLevel.LOW


def test_external_cancellation(mock_fetcher):
    cancel = threading.Event()

    def slow(coordinate, debug, event):
        event.wait(5)
        return RiskResult(level=RiskLevel.HIGH)

    mock_fetcher.resolvers[HazardKind.FLOOD].resolve.side_effect = slow
    threading.Timer(0.2, cancel.set).start()

    report = mock_fetcher.fetch_all(36.9741, -122.0308, cancel_event=cancel)
    assert report.cancelled
    assert report.results[HazardKind.FLOOD].level is RiskLevel.UNDETERMINED


def test_single_hazard(mock_fetcher):
    result = mock_fetcher.resolve("tornado", 35.47, -97.52)
    assert result.level is RiskLevel.VERY_LOW
    mock_fetcher.resolvers[HazardKind.TORNADO].resolve.assert_called_once()


def test_report_to_dict():
    report = HazardReport(latitude=36.0, longitude=-122.0, results={
        HazardKind.FLOOD: RiskResult(level=RiskLevel.HIGH, label="Zone AE"),
    })
    body = report.to_dict()
    assert body["hazards"]["flood"]["level"] == "High"
    assert body["data_complete"] is True


def test_singleton():
    assert get_hazard_fetcher() is get_hazard_fetcher()


def test_resolve_hazard_closes_its_session(json_response):
    with patch('requests.Session') as mock_session:
        session = mock_session.return_value
        session.get.return_value = json_response({"features": [{"attributes": {"TRND_RISKR": "Very Low"}}]})
        result = resolve_hazard("tornado", 35.47, -97.52)

    assert result.level is RiskLevel.VERY_LOW
    session.close.assert_called_once()


def test_close_releases_client(mock_fetcher):
    mock_fetcher.close()
    mock_fetcher.client.close.assert_called_once()
