import math

import pytest
from core.models import (
    AdminUnit, AttemptTrace, Coordinate, HazardKind, HazardRequest,
    InvalidCoordinateError, Outcome, RiskResult,
)
from core.taxonomy import RiskLevel


def test_coordinate_accepts_numeric_strings():
    coord = Coordinate("36.9741", "-122.0308")
    assert coord.lat == 36.9741
    assert coord.lon == -122.0308


@pytest.mark.parametrize("lat,lon", [
    (91, 0),
    (-90.5, 0),
    (0, 180.01),
    (0, -181),
    (float("nan"), 0),
    (0, float("inf")),
    ("abc", 0),
    (None, 0),
    (True, 0),
])
def test_coordinate_rejects_invalid(lat, lon):
    with pytest.raises(InvalidCoordinateError):
        Coordinate(lat, lon)


def test_invalid_coordinate_is_value_error():
    assert issubclass(InvalidCoordinateError, ValueError)


def test_coordinate_bounds_inclusive():
    Coordinate(90, 180)
    Coordinate(-90, -180)


def test_offset_returns_new_coordinate():
    """Offsets build a new point; the original is untouched."""
    origin = Coordinate(0.0, 0.0)
    moved = origin.offset(111_320.0, 0.0)
    assert math.isclose(moved.lat, 1.0, rel_tol=1e-9)
    assert moved.lon == 0.0
    assert origin.lat == 0.0 and origin.lon == 0.0


def test_offset_wraps_longitude():
    moved = Coordinate(0.0, 179.9999).offset(0.0, 1000.0)
    assert -180.0 <= moved.lon <= 180.0


@pytest.mark.parametrize("lat", [90.0, -90.0, 89.9999])
def test_offset_at_the_poles_stays_valid(lat):
    """At a pole one meter east is thousands of degrees of longitude."""
    origin = Coordinate(lat, 0.0)
    for north, east in [(0.0, 60.0), (0.0, -180.0), (42.4, 42.4)]:
        moved = origin.offset(north, east)
        assert -180.0 <= moved.lon <= 180.0
        assert -90.0 <= moved.lat <= 90.0


@pytest.mark.parametrize("raw,expected", [
    ("flood", HazardKind.FLOOD),
    ("Flood", HazardKind.FLOOD),
    ("cold-wave", HazardKind.COLD_WAVE),
    ("COLD_WAVE", HazardKind.COLD_WAVE),
    ("coldwave", HazardKind.COLD_WAVE),
    (HazardKind.TORNADO, HazardKind.TORNADO),
])
def test_hazard_parse(raw, expected):
    assert HazardKind.parse(raw) is expected


def test_hazard_parse_unknown():
    with pytest.raises(ValueError):
        HazardKind.parse("volcano")


def test_hazard_request_validates_coordinate():
    request = HazardRequest.create("wildfire", 39.5, -105.0)
    assert request.hazard is HazardKind.WILDFIRE
    with pytest.raises(InvalidCoordinateError):
        HazardRequest.create("wildfire", 120, -105.0)


def test_attempt_trace_preserves_order():
    trace = AttemptTrace()
    trace.record("tract:point:within", "https://a", Outcome.NO_FEATURE)
    trace.record("tract:point:intersects:3m", "https://b", Outcome.OK)
    assert len(trace) == 2
    assert [a.step for a in trace] == ["tract:point:within", "tract:point:intersects:3m"]
    assert trace.attempts[1].to_dict() == {
        "step": "tract:point:intersects:3m", "url": "https://b", "outcome": "ok",
    }


def test_risk_result_to_dict_hides_trace_unless_debug():
    trace = AttemptTrace()
    trace.record("zone:point:within", "https://nfhl", Outcome.OK)
    result = RiskResult(
        level=RiskLevel.HIGH,
        label="Zone AE",
        admin_unit=AdminUnit.ZONE,
        provider="FEMA NFHL",
        trace=trace.attempts,
        details={"zone": "AE"},
    )

    plain = result.to_dict()
    assert plain["level"] == "High"
    assert plain["adminUnit"] == "zone"
    assert "trace" not in plain
    assert "details" not in plain

    verbose = result.to_dict(debug=True)
    assert verbose["trace"][0]["outcome"] == "ok"
    assert verbose["details"] == {"zone": "AE"}
