import pytest
from core.config import ConfigError, EngineConfig, NFHL_PRIMARY_URL, RASTER_CALLS_PER_POINT, ring_point_count
from loaders.pixel_sampler import ring_offsets


def test_defaults():
    config = EngineConfig()
    assert config.max_search_radius_m == 180.0
    assert config.ring_step_m == 60.0
    assert config.per_attempt_timeout_ms == 1500
    assert config.timeout_seconds == 1.5
    assert config.max_attempts is None
    assert config.source_attempt_cap == 164
    assert config.attempt_cap == 328
    assert config.worst_case_seconds == 492.0
    assert config.max_consecutive_timeouts == 4
    assert config.tolerances_m == (3.0, 7.0, 15.0, 30.0)
    assert config.nfhl_primary_url == NFHL_PRIMARY_URL
    assert config.debug is False


@pytest.mark.parametrize("field,value", [
    ("per_attempt_timeout_ms", 0),
    ("max_attempts", 0),
    ("max_attempts_per_source", 0),
    ("max_consecutive_timeouts", 0),
    ("identify_tolerance_px", -1),
    ("nri_mode", "median"),
    ("nri_hazard_modes", {"landslide": "median"}),
    ("ring_step_m", -60),
    ("max_search_radius_m", -1),
    ("envelope_m", 0),
    ("connect_retries", -1),
    ("tolerances_m", (3.0, 0.0)),
])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ConfigError):
        EngineConfig(**{field: value})


def test_from_env_overrides():
    config = EngineConfig.from_env({
        "WFR_MAX_RADIUS": "240",
        "WFR_STEP": "80",
        "WFR_TIMEOUT_MS": "900",
        "RISK_MAX_ATTEMPTS": "12",
        "RISK_DEBUG": "yes",
        "NFHL_PRIMARY_URL": "https://mirror.example/NFHL/MapServer/28",
        "WFR_SECONDARY_URL": "",
    })
    assert config.max_search_radius_m == 240.0
    assert config.ring_step_m == 80.0
    assert config.per_attempt_timeout_ms == 900
    assert config.max_attempts == 12
    assert config.debug is True
    assert config.nfhl_primary_url == "https://mirror.example/NFHL/MapServer/28"
    # Empty values fall back to defaults
    assert config.wildfire_secondary_url == EngineConfig().wildfire_secondary_url


def test_from_env_empty_is_default():
    assert EngineConfig.from_env({}) == EngineConfig()


def test_from_env_bad_number():
    with pytest.raises(ConfigError):
        EngineConfig.from_env({"WFR_STEP": "sixty"})


def test_from_env_out_of_range():
    with pytest.raises(ConfigError):
        EngineConfig.from_env({"WFR_TIMEOUT_MS": "-5"})


def test_with_overrides_is_a_copy():
    base = EngineConfig()
    tuned = base.with_overrides(max_attempts=5)
    assert tuned.max_attempts == 5
    assert tuned.attempt_cap == 5
    assert base.max_attempts is None


@pytest.mark.parametrize("step,radius", [(60.0, 180.0), (30.0, 300.0), (60.0, 40.0), (80.0, 240.0)])
def test_ring_point_count_matches_ring_offsets(step, radius):
    assert ring_point_count(step, radius) == len(list(ring_offsets(step, radius)))


def test_default_caps_cover_the_full_ring_search():
    """One source can sample the direct pixel and every ring point through every rule."""
    config = EngineConfig()
    points = 1 + len(list(ring_offsets(config.ring_step_m, config.max_search_radius_m)))
    assert config.source_attempt_cap >= points * RASTER_CALLS_PER_POINT
    assert config.attempt_cap >= 2 * config.source_attempt_cap


def test_deep_preset():
    config = EngineConfig.deep()
    assert config.ring_step_m == 30.0
    assert config.max_search_radius_m == 300.0
    assert config.per_attempt_timeout_ms == 2000
    assert config.source_attempt_cap == RASTER_CALLS_PER_POINT * (1 + ring_point_count(30.0, 300.0))

    assert EngineConfig.deep(max_search_radius_m=150.0).max_search_radius_m == 150.0


def test_from_env_deep_mode():
    assert EngineConfig.from_env({"WFR_MODE": "deep"}) == EngineConfig.deep()
    assert EngineConfig.from_env({}, deep=True) == EngineConfig.deep()
    # explicit values still win over the preset
    assert EngineConfig.from_env({"WFR_MODE": "deep", "WFR_STEP": "45"}).ring_step_m == 45.0


def test_nri_mode_per_hazard():
    config = EngineConfig(nri_hazard_modes={"landslide": "score"})
    assert config.nri_mode_for("landslide") == "score"
    assert config.nri_mode_for("tornado") == "label"

    config = EngineConfig.from_env({"NRI_MODE": "Score", "NRI_TRACT_ONLY": "1", "NFHL_LAYER_ID": "31"})
    assert config.nri_mode_for("tornado") == "score"
    assert config.nri_tract_only is True
    assert config.nfhl_layer_id == 31
