import os

import pytest
from unittest.mock import patch

import main
from core.config import EngineConfig
from core.models import HazardKind, RiskResult
from core.taxonomy import RiskLevel
from loaders.unified import HazardReport


@pytest.fixture
def fetcher_cls():
    with patch.dict(os.environ, {}, clear=True), patch("main.UnifiedHazardFetcher") as cls:
        cls.return_value.fetch_all.return_value = HazardReport(
            latitude=36.9741, longitude=-122.0308,
            results={HazardKind.WILDFIRE: RiskResult(level=RiskLevel.MODERATE)},
        )
        yield cls


def test_cli_options_reach_the_config(fetcher_cls):
    assert main.main(["36.9741", "-122.0308", "--deep", "--nri-mode", "score", "--tract-only", "--json"]) == 0

    config = fetcher_cls.call_args.args[0]
    assert config.ring_step_m == EngineConfig.deep().ring_step_m
    assert config.max_search_radius_m == 300.0
    assert config.nri_mode == "score"
    assert config.nri_tract_only is True
    fetcher_cls.return_value.close.assert_called_once()


def test_cli_defaults(fetcher_cls, capsys):
    assert main.main(["36.9741", "-122.0308", "--hazard", "wildfire"]) == 0

    assert fetcher_cls.call_args.args[0] == EngineConfig()
    assert "wildfire" in capsys.readouterr().out


def test_cli_rejects_bad_coordinate(fetcher_cls):
    fetcher_cls.return_value.fetch_all.side_effect = main.InvalidCoordinateError("lat 95.0 outside [-90, 90]")
    assert main.main(["95", "0"]) == 2
    fetcher_cls.return_value.close.assert_called_once()
