import json

import pytest
import requests
from unittest.mock import MagicMock

from core.config import EngineConfig
from loaders.arcgis import ArcGISClient


def _make_response(body=None, status=200, content_type="application/json"):
    response = requests.Response()
    response.status_code = status
    if body is None:
        text = ""
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body)
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    if content_type:
        response.headers["content-type"] = content_type
    response.url = "https://example.test/"
    return response


@pytest.fixture
def json_response():
    """Factory for real requests.Response objects."""
    return _make_response


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def client(config):
    """ArcGIS client over a mocked session; set ``client.session.get`` per test."""
    return ArcGISClient(config, session=MagicMock())
