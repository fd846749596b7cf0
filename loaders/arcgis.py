"""
ArcGIS REST client - the one place the engine talks HTTP.

Feature services, map services and image services all answer ``f=json``
queries, but not always with JSON: outages come back as HTML error pages,
some mirrors reply 200 with an ``{"error": ...}`` body. Everything is
classified into an Outcome here so the resolvers never see an exception.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from tenacity import (
    Retrying,
    retry_all,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import EngineConfig
from core.fallback import AttemptBudget
from core.models import Outcome

log = logging.getLogger(__name__)

_JSON_CONTENT_TYPES = ("json", "javascript", "text/plain")


@dataclass
class FetchResult:
    """One HTTP exchange, classified."""
    url: str
    outcome: Outcome
    data: Optional[Dict[str, Any]] = None
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


def build_url(url: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Full query URL as it will be sent (used for the attempt trace)."""
    return requests.Request("GET", url, params=params).prepare().url


def _is_json_like(content_type: str) -> bool:
    ct = (content_type or "").lower()
    if "html" in ct:
        return False
    return any(token in ct for token in _JSON_CONTENT_TYPES)


class ArcGISClient:
    """
    Thin wrapper around a requests.Session.

    Every call carries the configured per-attempt timeout. Connection
    resets are retried a bounded number of times; timeouts are not, so a
    silent provider costs at most one timeout per attempt.
    """

    def __init__(self, config: Optional[EngineConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or EngineConfig()
        self.session = session or requests.Session()
        self.session.headers.update({
            "accept": "application/json",
            "user-agent": self.config.user_agent,
        })

    def _send(self, url: str, params: Optional[Dict[str, Any]]) -> requests.Response:
        retrying = Retrying(
            stop=stop_after_attempt(self.config.connect_retries + 1),
            wait=wait_exponential(multiplier=0.2, max=1),
            retry=retry_all(
                retry_if_exception_type(requests.ConnectionError),
                retry_if_not_exception_type(requests.Timeout),
            ),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self.session.get(url, params=params, timeout=self.config.timeout_seconds)

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                 budget: Optional[AttemptBudget] = None) -> Optional[FetchResult]:
        """
        GET ``url`` and parse a JSON object.

        Returns None without sending anything when the budget refuses the
        attempt; otherwise a FetchResult whose outcome is one of OK,
        NO_FEATURE (non-JSON / malformed body), HTTP_ERROR or TIMEOUT.
        """
        if budget is not None and not budget.take():
            return None

        result = self._fetch(url, params)
        if budget is not None:
            budget.record(result.outcome)
        return result

    def _fetch(self, url: str, params: Optional[Dict[str, Any]]) -> FetchResult:
        full_url = build_url(url, params)
        try:
            response = self._send(url, params)
        except requests.Timeout:
            log.warning(f"Timeout after {self.config.timeout_seconds:.1f}s: {url}")
            return FetchResult(full_url, Outcome.TIMEOUT)
        except requests.RequestException as e:
            log.warning(f"Request failed for {url}: {e}")
            return FetchResult(full_url, Outcome.HTTP_ERROR)

        status = response.status_code
        if not response.ok:
            log.warning(f"HTTP {status} from {url}")
            return FetchResult(full_url, Outcome.HTTP_ERROR, status=status)

        content_type = response.headers.get("content-type", "")
        if not _is_json_like(content_type):
            log.warning(f"Non-JSON body ({content_type or 'no content-type'}) from {url}")
            return FetchResult(full_url, Outcome.NO_FEATURE, status=status)

        try:
            data = json.loads(response.text) if response.text else None
        except ValueError:
            log.warning(f"Malformed JSON from {url}")
            return FetchResult(full_url, Outcome.NO_FEATURE, status=status)

        if not isinstance(data, dict):
            return FetchResult(full_url, Outcome.NO_FEATURE, status=status)
        if data.get("error"):
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else err
            log.warning(f"Provider error from {url}: {message}")
            return FetchResult(full_url, Outcome.HTTP_ERROR, data=data, status=status)

        return FetchResult(full_url, Outcome.OK, data=data, status=status)

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
