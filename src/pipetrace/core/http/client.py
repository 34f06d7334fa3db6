from __future__ import annotations

import logging
import os
import random
import threading
import time
from typing import Any

import httpx

from .errors import BackendUnavailable

DEFAULT_BASE_URL = "http://localhost:8000/api"

# The backend answers 502/503 while a worker restarts and 429 under load;
# everything else is a real answer and goes back to the caller.
_TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})
_TRANSIENT_ERRORS = (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError)
_BACKOFF_BASE_S = 0.25
_BACKOFF_MAX_S = 2.0

_client: httpx.Client | None = None
_client_lock = threading.Lock()

logger = logging.getLogger("pipetrace.http")


def _env_number(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


def get_http_client() -> httpx.Client:
    """Process-wide connection pool shared by every backend client."""
    global _client
    if _client is not None:
        return _client

    with _client_lock:
        if _client is None:
            timeout_s = max(0.1, _env_number("PIPETRACE_HTTP_TIMEOUT_S", 15.0))
            _client = httpx.Client(
                timeout=httpx.Timeout(timeout_s, connect=min(5.0, timeout_s)),
                headers={"User-Agent": "pipetrace/1.0"},
            )
    return _client


class BackendClient:
    """GETs JSON resources from the pipeline backend.

    Paths are relative to ``base_url`` (``PIPETRACE_API_BASE_URL``). Transient
    failures are retried with jittered backoff; any other response, 404 and
    4xx included, is returned as is so the caller decides what it means.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        headers: dict[str, str] | None = None,
        retries: int | None = None,
        http: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("PIPETRACE_API_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.headers = {"Accept": "application/json", **(headers or {})}
        if retries is None:
            retries = int(_env_number("PIPETRACE_HTTP_RETRIES", 2))
        self.retries = max(0, retries)
        self._http = http

    @property
    def http(self) -> httpx.Client:
        return self._http or get_http_client()

    def get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        query = {key: str(value) for key, value in (params or {}).items() if value is not None}
        attempt = 0

        while True:
            try:
                response = self.http.get(url, params=query or None, headers=self.headers)
            except _TRANSIENT_ERRORS as exc:
                if attempt >= self.retries:
                    raise BackendUnavailable(
                        f"GET {path} failed after {attempt + 1} attempts: {exc.__class__.__name__}",
                        path=path,
                        attempts=attempt + 1,
                    ) from exc
                logger.debug("retrying GET %s after %s", path, exc.__class__.__name__)
                _backoff(attempt)
                attempt += 1
                continue
            except httpx.HTTPError as exc:
                raise BackendUnavailable(f"GET {path} failed: {exc.__class__.__name__}", path=path, attempts=attempt + 1) from exc

            if response.status_code in _TRANSIENT_STATUSES and attempt < self.retries:
                logger.debug("retrying GET %s after status %s", path, response.status_code)
                _backoff(attempt)
                attempt += 1
                continue
            return response


def _backoff(attempt: int) -> None:
    time.sleep(min(_BACKOFF_MAX_S, _BACKOFF_BASE_S * (2**attempt)) * (0.5 + random.random()))
