import logging
import random
import time
from typing import Any, Dict, Optional

import requests

from salesflow.errors import UpstreamFailure


class ApiClient:
    """JSON-over-HTTP client with retry and exponential backoff.

    429 and 5xx responses, and network errors, are retried up to
    ``max_retries`` times; anything else fails at once.  Failures are raised
    as :class:`UpstreamFailure` tagged with ``service``.
    """

    def __init__(
        self,
        service: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 10,
        max_retries: int = 3,
    ) -> None:
        self.service = service
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if headers:
            self.session.headers.update(headers)

    def _backoff(self, tries: int) -> None:
        time.sleep(min(2 ** tries, 30) + random.random())

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        tries = 0
        while True:
            start = time.monotonic()
            try:
                r = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
            except requests.RequestException as e:  # network issue
                tries += 1
                if tries > self.max_retries:
                    raise UpstreamFailure(self.service, f"network error: {e}") from e
                self._backoff(tries)
                continue
            latency = (time.monotonic() - start) * 1000
            logging.info("%s %s %s %s %.1fms", self.service, method, url, r.status_code, latency)
            if r.status_code == 429 or r.status_code >= 500:
                tries += 1
                if tries > self.max_retries:
                    raise UpstreamFailure(self.service, f"HTTP {r.status_code} after {tries} attempts")
                self._backoff(tries)
                continue
            if r.status_code >= 400:
                raise UpstreamFailure(self.service, f"HTTP {r.status_code}: {r.text[:200]}")
            return r.json()

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("POST", path, json=json)
