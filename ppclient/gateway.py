from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ppclient.errors import TransportError
from ppclient.models import SimulationRequest
from ppclient.utils.logging import get_logger


class HttpGateway:
    """JSON-over-HTTP access to the PP server endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = 30.0,
        retries: int = 3,
        retry_wait: float = 1.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(1, int(retries))
        self.retry_wait = retry_wait
        self.session = session or requests.Session()
        self.logger = get_logger("gateway")

    def profile_url(self, user: str) -> str:
        return f"{self.base_url}/pp?user={quote(user, safe='')}"

    def _send(self, method: str, path: str, **kw: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        resp = self.session.request(method, url, timeout=self.timeout, **kw)
        resp.raise_for_status()
        return resp.json()

    def _call(self, method: str, path: str, **kw: Any) -> Dict[str, Any]:
        """Send with retries on connection-level failures; anything left over becomes TransportError."""
        retrying = Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
            reraise=True,
        )
        try:
            payload = retrying(self._send, method, path, **kw)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise TransportError(f"{method} {path} answered HTTP {status}") from e
        except requests.RequestException as e:
            # JSONDecodeError from resp.json() is a RequestException too
            raise TransportError(f"{method} {path} failed: {e}") from e
        if not isinstance(payload, dict):
            raise TransportError(f"{method} {path} returned {type(payload).__name__}, expected an object")
        self.logger.debug("%s %s -> %s", method, path, payload)
        return payload

    def request_recalc(self, user: str, force: bool = False) -> Dict[str, Any]:
        params = {"user": user, "force": "true" if force else "false"}
        return self._call("GET", "/pp_request", params=params)

    def check_status(self, user: str) -> Dict[str, Any]:
        return self._call("GET", "/pp_check", params={"user": user})

    def simulate(self, request: SimulationRequest) -> Dict[str, Any]:
        return self._call("POST", "/simulate", json=request.to_json())
