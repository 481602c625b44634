"""HTTPS transport for catalog, file and status requests."""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from .errors import HttpStatusError, ServerUnreachableError, TransportTrustError
from .security import redact_url, trust_anchor

JSON_MIME = "application/json"
BINARY_MIME = "application/octet-stream"


def _response_text(response: Any) -> str:
    try:
        return str(response.text)[:256]
    except Exception:
        return ""


class HttpTransport:
    def __init__(
        self,
        *,
        timeout_seconds: float = 30,
        ssl_trust_store: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.timeout_seconds = timeout_seconds
        self.ssl_trust_store = ssl_trust_store
        self._session = session or requests.Session()

    def get(self, url: str, *, params: dict[str, Any] | None = None, accept: str = JSON_MIME) -> Any:
        return self._request("GET", url, params=params, headers={"Accept": accept})

    def get_json(self, url: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = self.get(url, params=params)
        return self._decode(url, response)

    def get_bytes(self, url: str, *, params: dict[str, Any] | None = None) -> bytes:
        response = self.get(url, params=params, accept=BINARY_MIME)
        return bytes(response.content)

    def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request(
            "POST",
            url,
            json=payload,
            headers={"Accept": JSON_MIME, "Content-Type": JSON_MIME},
        )
        return self._decode(url, response)

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        safe_url = redact_url(url)
        self.logger.debug("HTTP %s %s", method, safe_url)
        try:
            response = self._session.request(
                method,
                url,
                timeout=self.timeout_seconds,
                verify=trust_anchor(self.ssl_trust_store),
                **kwargs,
            )
        except requests.exceptions.SSLError as exc:
            raise TransportTrustError(f"Request to {safe_url} failed: certificate verify failed ({exc})") from exc
        except requests.Timeout as exc:
            raise ServerUnreachableError(f"Request to {safe_url} timed out after {self.timeout_seconds}s") from exc
        except requests.RequestException as exc:
            raise ServerUnreachableError(f"Request to {safe_url} failed: {exc}") from exc
        self.logger.debug("HTTP %s %s returned %s", method, safe_url, response.status_code)
        if response.status_code >= 400:
            raise HttpStatusError(safe_url, response.status_code, _response_text(response))
        return response

    def _decode(self, url: str, response: Any) -> dict[str, Any]:
        try:
            payload = response.json()
        except (ValueError, json.JSONDecodeError) as exc:
            raise HttpStatusError(redact_url(url), response.status_code, "response is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise HttpStatusError(redact_url(url), response.status_code, "response is not a JSON object")
        return payload
