"""HTTP transport used by the hosted and local AI backends."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
ERROR_BODY_LIMIT = 200
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


@dataclass
class TransportResult:
    """Outcome of one HTTP call.

    Attributes:
        success: Whether a 2xx response with a JSON body was received.
        data: Decoded JSON body, when available.
        error: Human-readable failure description.
        status_code: HTTP status code, when a response was received.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class HttpTransport:
    """Perform JSON requests and map every failure to a :class:`TransportResult`.

    The transport never raises for timeouts, connection errors or non-2xx
    responses, so backends can surface failures as skip reasons.
    """

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client()
        self._owns_client = client is None

    def close(self) -> None:
        """Close the underlying client when this transport created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def post_json(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> TransportResult:
        """POST a JSON body and decode the JSON response.

        Args:
            url: Endpoint URL.
            body: JSON-serializable request body.
            headers: Extra request headers.
            params: Query string parameters.
            timeout: Timeout in seconds for the whole call.

        Returns:
            TransportResult: Decoded response or structured failure.
        """
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})
        return self._send("POST", url, headers=request_headers, params=params, json=dict(body), timeout=timeout)

    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> TransportResult:
        """GET an endpoint and decode the JSON response."""
        return self._send("GET", url, headers=dict(headers or {}), params=params, timeout=timeout)

    def _send(self, method: str, url: str, *, timeout: float, **kwargs: Any) -> TransportResult:
        try:
            response = self._client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException:
            LOGGER.warning("%s %s timed out after %ss", method, _redact(url), timeout)
            return TransportResult(success=False, error=f"Request timed out after {timeout:g} seconds.")
        except httpx.HTTPError as exc:
            LOGGER.warning("%s %s failed: %s", method, _redact(url), exc)
            return TransportResult(success=False, error=str(exc) or exc.__class__.__name__)

        text = _CONTROL_RE.sub("", response.text)
        try:
            data: Any = json.loads(text) if text else None
        except json.JSONDecodeError:
            data = None

        status = response.status_code
        if status < 200 or status >= 300:
            error = extract_error(status, data, text)
            LOGGER.warning("%s %s returned %s: %s", method, _redact(url), status, error)
            return TransportResult(success=False, data=data, error=error, status_code=status)

        if data is None:
            return TransportResult(
                success=False,
                error="Backend returned an empty or non-JSON response.",
                status_code=status,
            )
        return TransportResult(success=True, data=data, status_code=status)


def extract_error(status_code: int, data: Any, text: str) -> str:
    """Derive a readable error message from a non-2xx response."""
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    elif text:
        return f"HTTP {status_code}: {text[:ERROR_BODY_LIMIT]}"
    return f"HTTP {status_code} error"


def _redact(url: str) -> str:
    # Gemini carries its key in the query string.
    return re.sub(r"([?&]key=)[^&]+", r"\1***", url)


__all__ = ["DEFAULT_TIMEOUT", "HttpTransport", "TransportResult", "extract_error"]
