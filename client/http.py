"""
Shared HTTP transport. Every call carries a bounded timeout; transport-level
failures are mapped to NetworkError and retried with exponential backoff,
HTTP rejections are mapped to RemoteRejectionError and surfaced immediately.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, TypeVar

import httpx

from client.errors import NetworkError, RemoteRejectionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
_MAX_RETRIES = 3
_RETRY_BACKOFF_SEC = 1.0

T = TypeVar("T")


def encode_body(body: Any) -> str | None:
    """Compact JSON used both on the wire and in HMAC payloads."""
    if body is None:
        return None
    return json.dumps(body, separators=(",", ":"))


def call_with_backoff(
    fn: Callable[..., T],
    *args,
    max_retries: int = _MAX_RETRIES,
    backoff_sec: float = _RETRY_BACKOFF_SEC,
    **kwargs,
) -> T:
    """Retry *fn* with exponential backoff on NetworkError only."""
    last_exc: NetworkError | None = None
    for attempt in range(max_retries):
        try:
            return fn(*args, **kwargs)
        except NetworkError as exc:
            last_exc = exc
            if attempt == max_retries - 1:
                raise
            wait = backoff_sec * (2 ** attempt)
            logger.debug("Network retry %d/%d after %.1fs: %s", attempt + 1, max_retries, wait, exc)
            time.sleep(wait)
    raise last_exc  # unreachable, max_retries >= 1


class HttpTransport:
    """Thin httpx.Client wrapper bound to a single host."""

    def __init__(
        self,
        host: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = _MAX_RETRIES,
        backoff_sec: float = _RETRY_BACKOFF_SEC,
        client: httpx.Client | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.max_retries = max_retries
        self.backoff_sec = backoff_sec
        self._http = client or httpx.Client(timeout=timeout)

    def request(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        """Single attempt. Returns the decoded JSON response."""
        url = f"{self.host}{path}"
        content = encode_body(body)
        req_headers = {"Accept": "application/json"}
        if content is not None:
            req_headers["Content-Type"] = "application/json"
        req_headers.update(headers or {})

        try:
            resp = self._http.request(method, url, headers=req_headers, content=content)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path}: {type(e).__name__}: {e}") from e

        status = resp.status_code
        if status == 429 or status >= 500:
            raise NetworkError(f"{method} {path}: HTTP {status}")
        if status >= 400:
            raise RemoteRejectionError(
                f"{method} {path}: HTTP {status}: {_error_detail(resp)}",
                status_code=status,
            )

        try:
            return resp.json()
        except ValueError:
            raise RemoteRejectionError(
                f"{method} {path}: malformed JSON response", status_code=status,
            ) from None

    def request_with_retry(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        return call_with_backoff(
            self.request, method, path, headers=headers, body=body,
            max_retries=self.max_retries, backoff_sec=self.backoff_sec,
        )

    def close(self) -> None:
        self._http.close()


def _error_detail(resp: httpx.Response) -> str:
    """Best-effort error message from a rejection body."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or data)[:200]
    return str(data)[:200]
