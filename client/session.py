"""
Authenticated (L2) session: requests signed with the API credential triple.

L2 signing pattern:
  message   = timestamp + METHOD + path [+ body]
  signature = urlsafe_b64(HMAC-SHA256(urlsafe_b64decode(secret), message))
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from client.auth import DerivedCredential
from client.errors import AuthenticationVerificationError, CredentialError, OwnerMismatchError
from client.http import HttpTransport, call_with_backoff, encode_body
from client.wallet import WalletIdentity
from monitor.logger import redact

logger = logging.getLogger(__name__)

SERVER_TIME = "/time"
MS_PER_SEC = 1000
# 9999-12-31T23:59:59Z, the last instant datetime can represent
MAX_SERVER_TIME_SEC = 253402300799


def build_hmac_signature(
    secret: str, timestamp: int | str, method: str, path: str, body: str | None = None,
) -> str:
    """HMAC-SHA256 over the request line, keyed by the base64 API secret."""
    key = base64.urlsafe_b64decode(secret)
    message = f"{timestamp}{method.upper()}{path}"
    if body:
        message += body
    digest = hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8")


def normalize_server_time(raw_seconds: int) -> int:
    """Venue reports epoch seconds; the rest of the system uses epoch milliseconds."""
    return int(raw_seconds) * MS_PER_SEC


@dataclass(frozen=True)
class ServerTime:
    raw_seconds: int
    epoch_ms: int

    @property
    def as_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.epoch_ms / MS_PER_SEC, tz=timezone.utc)

    def isoformat(self) -> str:
        return self.as_datetime.strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_server_time(data: Any) -> int:
    """Accepts a bare integer body or {"serverTime": int}."""
    if isinstance(data, dict):
        data = data.get("serverTime")
    # bool is an int subclass; reject it explicitly
    if isinstance(data, bool) or not isinstance(data, (int, str)):
        raise ValueError(f"Unexpected server time payload: {data!r}")
    seconds = int(data)
    if seconds <= 0:
        raise ValueError(f"Non-positive server time: {seconds}")
    if seconds > MAX_SERVER_TIME_SEC:
        raise ValueError(f"Server time out of range (not epoch seconds?): {seconds}")
    return seconds


class AuthenticatedSession:
    """
    Wallet + derived credential bound to one venue host.

    Usage:
        session = AuthenticatedSession(wallet, credential, transport)
        server_time = session.verify()
    """

    def __init__(
        self,
        wallet: WalletIdentity,
        credential: DerivedCredential,
        transport: HttpTransport,
    ) -> None:
        if credential.owner_address.lower() != wallet.address.lower():
            raise OwnerMismatchError(
                f"Credential belongs to {credential.owner_address}, not {wallet.address}"
            )
        self._wallet = wallet
        self._credential = credential
        self._transport = transport

    @property
    def address(self) -> str:
        return self._wallet.address

    @property
    def api_key(self) -> str:
        return self._credential.api_key

    def l2_headers(
        self,
        method: str,
        path: str,
        body: Any = None,
        timestamp: int | None = None,
    ) -> dict[str, str]:
        if timestamp is None:
            timestamp = int(time.time())
        signature = build_hmac_signature(
            self._credential.api_secret, timestamp, method, path, encode_body(body),
        )
        return {
            "POLY_ADDRESS": self._wallet.address,
            "POLY_SIGNATURE": signature,
            "POLY_TIMESTAMP": str(timestamp),
            "POLY_API_KEY": self._credential.api_key,
            "POLY_PASSPHRASE": self._credential.api_passphrase,
        }

    def request(self, method: str, path: str, body: Any = None) -> Any:
        """Authenticated request with retry on transport failures."""
        # Headers are re-signed per attempt so the timestamp stays fresh.
        def _attempt() -> Any:
            headers = self.l2_headers(method, path, body)
            return self._transport.request(method, path, headers=headers, body=body)

        return call_with_backoff(
            _attempt,
            max_retries=self._transport.max_retries,
            backoff_sec=self._transport.backoff_sec,
        )

    def get_server_time(self) -> int:
        """Raw epoch seconds as reported by the venue."""
        return _parse_server_time(self.request("GET", SERVER_TIME))

    def verify(self) -> ServerTime:
        """
        Liveness handshake. Any failure to obtain or parse the server time
        means the credentials are not currently honored.
        """
        try:
            raw = self.get_server_time()
            server_time = ServerTime(raw_seconds=raw, epoch_ms=normalize_server_time(raw))
            stamp = server_time.isoformat()
        except (CredentialError, ValueError, OverflowError, OSError) as e:
            raise AuthenticationVerificationError(
                f"Server time handshake failed for key {redact(self._credential.api_key)}: {e}"
            ) from e

        logger.info("Authentication verified. Server time: %s", stamp)
        return server_time
