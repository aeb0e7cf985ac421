"""
Authentication: L1 wallet challenge and API credential derivation.

Flow (create-or-derive):
  1. Build the canonical auth message for the venue's fixed nonce
  2. Sign it with the wallet (EIP-191)
  3. POST /auth/api-key         -> new credentials (first use of this wallet)
     GET  /auth/derive-api-key  -> previously issued credentials
Same wallet + same host + same nonce always ends with the same triple.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from client.errors import RemoteRejectionError
from client.http import HttpTransport
from client.wallet import WalletIdentity
from config import Config
from monitor.logger import redact

logger = logging.getLogger(__name__)

CREATE_API_KEY = "/auth/api-key"
DERIVE_API_KEY = "/auth/derive-api-key"

# Venue answers these when the wallet already holds a key set.
_ALREADY_ISSUED_STATUS = {400, 409}


class CredentialOrigin(Enum):
    ISSUED = "issued"
    RECOVERED = "recovered"


@dataclass(frozen=True)
class DerivedCredential:
    """API credential triple bound to the wallet that derived it."""
    api_key: str
    api_secret: str = field(repr=False)
    api_passphrase: str = field(repr=False)
    owner_address: str
    derived_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def same_triple(self, other: DerivedCredential) -> bool:
        return (
            self.api_key == other.api_key
            and self.api_secret == other.api_secret
            and self.api_passphrase == other.api_passphrase
        )


@dataclass(frozen=True)
class DerivationResult:
    credential: DerivedCredential
    origin: CredentialOrigin


def build_auth_message(nonce: int | str, service: str = "Polymarket CLOB") -> str:
    """Canonical L1 challenge text."""
    return f"Sign this message to authenticate with {service} API.\n\nNonce: {nonce}"


def build_l1_headers(
    wallet: WalletIdentity,
    nonce: int = 0,
    service: str = "Polymarket CLOB",
    timestamp: int | None = None,
) -> dict[str, str]:
    """Wallet-signed headers proving ownership of *wallet*."""
    if timestamp is None:
        timestamp = int(time.time())
    signature = wallet.sign(build_auth_message(nonce, service))
    return {
        "POLY_ADDRESS": wallet.address,
        "POLY_SIGNATURE": signature,
        "POLY_TIMESTAMP": str(timestamp),
        "POLY_NONCE": str(nonce),
    }


def _parse_credential(data: object, owner_address: str) -> DerivedCredential:
    """Validate a {apiKey|key, secret, passphrase} body."""
    if not isinstance(data, dict):
        raise RemoteRejectionError(f"Unexpected credential response type: {type(data).__name__}")
    api_key = data.get("apiKey") or data.get("key")
    secret = data.get("secret")
    passphrase = data.get("passphrase")
    if not (api_key and secret and passphrase):
        missing = [
            name for name, value in (("apiKey", api_key), ("secret", secret), ("passphrase", passphrase))
            if not value
        ]
        raise RemoteRejectionError(f"Credential response missing fields: {', '.join(missing)}")
    return DerivedCredential(
        api_key=str(api_key),
        api_secret=str(secret),
        api_passphrase=str(passphrase),
        owner_address=owner_address,
    )


class CredentialDerivationClient:
    """
    Performs the L1 challenge/response that yields API credentials.

    Does not persist anything; callers decide whether to cache the result.
    """

    def __init__(
        self,
        wallet: WalletIdentity,
        transport: HttpTransport,
        nonce: int = 0,
        service: str = "Polymarket CLOB",
    ) -> None:
        self._wallet = wallet
        self._transport = transport
        self._nonce = nonce
        self._service = service

    @classmethod
    def from_config(cls, cfg: Config, wallet: WalletIdentity, transport: HttpTransport) -> CredentialDerivationClient:
        return cls(wallet, transport, nonce=cfg.auth_nonce, service=cfg.service_name)

    @property
    def host(self) -> str:
        return self._transport.host

    def create_or_derive(self) -> DerivationResult:
        """
        Single idempotent operation: create credentials if this wallet has none,
        otherwise recover the existing ones. NetworkError after retries,
        RemoteRejectionError when the venue refuses the wallet or signature.
        """
        headers = build_l1_headers(self._wallet, self._nonce, self._service)
        logger.debug("create-or-derive for %s (nonce=%d) at %s", self._wallet.address, self._nonce, self.host)

        try:
            data = self._transport.request_with_retry("POST", CREATE_API_KEY, headers=headers)
            origin = CredentialOrigin.ISSUED
        except RemoteRejectionError as e:
            if e.status_code not in _ALREADY_ISSUED_STATUS:
                raise
            logger.debug("Key set already issued (HTTP %s), deriving", e.status_code)
            data = self._transport.request_with_retry("GET", DERIVE_API_KEY, headers=headers)
            origin = CredentialOrigin.RECOVERED

        credential = _parse_credential(data, self._wallet.address)
        logger.info(
            "API credentials %s for %s (key %s)",
            origin.value, self._wallet.address, redact(credential.api_key),
        )
        return DerivationResult(credential=credential, origin=origin)

    def derive(self) -> DerivedCredential:
        return self.create_or_derive().credential
