"""
Wallet identity: wraps a private key, exposes only the address and a
message-signing capability. The key itself has no accessor.
"""

from __future__ import annotations

import logging
import re

from eth_account import Account
from eth_account.messages import encode_defunct
from pydantic import SecretStr

from client.errors import InvalidKeyError, MissingKeyError
from config import Config, PLACEHOLDER_PRIVATE_KEY
from monitor.logger import register_secrets

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class WalletIdentity:
    """
    EOA wallet built from a hex private key.

    Usage:
        with WalletIdentity(cfg.private_key) as wallet:
            sig = wallet.sign(b"hello")
    """

    __slots__ = ("_account", "_address")

    def __init__(self, private_key: SecretStr | str | None) -> None:
        if isinstance(private_key, SecretStr):
            private_key = private_key.get_secret_value()
        key = (private_key or "").strip()
        if not key or key == PLACEHOLDER_PRIVATE_KEY:
            raise MissingKeyError("PRIVATE_KEY missing")
        if not _KEY_RE.match(key):
            raise InvalidKeyError("Private key must be 32 bytes of hex (optionally 0x-prefixed)")
        try:
            account = Account.from_key(key)
        except Exception as e:
            # Out-of-range scalars (0, >= curve order) fail here.
            raise InvalidKeyError(f"Private key rejected: {type(e).__name__}") from None
        self._account = account
        self._address: str = account.address
        register_secrets(key)

    @classmethod
    def from_config(cls, cfg: Config) -> WalletIdentity:
        return cls(cfg.private_key)

    @property
    def address(self) -> str:
        """EIP-55 checksummed address."""
        return self._address

    def sign(self, message: bytes | str) -> str:
        """EIP-191 personal-sign. Returns 0x-prefixed 65-byte hex signature."""
        if self._account is None:
            raise InvalidKeyError("Wallet key has been released")
        if isinstance(message, str):
            message = message.encode("utf-8")
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return "0x" + bytes(signed.signature).hex()

    def close(self) -> None:
        """Drop the key reference. Subsequent sign() calls fail."""
        if self._account is not None:
            logger.debug("Releasing wallet key for %s", self._address)
        self._account = None

    @property
    def closed(self) -> bool:
        return self._account is None

    def __enter__(self) -> WalletIdentity:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"WalletIdentity(address={self._address!r})"
