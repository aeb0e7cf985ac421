"""
Error taxonomy for wallet, credential and session failures.

Fatal:      MissingKeyError, InvalidKeyError, RemoteRejectionError,
            AuthenticationVerificationError
Retryable:  NetworkError
Advisory:   InsufficientAllowanceError (blocks trading, not the pipeline)
"""

from __future__ import annotations

from typing import Any


class CredentialError(Exception):
    """Base class for everything raised by the credential pipeline."""
    pass


class MissingKeyError(CredentialError):
    """No private key was supplied via argument or configuration."""
    pass


class InvalidKeyError(CredentialError):
    """Key material is malformed, or the key has already been released."""
    pass


class OwnerMismatchError(CredentialError):
    """A credential was paired with a wallet other than the one that derived it."""
    pass


class NetworkError(CredentialError):
    """Transport-level failure (timeout, connection reset, 429, 5xx). Safe to retry."""
    pass


class RemoteRejectionError(CredentialError):
    """The venue refused the request. Retrying with the same inputs will not help."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationVerificationError(CredentialError):
    """Credentials were issued but the venue does not currently honor them."""
    pass


class InsufficientAllowanceError(CredentialError):
    """On-chain allowance is below the required minimum."""

    def __init__(self, message: str, state: Any = None) -> None:
        super().__init__(message)
        self.state = state
