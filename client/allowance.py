"""
Read-only USDC allowance guard for the CTF Exchange.

Queries ERC-20 allowance(owner, spender) over Polygon JSON-RPC. There is no
write path: an insufficient allowance is reported, never fixed here.
Without an RPC endpoint, or on any RPC failure, the guard fails closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from client.errors import CredentialError, InsufficientAllowanceError
from client.http import HttpTransport
from config import Config

logger = logging.getLogger(__name__)

_ALLOWANCE_SELECTOR = function_signature_to_4byte_selector("allowance(address,address)")


class GuardStatus(Enum):
    UNKNOWN = "unknown"
    CHECKED = "checked"


@dataclass(frozen=True)
class AllowanceState:
    current_allowance: Decimal
    required_minimum: Decimal
    indeterminate: bool = False

    @property
    def sufficient(self) -> bool:
        if self.indeterminate:
            return False
        return self.current_allowance >= self.required_minimum

    @property
    def shortfall(self) -> Decimal:
        return max(Decimal(0), self.required_minimum - self.current_allowance)


def _to_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def encode_allowance_call(owner: str, spender: str) -> str:
    """Calldata for allowance(owner, spender)."""
    args = encode(["address", "address"], [to_checksum_address(owner), to_checksum_address(spender)])
    return "0x" + (_ALLOWANCE_SELECTOR + args).hex()


def decode_allowance_result(result: str) -> int:
    """Raw uint256 from an eth_call hex result."""
    if not isinstance(result, str) or not result.startswith("0x"):
        raise ValueError(f"Unexpected eth_call result: {result!r}")
    data = bytes.fromhex(result[2:])
    if len(data) < 32:
        raise ValueError(f"eth_call result too short: {len(data)} bytes")
    (raw,) = decode(["uint256"], data[:32])
    return raw


class AllowanceGuard:
    """
    Gate for trading actions based on on-chain collateral allowance.

    Usage:
        guard = AllowanceGuard.from_config(cfg, wallet.address)
        state = guard.ensure_sufficient(1000)
    """

    def __init__(
        self,
        owner_address: str,
        token_address: str,
        spender_address: str,
        rpc: HttpTransport | None = None,
        decimals: int = 6,
    ) -> None:
        self._owner = owner_address
        self._token = token_address
        self._spender = spender_address
        self._rpc = rpc
        self._scale = Decimal(10) ** decimals
        self.status = GuardStatus.UNKNOWN
        self.last_state: AllowanceState | None = None

    @classmethod
    def from_config(cls, cfg: Config, owner_address: str) -> AllowanceGuard:
        rpc = None
        if cfg.polygon_rpc_url:
            rpc = HttpTransport(
                cfg.polygon_rpc_url,
                timeout=cfg.request_timeout_sec,
                max_retries=cfg.max_retries,
                backoff_sec=cfg.retry_backoff_sec,
            )
        return cls(
            owner_address=owner_address,
            token_address=cfg.collateral_token_address,
            spender_address=cfg.exchange_address,
            rpc=rpc,
            decimals=cfg.collateral_decimals,
        )

    @property
    def configured(self) -> bool:
        return self._rpc is not None

    def query_allowance(self) -> Decimal:
        """Current allowance in token units. Raises on RPC failure."""
        if self._rpc is None:
            raise RuntimeError("Allowance check requires RPC setup (POLYGON_RPC_URL)")
        payload = {
            "jsonrpc": "2.0",
            "method": "eth_call",
            "params": [
                {"to": self._token, "data": encode_allowance_call(self._owner, self._spender)},
                "latest",
            ],
            "id": 1,
        }
        resp = self._rpc.request_with_retry("POST", "", body=payload)
        if not isinstance(resp, dict) or "error" in resp:
            err = resp.get("error") if isinstance(resp, dict) else resp
            raise ValueError(f"RPC error: {err}")
        raw = decode_allowance_result(resp.get("result"))
        return Decimal(raw) / self._scale

    def check(self, required_minimum: Decimal | float | int | str) -> AllowanceState:
        """Compare the current allowance against *required_minimum*. Fails closed."""
        minimum = _to_decimal(required_minimum)
        if self._rpc is None:
            logger.warning("Allowance check requires RPC setup; treating allowance as 0")
            state = AllowanceState(Decimal(0), minimum, indeterminate=True)
        else:
            try:
                current = self.query_allowance()
                state = AllowanceState(current, minimum)
                logger.debug("Allowance for %s: %s USDC (need %s)", self._owner, current, minimum)
            except (CredentialError, ValueError, DecodingError) as e:
                logger.warning("Allowance query failed, treating allowance as 0: %s", e)
                state = AllowanceState(Decimal(0), minimum, indeterminate=True)

        self.status = GuardStatus.CHECKED
        self.last_state = state
        return state

    def ensure_sufficient(self, required_minimum: Decimal | float | int | str) -> AllowanceState:
        """check() plus an advisory warning. Never raises on insufficiency."""
        state = self.check(required_minimum)
        if state.sufficient:
            logger.info("Allowance sufficient (%s >= %s USDC)", state.current_allowance, state.required_minimum)
        else:
            logger.warning(
                "Allowance insufficient. Set to %s USDC via Polymarket UI.", state.required_minimum,
            )
        return state

    def require_sufficient(self, required_minimum: Decimal | float | int | str) -> AllowanceState:
        """check() that blocks the caller's trading action when insufficient."""
        state = self.check(required_minimum)
        if not state.sufficient:
            reason = "unknown" if state.indeterminate else f"{state.current_allowance}"
            raise InsufficientAllowanceError(
                f"Allowance {reason} < required {state.required_minimum} USDC", state=state,
            )
        return state

    def close(self) -> None:
        if self._rpc is not None:
            self._rpc.close()
