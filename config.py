"""
Configuration loaded from environment variables. Built once at the process
boundary and passed explicitly to every component.
"""

from pydantic_settings import BaseSettings
from pydantic import Field, SecretStr

# Placeholder shipped in .env templates; treated as "no key".
PLACEHOLDER_PRIVATE_KEY = "your_private_key_here"


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # Wallet
    # Unwrapped only by WalletIdentity
    private_key: SecretStr = Field(default=SecretStr(""), description="Polygon wallet private key (hex)")

    # API endpoints
    clob_host: str = "https://clob.polymarket.com"
    chain_id: int = 137  # Polygon mainnet
    service_name: str = "Polymarket CLOB"
    # Polymarket uses a fixed nonce for L1 auth; changing it yields a different key set.
    auth_nonce: int = Field(default=0, ge=0)

    # Allowance guard. Empty RPC url means "not configured" -> guard fails closed.
    polygon_rpc_url: str = ""
    collateral_token_address: str = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"  # USDC.e
    exchange_address: str = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"  # CTF Exchange
    collateral_decimals: int = Field(default=6, ge=0, le=36)
    min_allowance_usdc: float = Field(default=1000.0, ge=0)

    # Transport
    request_timeout_sec: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_backoff_sec: float = Field(default=1.0, ge=0)

    # Persistence
    credentials_db: str = ".credentials.db"
    credentials_json: str = ".credentials.json"

    log_level: str = "INFO"

    @property
    def has_private_key(self) -> bool:
        key = self.private_key.get_secret_value().strip()
        return bool(key) and key != PLACEHOLDER_PRIVATE_KEY


def load_config() -> Config:
    """Load and validate config from environment."""
    return Config()
