"""
Console reporting for the credential generator.

Pure formatting functions that emit log lines. Secrets are shown redacted;
the only path that prints them in full is emit_env_lines(), which writes to
stdout (never to the log handlers).
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from client.allowance import AllowanceState
from client.auth import CredentialOrigin, DerivationResult, DerivedCredential
from client.session import ServerTime
from config import Config
from monitor.logger import redact
from state.credentials import CachedCredentialRecord

logger = logging.getLogger(__name__)

_WIDTH = 70
_RULE = "=" * _WIDTH


def _section(title: str) -> None:
    logger.info(_RULE)
    logger.info(title)
    logger.info(_RULE)


def print_banner() -> None:
    _section("Polymarket CLOB Credentials Generator")


def print_wallet(address: str, cfg: Config) -> None:
    logger.info("  %-16s %s", "Wallet address:", address)
    logger.info("  %-16s %d", "Chain ID:", cfg.chain_id)
    logger.info("  %-16s %s", "CLOB host:", cfg.clob_host)


def print_existing_credentials(record: CachedCredentialRecord) -> None:
    """Summary of a cached record, as found before derivation."""
    logger.info("Found existing credentials:")
    logger.info("  %-12s %s", "Address:", record.address)
    logger.info("  %-12s %s", "API Key:", redact(record.api_key, keep=20))
    logger.info("  %-12s %s", "Generated:", record.generated_at.isoformat())


def print_credentials(result: DerivationResult) -> None:
    cred = result.credential
    verb = "Generated" if result.origin is CredentialOrigin.ISSUED else "Recovered"
    _section(f"API Credentials {verb} Successfully")
    logger.info("  %-16s %s", "API Key:", redact(cred.api_key))
    logger.info("  %-16s %s", "API Secret:", redact(cred.api_secret, keep=4))
    logger.info("  %-16s %s", "API Passphrase:", redact(cred.api_passphrase, keep=4))


def print_verification(server_time: ServerTime) -> None:
    logger.info("Authentication successful! Server time: %s", server_time.isoformat())


def print_allowance(state: AllowanceState) -> None:
    if state.indeterminate:
        logger.warning(
            "  Allowance: unknown (RPC not configured or unreachable), need %s USDC",
            state.required_minimum,
        )
    else:
        logger.info(
            "  Allowance: %s USDC (need %s, %s)",
            state.current_allowance, state.required_minimum,
            "ok" if state.sufficient else f"short {state.shortfall}",
        )


def print_usage(cfg: Config, saved_to: str | None) -> None:
    _section("How to Use These Credentials")
    logger.info("1. Environment variables (run with --reveal to print values):")
    logger.info("   CLOB_API_KEY=...  CLOB_SECRET=...  CLOB_PASS_PHRASE=...")
    logger.info("2. Cached store: %s", cfg.credentials_db)
    if saved_to:
        logger.info("3. JSON export: %s (keep it out of version control)", saved_to)
    logger.info("Credentials are wallet-specific and deterministic:")
    logger.info("  running this again derives the same key set.")
    logger.info(_RULE)


def print_failure_hints() -> None:
    logger.info("Common issues:")
    logger.info("  - Make sure your private key is correct")
    logger.info("  - Check your internet connection")
    logger.info("  - Ensure the wallet has been used on Polymarket before")


def print_missing_key_help() -> None:
    logger.error("No private key found!")
    logger.info("Add your private key to the .env file:")
    logger.info("  PRIVATE_KEY=0xYourPrivateKeyHere")
    logger.info("Where to find it:")
    logger.info("  - MetaMask: Account Details > Export Private Key")
    logger.info("  - Magic/Email wallet: https://reveal.magic.link/polymarket")


def emit_env_lines(credential: DerivedCredential, stream: TextIO | None = None) -> None:
    """Full credential triple as .env lines. Goes to stdout, bypassing logging."""
    out = stream or sys.stdout
    out.write(f"CLOB_API_KEY={credential.api_key}\n")
    out.write(f"CLOB_SECRET={credential.api_secret}\n")
    out.write(f"CLOB_PASS_PHRASE={credential.api_passphrase}\n")
    out.flush()
