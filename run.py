#!/usr/bin/env python3
"""
Polymarket CLOB credential generator -- single pipeline script.

  1. Wallet from PRIVATE_KEY
  2. Create-or-derive API credentials (L1 signature)
  3. Cache credentials (SQLite, optional JSON export)
  4. Verify the L2 session via server time
  5. Check USDC allowance (advisory)

Usage:
  uv run python run.py                   # derive, cache, verify, check allowance
  uv run python run.py --show-cached     # report the cached record and exit
  uv run python run.py --reveal          # also print CLOB_* env lines to stdout
"""

from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from dataclasses import dataclass
from decimal import Decimal

from client.allowance import AllowanceGuard, AllowanceState
from client.auth import CredentialDerivationClient, DerivationResult
from client.errors import (
    AuthenticationVerificationError,
    InvalidKeyError,
    MissingKeyError,
    NetworkError,
    RemoteRejectionError,
)
from client.http import HttpTransport
from client.session import AuthenticatedSession, ServerTime
from client.wallet import WalletIdentity
from config import Config, load_config
from monitor.display import (
    emit_env_lines,
    print_allowance,
    print_banner,
    print_credentials,
    print_existing_credentials,
    print_failure_hints,
    print_missing_key_help,
    print_usage,
    print_verification,
    print_wallet,
)
from monitor.logger import register_secrets, setup_logging
from state.credentials import CachedCredentialRecord, CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisionResult:
    derivation: DerivationResult
    session: AuthenticatedSession
    server_time: ServerTime
    allowance: AllowanceState | None
    exported_to: str | None = None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Polymarket CLOB credential generator")
    parser.add_argument("--show-cached", action="store_true", help="Report the cached credential record and exit")
    parser.add_argument("--no-export", action="store_true", help="Skip writing the JSON credentials file")
    parser.add_argument("--reveal", action="store_true", help="Print full CLOB_* env lines to stdout")
    parser.add_argument("--min-allowance", type=float, default=None, help="Required USDC allowance (default: MIN_ALLOWANCE_USDC)")
    parser.add_argument("--skip-allowance", action="store_true", help="Do not query the on-chain allowance")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file for machine-readable output")
    parser.add_argument("--log-dir", type=str, default=None, help="Directory for the verbose run log")
    return parser.parse_args(argv)


def build_transport(cfg: Config) -> HttpTransport:
    return HttpTransport(
        cfg.clob_host,
        timeout=cfg.request_timeout_sec,
        max_retries=cfg.max_retries,
        backoff_sec=cfg.retry_backoff_sec,
    )


def provision(
    cfg: Config,
    wallet: WalletIdentity,
    store: CredentialStore,
    transport: HttpTransport,
    guard: AllowanceGuard | None = None,
    min_allowance: Decimal | float | None = None,
    export_json: bool = True,
) -> ProvisionResult:
    """
    Derive -> cache -> verify -> allowance. The store is written only after a
    successful derivation, so a failed run leaves any cached record untouched.
    """
    deriver = CredentialDerivationClient.from_config(cfg, wallet, transport)
    derivation = deriver.create_or_derive()
    credential = derivation.credential
    register_secrets(credential.api_secret, credential.api_passphrase)

    store.save(CachedCredentialRecord.from_credential(credential, host=transport.host))
    exported_to = None
    if export_json and cfg.credentials_json:
        path = store.export_json(wallet.address, cfg.credentials_json)
        exported_to = str(path) if path else None

    session = AuthenticatedSession(wallet, credential, transport)
    server_time = session.verify()

    allowance = None
    if guard is not None:
        minimum = cfg.min_allowance_usdc if min_allowance is None else min_allowance
        allowance = guard.ensure_sufficient(minimum)

    return ProvisionResult(
        derivation=derivation,
        session=session,
        server_time=server_time,
        allowance=allowance,
        exported_to=exported_to,
    )


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    cfg = load_config()

    setup_logging(cfg.log_level, json_log_file=args.json_log, log_dir=args.log_dir)
    print_banner()

    try:
        wallet = WalletIdentity.from_config(cfg)
    except MissingKeyError:
        print_missing_key_help()
        sys.exit(1)
    except InvalidKeyError as e:
        logger.error("Invalid private key: %s", e)
        sys.exit(1)
    print_wallet(wallet.address, cfg)

    try:
        store = CredentialStore(db_path=cfg.credentials_db)
        cached = store.load(wallet.address)
    except (sqlite3.Error, OSError) as e:
        logger.error("Credential store %s is unusable: %s", cfg.credentials_db, e)
        wallet.close()
        sys.exit(1)
    if cached is not None:
        print_existing_credentials(cached)

    if args.show_cached:
        store.close()
        wallet.close()
        if cached is None:
            logger.error("No cached credentials for %s", wallet.address)
            sys.exit(1)
        return

    transport = build_transport(cfg)
    guard = None if args.skip_allowance else AllowanceGuard.from_config(cfg, wallet.address)
    exit_code = 0
    try:
        logger.info("Generating API credentials (signing with wallet)...")
        result = provision(
            cfg, wallet, store, transport,
            guard=guard,
            min_allowance=args.min_allowance,
            export_json=not args.no_export,
        )
    except RemoteRejectionError as e:
        logger.error("Credential request rejected: %s", e)
        print_failure_hints()
        exit_code = 1
    except NetworkError as e:
        logger.error("Network failure after retries: %s", e)
        print_failure_hints()
        exit_code = 1
    except AuthenticationVerificationError as e:
        logger.error("Credentials were issued but are not honored by the venue: %s", e)
        exit_code = 1
    except (sqlite3.Error, OSError) as e:
        logger.error("Could not persist credentials: %s", e)
        exit_code = 1
    else:
        print_credentials(result.derivation)
        print_verification(result.server_time)
        if result.allowance is not None:
            print_allowance(result.allowance)
        print_usage(cfg, result.exported_to)
        if args.reveal:
            emit_env_lines(result.derivation.credential)
    finally:
        wallet.close()
        transport.close()
        store.close()
        if guard is not None:
            guard.close()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
