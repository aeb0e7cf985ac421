"""
Credential store. Persists derived API credentials to SQLite, one row per
owner address. Each save is atomic (single SQLite transaction); the store
never contacts the network and applies no expiry.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from client.auth import DerivedCredential

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS api_credentials (
    address TEXT PRIMARY KEY,
    record_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

DEFAULT_DB_PATH = Path(".credentials.db")


@dataclass(frozen=True)
class CachedCredentialRecord:
    """On-disk projection of a DerivedCredential."""
    address: str
    api_key: str
    secret: str
    passphrase: str
    generated_at: datetime
    host: str = ""

    @classmethod
    def from_credential(cls, credential: DerivedCredential, host: str = "") -> CachedCredentialRecord:
        return cls(
            address=credential.owner_address,
            api_key=credential.api_key,
            secret=credential.api_secret,
            passphrase=credential.api_passphrase,
            generated_at=credential.derived_at,
            host=host,
        )

    def to_credential(self) -> DerivedCredential:
        return DerivedCredential(
            api_key=self.api_key,
            api_secret=self.secret,
            api_passphrase=self.passphrase,
            owner_address=self.address,
            derived_at=self.generated_at,
        )

    def to_dict(self) -> dict:
        data = {
            "address": self.address,
            "apiKey": self.api_key,
            "secret": self.secret,
            "passphrase": self.passphrase,
            "generatedAt": self.generated_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        if self.host:
            data["host"] = self.host
        return data

    @classmethod
    def from_dict(cls, data: dict) -> CachedCredentialRecord:
        generated_at = datetime.fromisoformat(data["generatedAt"].replace("Z", "+00:00"))
        if generated_at.tzinfo is None:
            generated_at = generated_at.replace(tzinfo=timezone.utc)
        return cls(
            address=data["address"],
            api_key=data["apiKey"],
            secret=data["secret"],
            passphrase=data["passphrase"],
            generated_at=generated_at,
            host=data.get("host", ""),
        )

    def __repr__(self) -> str:
        return (
            f"CachedCredentialRecord(address={self.address!r}, api_key={self.api_key[:8]!r}..., "
            f"generated_at={self.generated_at.isoformat()!r})"
        )


class CredentialStore:
    """
    SQLite-backed credential cache keyed by wallet address (case-insensitive).

    Usage:
        store = CredentialStore(db_path=".credentials.db")
        store.save(record)
        record = store.load(wallet.address)  # None if absent
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH) -> None:
        self._db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()
        if self._db_path != ":memory:":
            try:
                os.chmod(self._db_path, 0o600)
            except OSError as e:
                logger.debug("Could not restrict permissions on %s: %s", self._db_path, e)

    def save(self, record: CachedCredentialRecord) -> None:
        """Insert or overwrite the record for record.address. Atomic."""
        record_json = json.dumps(record.to_dict())
        now = datetime.now(timezone.utc).isoformat()

        with self._lock:
            conn = self._get_conn()
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO api_credentials (address, record_json, updated_at) "
                    "VALUES (?, ?, ?)",
                    (record.address.lower(), record_json, now),
                )

        logger.debug("Credentials saved for %s", record.address)

    def load(self, address: str) -> CachedCredentialRecord | None:
        """Most recently saved record for *address*, or None. Corrupt rows count as absent."""
        with self._lock:
            row = self._get_conn().execute(
                "SELECT record_json FROM api_credentials WHERE address = ?",
                (address.lower(),),
            ).fetchone()

        if row is None:
            return None

        try:
            return CachedCredentialRecord.from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Corrupt credential record for %s, ignoring: %s", address, e)
            return None

    def exists(self, address: str) -> bool:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT 1 FROM api_credentials WHERE address = ?",
                (address.lower(),),
            ).fetchone()
        return row is not None

    def list_addresses(self) -> list[str]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT address FROM api_credentials ORDER BY address"
            ).fetchall()
        return [r[0] for r in rows]

    def export_json(self, address: str, path: str | Path) -> Path | None:
        """
        Write the record for *address* as a standalone JSON file.
        Temp file + rename so readers never see a partial file.
        """
        record = self.load(address)
        if record is None:
            return None

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".cred-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Credentials exported to %s", target)
        return target

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
