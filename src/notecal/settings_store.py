from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from .models import ClientCredentials, CredentialSet

CLIENT_ID = "client_id"
CLIENT_SECRET = "client_secret"
ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"
TOKEN_EXPIRY = "token_expiry"

_CREDENTIAL_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, TOKEN_EXPIRY)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _encode_expiry(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _decode_expiry(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SettingsStore:
    """Key-value settings persisted in sqlite.

    Token writes come from both the interactive flow and background refreshes, so
    every write goes through one lock and one transaction.
    """

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._migrate()

    def close(self) -> None:
        self._conn.close()

    def _migrate(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                )
                """
            )

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return None if row is None else str(row["value"])

    def _write(self, values: dict[str, str | None]) -> None:
        now = _utc_now().isoformat()
        with self._lock, self._conn:
            for key, value in values.items():
                if value is None:
                    self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
                    continue
                self._conn.execute(
                    """
                    INSERT INTO settings(key, value, updated_at) VALUES(?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value, now),
                )

    def client_credentials(self) -> ClientCredentials:
        return ClientCredentials(
            client_id=self.get(CLIENT_ID) or "",
            client_secret=self.get(CLIENT_SECRET) or "",
        )

    def set_client_credentials(self, client_id: str, client_secret: str) -> None:
        self._write({CLIENT_ID: client_id.strip(), CLIENT_SECRET: client_secret.strip()})

    def credential_set(self) -> CredentialSet | None:
        access_token = self.get(ACCESS_TOKEN)
        if not access_token:
            return None
        return CredentialSet(
            access_token=access_token,
            refresh_token=self.get(REFRESH_TOKEN),
            expiry=_decode_expiry(self.get(TOKEN_EXPIRY)),
        )

    def replace_credentials(self, credential_set: CredentialSet) -> None:
        self._write(
            {
                ACCESS_TOKEN: credential_set.access_token,
                REFRESH_TOKEN: credential_set.refresh_token,
                TOKEN_EXPIRY: _encode_expiry(credential_set.expiry),
            }
        )

    def merge_credentials(self, update: CredentialSet) -> None:
        values: dict[str, str | None] = {
            ACCESS_TOKEN: update.access_token,
            TOKEN_EXPIRY: _encode_expiry(update.expiry),
        }
        # A refresh without a reissued refresh token keeps the stored one.
        if update.refresh_token:
            values[REFRESH_TOKEN] = update.refresh_token
        self._write(values)

    def clear_credentials(self) -> None:
        self._write({key: None for key in _CREDENTIAL_KEYS})
