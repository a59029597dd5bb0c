"""SQLite store for account tokens and sync results."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path

from subscription_scanner.constants import DB_PATH
from subscription_scanner.models import OAuthTokenState, SubscriptionCandidate, SyncResult, SyncState

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS tokens (
    account_id TEXT PRIMARY KEY,
    access_token TEXT,
    refresh_token TEXT,
    expires_at_ms INTEGER
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT,
    state TEXT,
    total_found INTEGER,
    selected INTEGER,
    fetched INTEGER,
    skipped_empty INTEGER,
    warnings_json TEXT,
    error TEXT,
    sync_date TEXT
);

CREATE TABLE IF NOT EXISTS candidates (
    sync_id INTEGER,
    position INTEGER,
    message_id TEXT,
    service_name TEXT,
    amount REAL,
    date TEXT,
    confidence REAL,
    FOREIGN KEY (sync_id) REFERENCES sync_runs(id)
);
"""


class ScannerStore:
    """Persistent SQLite store shared by the token manager and the CLI."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(_CREATE_TABLES_SQL)

    # --- tokens ---

    def load_tokens(self, account_id: str) -> OAuthTokenState | None:
        """Return the persisted token state for an account, if any."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM tokens WHERE account_id = ?", (account_id,)
            ).fetchone()
        if row is None:
            return None
        return OAuthTokenState(
            access_token=row["access_token"] or "",
            refresh_token=row["refresh_token"],
            expires_at_ms=row["expires_at_ms"] or 0,
        )

    def save_tokens(self, account_id: str, state: OAuthTokenState) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO tokens (account_id, access_token, refresh_token, expires_at_ms) "
                "VALUES (?, ?, ?, ?)",
                (account_id, state.access_token, state.refresh_token, state.expires_at_ms),
            )

    def delete_tokens(self, account_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM tokens WHERE account_id = ?", (account_id,))

    def list_accounts(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute("SELECT account_id FROM tokens ORDER BY account_id").fetchall()
        return [r["account_id"] for r in rows]

    # --- sync results ---

    def save_sync(self, result: SyncResult) -> None:
        """Save a sync result and its ranked candidates in a single transaction."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO sync_runs (account_id, state, total_found, selected, fetched, "
                "skipped_empty, warnings_json, error, sync_date) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    result.account_id,
                    result.state.value,
                    result.total_found,
                    result.selected,
                    result.fetched,
                    result.skipped_empty,
                    json.dumps(result.warnings),
                    result.error,
                    result.sync_date,
                ),
            )
            sync_id = cursor.lastrowid

            for position, candidate in enumerate(result.candidates):
                self._conn.execute(
                    "INSERT INTO candidates (sync_id, position, message_id, service_name, "
                    "amount, date, confidence) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        sync_id,
                        position,
                        candidate.message_id,
                        candidate.service_name,
                        candidate.amount,
                        candidate.date,
                        candidate.confidence,
                    ),
                )

    def load_latest_sync(self, account_id: str | None = None) -> SyncResult | None:
        """Load the most recent sync, optionally for one account."""
        with self._lock:
            if account_id is not None:
                row = self._conn.execute(
                    "SELECT * FROM sync_runs WHERE account_id = ? ORDER BY id DESC LIMIT 1",
                    (account_id,),
                ).fetchone()
            else:
                row = self._conn.execute(
                    "SELECT * FROM sync_runs ORDER BY id DESC LIMIT 1"
                ).fetchone()

            if row is None:
                return None

            candidate_rows = self._conn.execute(
                "SELECT * FROM candidates WHERE sync_id = ? ORDER BY position",
                (row["id"],),
            ).fetchall()

        candidates = [
            SubscriptionCandidate(
                message_id=c["message_id"],
                service_name=c["service_name"],
                amount=c["amount"],
                date=c["date"],
                confidence=c["confidence"],
            )
            for c in candidate_rows
        ]

        return SyncResult(
            account_id=row["account_id"],
            state=SyncState(row["state"]),
            candidates=candidates,
            total_found=row["total_found"],
            selected=row["selected"],
            fetched=row["fetched"],
            skipped_empty=row["skipped_empty"],
            warnings=json.loads(row["warnings_json"] or "[]"),
            error=row["error"],
            sync_date=row["sync_date"],
        )

    def clear(self) -> None:
        """Drop and recreate the sync tables. Tokens are kept."""
        with self._lock:
            self._conn.executescript(
                "DROP TABLE IF EXISTS candidates;"
                "DROP TABLE IF EXISTS sync_runs;"
            )
            self._create_tables()

    def get_info(self) -> dict:
        """Return store statistics."""
        file_size = self.db_path.stat().st_size if self.db_path.exists() else 0

        with self._lock:
            last_sync_row = self._conn.execute(
                "SELECT sync_date FROM sync_runs ORDER BY id DESC LIMIT 1"
            ).fetchone()
            sync_count = self._conn.execute("SELECT COUNT(*) AS c FROM sync_runs").fetchone()["c"]
            candidate_count = self._conn.execute("SELECT COUNT(*) AS c FROM candidates").fetchone()["c"]
            account_count = self._conn.execute("SELECT COUNT(*) AS c FROM tokens").fetchone()["c"]

        return {
            "db_file_size": file_size,
            "last_sync_date": last_sync_row["sync_date"] if last_sync_row else None,
            "sync_count": sync_count,
            "candidate_count": candidate_count,
            "account_count": account_count,
        }

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- context manager ---

    def __enter__(self) -> ScannerStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
