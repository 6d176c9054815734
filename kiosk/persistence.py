"""SQLite persistence for settings, the offline transaction queue, and the invoice counter."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from kiosk.config import DB_PATH, INVOICE_ID_FLOOR
from kiosk.errors import PersistenceError
from kiosk.transactions import TransactionRecord

logger = logging.getLogger(__name__)

_INVOICE_COUNTER = "last_invoice_id"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class KioskStore:
    """Durable key/value settings, FIFO transaction queue, and invoice counter."""

    def __init__(self, db_path: str | Path = DB_PATH) -> None:
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"Cannot open kiosk store at {self.db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"Kiosk store operation failed: {exc}") from exc
        finally:
            conn.close()

    def bootstrap_schema(self) -> None:
        """Create persistence schema if it does not already exist."""
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS pending_transactions (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    invoice_id INTEGER NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    payload TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS counters (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                );
                """
            )

    # Settings

    def load_setting(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return json.loads(row[0])

    def persist_setting(self, key: str, value: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, json.dumps(value), _utc_now_iso()),
            )

    # Invoice counter

    def next_invoice_id(self) -> int:
        """Atomically increment and return the durable invoice counter."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO counters (name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
                """,
                (_INVOICE_COUNTER, INVOICE_ID_FLOOR + 1),
            )
            row = conn.execute("SELECT value FROM counters WHERE name = ?", (_INVOICE_COUNTER,)).fetchone()
        return int(row[0])

    # Offline queue

    def enqueue_transaction(self, record: TransactionRecord) -> None:
        payload = json.dumps(record.to_payload())
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO pending_transactions (invoice_id, created_at, payload) VALUES (?, ?, ?)",
                (record.invoice_id, _utc_now_iso(), payload),
            )
        logger.debug("transaction_queued invoice_id=%s", record.invoice_id)

    def list_queued_transactions(self) -> list[TransactionRecord]:
        """Queued records, oldest first. Rows that no longer decode are logged and skipped."""
        with self._connect() as conn:
            rows = conn.execute("SELECT invoice_id, payload FROM pending_transactions ORDER BY seq").fetchall()
        records = []
        for invoice_id, payload in rows:
            try:
                records.append(TransactionRecord.from_payload(json.loads(payload)))
            except (ValueError, KeyError, TypeError, AttributeError):
                logger.exception("transaction_decode_failed invoice_id=%s", invoice_id)
        return records

    def queued_count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM pending_transactions").fetchone()
        return int(row[0])

    def is_transaction_queued(self, invoice_id: int) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM pending_transactions WHERE invoice_id = ?", (invoice_id,)).fetchone()
        return row is not None

    def dequeue_transaction(self, invoice_id: int) -> bool:
        """Remove the queued record with ``invoice_id``; False if it was not queued."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM pending_transactions WHERE invoice_id = ?", (invoice_id,))
        removed = cur.rowcount > 0
        logger.debug("transaction_dequeued invoice_id=%s removed=%s", invoice_id, removed)
        return removed
