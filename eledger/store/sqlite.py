"""SQLite-backed store: one row per unit, trace kept as a JSON column."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path

from ..errors import StoreUnavailableError
from ..ledger.logistics import LogisticsUnit
from ..ledger.models import TrackedUnit
from ..ledger.verification import VerificationRequest
from .base import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_DB_FILENAME = "ledger.db"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS units (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        unit_id TEXT NOT NULL UNIQUE,
        product_code TEXT NOT NULL,
        lot_number TEXT NOT NULL,
        identity_digest TEXT NOT NULL,
        status TEXT NOT NULL,
        current_owner_id TEXT NOT NULL,
        record TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_units_code_lot ON units(product_code, lot_number)",
    "CREATE INDEX IF NOT EXISTS idx_units_digest ON units(identity_digest)",
    """
    CREATE TABLE IF NOT EXISTS logistics_units (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        sscc TEXT NOT NULL UNIQUE,
        record TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS verification_requests (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        request_id TEXT NOT NULL UNIQUE,
        record TEXT NOT NULL
    )
    """,
)


class SqliteStore(LedgerStore):
    """
    Durable single-file store.

    Rows are upserted in place so `seq` keeps the original creation order.
    Use ":memory:" for a throwaway database.
    """

    name = "sqlite"

    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            with self._conn:
                for statement in _SCHEMA:
                    self._conn.execute(statement)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot open sqlite store {self.db_path}: {exc}") from exc
        logger.debug("sqlite store ready at %s", self.db_path)

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"sqlite read failed: {exc}") from exc

    def _write(self, sql: str, params: tuple) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"sqlite write failed: {exc}") from exc

    # Units

    def get_unit(self, unit_id: str) -> TrackedUnit | None:
        rows = self._query("SELECT record FROM units WHERE unit_id = ?", (unit_id,))
        return TrackedUnit.from_dict(json.loads(rows[0][0])) if rows else None

    def list_units(self) -> list[TrackedUnit]:
        rows = self._query("SELECT record FROM units ORDER BY seq")
        return [TrackedUnit.from_dict(json.loads(row[0])) for row in rows]

    def put_unit(self, unit: TrackedUnit) -> None:
        self._write(
            """
            INSERT INTO units
                (unit_id, product_code, lot_number, identity_digest, status, current_owner_id, record)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(unit_id) DO UPDATE SET
                status = excluded.status,
                current_owner_id = excluded.current_owner_id,
                record = excluded.record
            """,
            (
                unit.unit_id,
                unit.product_code,
                unit.lot_number,
                unit.identity_digest,
                unit.status.value,
                unit.current_owner_id,
                json.dumps(unit.to_dict()),
            ),
        )

    # Logistics units

    def get_logistics_unit(self, sscc: str) -> LogisticsUnit | None:
        rows = self._query("SELECT record FROM logistics_units WHERE sscc = ?", (sscc,))
        return LogisticsUnit.from_dict(json.loads(rows[0][0])) if rows else None

    def list_logistics_units(self) -> list[LogisticsUnit]:
        rows = self._query("SELECT record FROM logistics_units ORDER BY seq")
        return [LogisticsUnit.from_dict(json.loads(row[0])) for row in rows]

    def put_logistics_unit(self, lu: LogisticsUnit) -> None:
        self._write(
            """
            INSERT INTO logistics_units (sscc, record) VALUES (?, ?)
            ON CONFLICT(sscc) DO UPDATE SET record = excluded.record
            """,
            (lu.sscc, json.dumps(lu.to_dict())),
        )

    # Verification requests

    def put_verification(self, request: VerificationRequest) -> None:
        self._write(
            "INSERT INTO verification_requests (request_id, record) VALUES (?, ?)",
            (request.request_id, json.dumps(request.to_dict())),
        )

    def list_verifications(self) -> list[VerificationRequest]:
        rows = self._query("SELECT record FROM verification_requests ORDER BY seq")
        return [VerificationRequest.from_dict(json.loads(row[0])) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = ["SqliteStore", "DEFAULT_DB_FILENAME"]
