"""JSON-document store on local disk (or in memory)."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from ..errors import StoreUnavailableError
from ..ledger.logistics import LogisticsUnit
from ..ledger.models import TrackedUnit
from ..ledger.verification import VerificationRequest
from .base import LedgerStore

logger = logging.getLogger(__name__)

LEDGER_FILENAME = "ledger.json"
FORMAT_VERSION = 1


def _empty() -> dict[str, Any]:
    return {"version": FORMAT_VERSION, "units": {}, "logistics_units": {}, "verification_requests": []}


class LocalCacheStore(LedgerStore):
    """
    Whole ledger kept in one JSON document.

    With no path the document lives only in memory. Writes go to a temp
    file that is then renamed over the document, so a crash never leaves
    a half-written ledger behind.
    """

    name = "local"

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._doc = self._load()

    def _load(self) -> dict[str, Any]:
        if self.path is None or not self.path.exists():
            return _empty()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreUnavailableError(f"cannot read ledger file {self.path}: {exc}") from exc
        doc = _empty()
        doc.update(data)
        logger.debug("loaded %d units from %s", len(doc["units"]), self.path)
        return doc

    def _flush(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(".tmp")
            temp_path.write_text(json.dumps(self._doc, indent=2), encoding="utf-8")
            temp_path.replace(self.path)
        except OSError as exc:
            raise StoreUnavailableError(f"cannot write ledger file {self.path}: {exc}") from exc

    # Units

    def get_unit(self, unit_id: str) -> TrackedUnit | None:
        with self._lock:
            data = self._doc["units"].get(unit_id)
        return TrackedUnit.from_dict(data) if data is not None else None

    def list_units(self) -> list[TrackedUnit]:
        with self._lock:
            records = list(self._doc["units"].values())
        return [TrackedUnit.from_dict(r) for r in records]

    def put_unit(self, unit: TrackedUnit) -> None:
        with self._lock:
            previous = self._doc["units"].get(unit.unit_id)
            self._doc["units"][unit.unit_id] = unit.to_dict()
            try:
                self._flush()
            except StoreUnavailableError:
                if previous is None:
                    del self._doc["units"][unit.unit_id]
                else:
                    self._doc["units"][unit.unit_id] = previous
                raise

    # Logistics units

    def get_logistics_unit(self, sscc: str) -> LogisticsUnit | None:
        with self._lock:
            data = self._doc["logistics_units"].get(sscc)
        return LogisticsUnit.from_dict(data) if data is not None else None

    def list_logistics_units(self) -> list[LogisticsUnit]:
        with self._lock:
            records = list(self._doc["logistics_units"].values())
        return [LogisticsUnit.from_dict(r) for r in records]

    def put_logistics_unit(self, lu: LogisticsUnit) -> None:
        with self._lock:
            previous = self._doc["logistics_units"].get(lu.sscc)
            self._doc["logistics_units"][lu.sscc] = lu.to_dict()
            try:
                self._flush()
            except StoreUnavailableError:
                if previous is None:
                    del self._doc["logistics_units"][lu.sscc]
                else:
                    self._doc["logistics_units"][lu.sscc] = previous
                raise

    # Verification requests

    def put_verification(self, request: VerificationRequest) -> None:
        with self._lock:
            self._doc["verification_requests"].append(request.to_dict())
            try:
                self._flush()
            except StoreUnavailableError:
                self._doc["verification_requests"].pop()
                raise

    def list_verifications(self) -> list[VerificationRequest]:
        with self._lock:
            records = list(self._doc["verification_requests"])
        return [VerificationRequest.from_dict(r) for r in records]


__all__ = ["LocalCacheStore", "LEDGER_FILENAME"]
