"""
Point-of-sale duplicate / blocked-status check.

A genuine unit is sellable exactly once. A scan of an identity that is
already SOLD means the identifier was cloned or reused.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .models import TrackedUnit, UnitStatus

if TYPE_CHECKING:
    from ..store.base import LedgerStore

logger = logging.getLogger(__name__)


class PosVerdict(str, Enum):
    VALID = "VALID"
    DUPLICATE = "DUPLICATE"
    BLOCKED = "BLOCKED"


BLOCKING_STATUSES = frozenset({UnitStatus.QUARANTINED, UnitStatus.RECALLED, UnitStatus.DESTROYED})

REASON_NOT_FOUND = "not found"


@dataclass(frozen=True)
class PosCheckResult:
    unit_id: str
    verdict: PosVerdict
    reason: str
    status: UnitStatus | None = None

    @property
    def ok(self) -> bool:
        return self.verdict == PosVerdict.VALID

    @property
    def not_found(self) -> bool:
        """Unknown identifier: a data-entry error or a counterfeit, not a re-sale."""
        return self.verdict == PosVerdict.BLOCKED and self.status is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "verdict": self.verdict.value,
            "reason": self.reason,
            "status": self.status.value if self.status else None,
        }


class PointOfSaleGuard:
    """Decides VALID / DUPLICATE / BLOCKED for a scanned unit."""

    def __init__(self, store: LedgerStore | None = None):
        self.store = store

    def evaluate(self, unit: TrackedUnit | None, unit_id: str = "") -> PosCheckResult:
        """Pure decision over a unit snapshot (None = not in the ledger)."""
        if unit is None:
            return PosCheckResult(unit_id, PosVerdict.BLOCKED, REASON_NOT_FOUND)
        if unit.status == UnitStatus.SOLD:
            return PosCheckResult(
                unit.unit_id,
                PosVerdict.DUPLICATE,
                "already sold: identifier reused",
                unit.status,
            )
        if unit.status in BLOCKING_STATUSES:
            return PosCheckResult(
                unit.unit_id,
                PosVerdict.BLOCKED,
                f"compliance block: unit is {unit.status.value}",
                unit.status,
            )
        return PosCheckResult(unit.unit_id, PosVerdict.VALID, "ok", unit.status)

    def check(self, unit_id: str, scanner_id: str) -> PosCheckResult:
        """Look the unit up in the store and evaluate it."""
        if self.store is None:
            raise RuntimeError("PointOfSaleGuard.check requires a store")
        result = self.evaluate(self.store.get_unit(unit_id), unit_id)
        if result.verdict != PosVerdict.VALID:
            logger.warning(
                "POS %s for %s scanned by %s: %s",
                result.verdict.value,
                unit_id,
                scanner_id,
                result.reason,
            )
        return result


__all__ = ["PosVerdict", "PosCheckResult", "PointOfSaleGuard", "BLOCKING_STATUSES"]
