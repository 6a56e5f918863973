"""
Verification requests (VRS).

A downstream party asks whether a product code + lot is genuine. The answer
is derived from the ledger and recorded, so both the requester and the
responding manufacturer can review the exchange later.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from .chain import HashChain
from .models import TrackedUnit, UnitStatus
from .util import parse_timestamp


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    SUSPECT = "SUSPECT"
    DUPLICATE = "DUPLICATE"


SUSPECT_STATUSES = frozenset({UnitStatus.RECALLED, UnitStatus.QUARANTINED, UnitStatus.DESTROYED})


@dataclass(frozen=True)
class VerificationRequest:
    request_id: str
    product_code: str
    lot_number: str
    requester_id: str
    responder_id: str | None
    status: VerificationStatus
    reason: str
    requested_at: datetime
    unit_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "product_code": self.product_code,
            "lot_number": self.lot_number,
            "requester_id": self.requester_id,
            "responder_id": self.responder_id,
            "status": self.status.value,
            "reason": self.reason,
            "requested_at": self.requested_at.isoformat(),
            "unit_id": self.unit_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VerificationRequest:
        return cls(
            request_id=data["request_id"],
            product_code=data["product_code"],
            lot_number=data["lot_number"],
            requester_id=data["requester_id"],
            responder_id=data.get("responder_id"),
            status=VerificationStatus(data["status"]),
            reason=data.get("reason", ""),
            requested_at=parse_timestamp(data["requested_at"]),
            unit_id=data.get("unit_id"),
        )


def assess(
    candidates: Iterable[TrackedUnit],
    chain: HashChain | None = None,
) -> tuple[VerificationStatus, str, TrackedUnit | None]:
    """
    Decide the verification outcome for the units matching a code + lot.

    When several units match, the first sellable one wins; otherwise the
    first match determines the outcome.
    """
    chain = chain or HashChain()
    matches = list(candidates)
    if not matches:
        return VerificationStatus.FAILED, "no matching product in the ledger", None

    ordered = sorted(matches, key=lambda u: u.status in SUSPECT_STATUSES or u.status == UnitStatus.SOLD)
    unit = ordered[0]
    report = chain.verify(unit)
    if not report:
        return VerificationStatus.SUSPECT, f"trace integrity failure: {report.reason}", unit
    if unit.status == UnitStatus.SOLD:
        return VerificationStatus.DUPLICATE, "product already sold", unit
    if unit.status in SUSPECT_STATUSES:
        return VerificationStatus.SUSPECT, f"product is {unit.status.value}", unit
    return VerificationStatus.VERIFIED, "genuine product", unit


__all__ = ["VerificationStatus", "VerificationRequest", "assess", "SUSPECT_STATUSES"]
