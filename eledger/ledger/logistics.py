"""
Logistics units: shipping aggregates identified by a GS1 SSCC.

A logistics unit only groups tracked units for handling. Custody of the
contained units still changes one unit at a time through the state machine.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from ..errors import ValidationError
from .digest import digest
from .util import parse_timestamp

SSCC_LENGTH = 18

# Extension digit + GS1 company prefix used for generated codes
DEFAULT_SSCC_PREFIX = "00490001234"


class LogisticsStatus(str, Enum):
    CREATED = "CREATED"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"


def gs1_check_digit(body: str) -> int:
    """
    GS1 mod-10 check digit for a numeric body.

    Weights alternate 3, 1, ... starting from the rightmost body digit.
    """
    if not body.isdigit():
        raise ValidationError(f"GS1 body must be numeric: {body!r}")
    total = 0
    for position, char in enumerate(reversed(body)):
        total += int(char) * (3 if position % 2 == 0 else 1)
    return (10 - total % 10) % 10


def is_valid_sscc(sscc: str) -> bool:
    if len(sscc) != SSCC_LENGTH or not sscc.isdigit():
        return False
    return gs1_check_digit(sscc[:-1]) == int(sscc[-1])


def generate_sscc(prefix: str = DEFAULT_SSCC_PREFIX, *, rng: random.Random | None = None) -> str:
    """Build an 18-digit SSCC: prefix, random serial, check digit."""
    if not prefix.isdigit() or len(prefix) >= SSCC_LENGTH - 1:
        raise ValidationError(f"invalid SSCC prefix: {prefix!r}")
    rng = rng or random.SystemRandom()
    serial_len = SSCC_LENGTH - 1 - len(prefix)
    serial = "".join(str(rng.randrange(10)) for _ in range(serial_len))
    body = prefix + serial
    return body + str(gs1_check_digit(body))


@dataclass(frozen=True)
class LogisticsUnit:
    sscc: str
    creator_id: str
    contents: tuple[str, ...]
    created_at: datetime
    status: LogisticsStatus = LogisticsStatus.CREATED
    record_digest: str = ""
    holder_id: str = ""
    recipient_id: str | None = None

    @classmethod
    def build(cls, sscc: str, creator_id: str, contents: list[str], created_at: datetime) -> LogisticsUnit:
        if not is_valid_sscc(sscc):
            raise ValidationError(f"invalid SSCC (18 digits with GS1 check digit): {sscc!r}")
        if not contents:
            raise ValidationError("a logistics unit must contain at least one unit")
        if len(set(contents)) != len(contents):
            raise ValidationError("a logistics unit cannot contain the same unit twice")
        return cls(
            sscc=sscc,
            creator_id=creator_id,
            contents=tuple(contents),
            created_at=created_at,
            record_digest=digest(sscc, creator_id, list(contents), created_at),
            holder_id=creator_id,
        )

    def shipped_to(self, recipient_id: str) -> LogisticsUnit:
        return replace(self, status=LogisticsStatus.SHIPPED, recipient_id=recipient_id)

    def received_by(self, holder_id: str) -> LogisticsUnit:
        return replace(self, status=LogisticsStatus.RECEIVED, holder_id=holder_id, recipient_id=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sscc": self.sscc,
            "creator_id": self.creator_id,
            "contents": list(self.contents),
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "record_digest": self.record_digest,
            "holder_id": self.holder_id,
            "recipient_id": self.recipient_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LogisticsUnit:
        return cls(
            sscc=data["sscc"],
            creator_id=data["creator_id"],
            contents=tuple(data.get("contents") or ()),
            created_at=parse_timestamp(data["created_at"]),
            status=LogisticsStatus(data.get("status", LogisticsStatus.CREATED.value)),
            record_digest=data.get("record_digest", ""),
            holder_id=data.get("holder_id") or data["creator_id"],
            recipient_id=data.get("recipient_id"),
        )


__all__ = [
    "LogisticsStatus",
    "LogisticsUnit",
    "gs1_check_digit",
    "is_valid_sscc",
    "generate_sscc",
    "SSCC_LENGTH",
]
