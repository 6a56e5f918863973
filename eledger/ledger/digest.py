"""
Deterministic content hashing for unit identities and trace events.

Structured input is serialized canonically (sorted keys, compact separators,
ASCII only) before hashing, so the same content yields the same digest in any
process or implementation.
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from ..errors import InvalidInputError

# previous_digest of the genesis event
GENESIS_DIGEST = "0" * 64


def _normalize(value: Any, path: str) -> Any:
    if value is None:
        raise InvalidInputError(f"{path} is required (got None)")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise InvalidInputError(f"{path} must be timezone-aware")
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, (str, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidInputError(f"{path} must be a finite number")
        return value
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidInputError(f"{path} keys must be strings (got {key!r})")
            out[key] = _normalize(item, f"{path}.{key}")
        return out
    if isinstance(value, (list, tuple)):
        return [_normalize(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise InvalidInputError(f"{path} has unsupported type {type(value).__name__}")


def canonical_json(value: Any) -> str:
    """Serialize to the canonical JSON form used for hashing."""
    normalized = _normalize(value, "value")
    return json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
    )


def digest(*parts: Any) -> str:
    """
    Hash an ordered sequence of parts into a 256-bit hex digest.

    Raises:
        InvalidInputError: if a part is None or cannot be serialized.
    """
    if not parts:
        raise InvalidInputError("digest() requires at least one part")
    for i, part in enumerate(parts):
        if part is None:
            raise InvalidInputError(f"digest part {i} is required (got None)")
    payload = canonical_json(list(parts)).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def identity_digest(
    product_code: str,
    lot_number: str,
    manufacturer_id: str,
    unit_id: str,
    created_at: datetime,
) -> str:
    """Digest fixed at unit creation; printed on labels as the integrity hash."""
    return digest("identity", product_code, lot_number, manufacturer_id, unit_id, created_at)


def event_digest(
    kind: str,
    timestamp: datetime,
    actor_id: str,
    location: str,
    metadata: Mapping[str, Any],
    previous_digest: str,
) -> str:
    return digest(kind, timestamp, actor_id, location, dict(metadata), previous_digest)


__all__ = [
    "GENESIS_DIGEST",
    "canonical_json",
    "digest",
    "identity_digest",
    "event_digest",
]
