"""
Ledger integrity and access engine.

Hash-linked unit traces, the custody state machine, read visibility and the
point-of-sale duplicate check. Orchestration lives in `eledger.ledger.service`.
"""

from .chain import ChainReport, EventDraft, HashChain
from .digest import GENESIS_DIGEST, canonical_json, digest, event_digest, identity_digest
from .models import (
    EventKind,
    Principal,
    ReturnReason,
    Role,
    TraceEvent,
    TrackedUnit,
    UnitStatus,
)
from .pos import PointOfSaleGuard, PosCheckResult, PosVerdict
from .transitions import UnitStateMachine
from .visibility import VisibilityFilter

__all__ = [
    "GENESIS_DIGEST",
    "canonical_json",
    "digest",
    "event_digest",
    "identity_digest",
    "EventKind",
    "Principal",
    "ReturnReason",
    "Role",
    "TraceEvent",
    "TrackedUnit",
    "UnitStatus",
    "EventDraft",
    "ChainReport",
    "HashChain",
    "UnitStateMachine",
    "VisibilityFilter",
    "PointOfSaleGuard",
    "PosCheckResult",
    "PosVerdict",
]
