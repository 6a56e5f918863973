"""
Append-only, hash-linked trace per unit.

Each event commits to its own content and to the digest of its predecessor,
so editing any recorded event breaks the linkage of every event after it.
This is tamper *detection*: there are no signatures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import IntegrityViolationError
from .digest import GENESIS_DIGEST, event_digest
from .models import EventKind, TraceEvent, TrackedUnit, validate_metadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventDraft:
    """An event before linkage fields are computed."""

    event_id: str
    kind: EventKind
    timestamp: datetime
    actor_id: str
    actor_display_name: str = ""
    location: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChainReport:
    """Result of verifying a unit's trace. Falsy when the chain is broken."""

    unit_id: str
    valid: bool
    events_checked: int
    failed_index: int | None = None
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "valid": self.valid,
            "events_checked": self.events_checked,
            "failed_index": self.failed_index,
            "reason": self.reason,
        }


class HashChain:
    """Builds and verifies trace linkage. Stateless; safe to share."""

    def append(self, unit: TrackedUnit, draft: EventDraft) -> TraceEvent:
        """
        Finalize `draft` as the next event of `unit`.

        Does not modify the unit; the caller appends the returned event
        together with the matching status change.
        """
        last = unit.last_event
        previous = last.event_digest if last is not None else GENESIS_DIGEST
        return self.seal(draft, previous)

    def seal(self, draft: EventDraft, previous_digest: str) -> TraceEvent:
        metadata = validate_metadata(draft.metadata)
        kind = EventKind(draft.kind)
        return TraceEvent(
            event_id=draft.event_id,
            kind=kind,
            timestamp=draft.timestamp,
            actor_id=draft.actor_id,
            actor_display_name=draft.actor_display_name,
            location=draft.location,
            metadata=metadata,
            event_digest=event_digest(
                kind.value,
                draft.timestamp,
                draft.actor_id,
                draft.location,
                metadata,
                previous_digest,
            ),
            previous_digest=previous_digest,
        )

    def verify(self, unit: TrackedUnit) -> ChainReport:
        """
        Recompute every digest and check linkage across the whole trace.

        Returns a report (never raises) that names the first offending index.
        """
        if not unit.trace:
            return ChainReport(unit.unit_id, False, 0, failed_index=0, reason="empty trace")

        expected_previous = GENESIS_DIGEST
        for index, event in enumerate(unit.trace):
            if event.previous_digest != expected_previous:
                reason = (
                    "genesis event does not link to the genesis digest"
                    if index == 0
                    else "previous_digest does not match predecessor"
                )
                return self._broken(unit, index, reason)
            try:
                recomputed = event_digest(
                    event.kind.value,
                    event.timestamp,
                    event.actor_id,
                    event.location,
                    event.metadata,
                    event.previous_digest,
                )
            except ValueError as exc:
                return self._broken(unit, index, f"event content cannot be hashed: {exc}")
            if recomputed != event.event_digest:
                return self._broken(unit, index, "event_digest does not match event content")
            expected_previous = event.event_digest

        return ChainReport(unit.unit_id, True, len(unit.trace))

    def ensure_intact(self, unit: TrackedUnit) -> ChainReport:
        report = self.verify(unit)
        if not report:
            raise IntegrityViolationError(unit.unit_id, report.failed_index, report.reason or "")
        return report

    @staticmethod
    def _broken(unit: TrackedUnit, index: int, reason: str) -> ChainReport:
        logger.warning("integrity check failed for %s at event %d: %s", unit.unit_id, index, reason)
        return ChainReport(unit.unit_id, False, index + 1, failed_index=index, reason=reason)


__all__ = ["EventDraft", "ChainReport", "HashChain"]
