"""
Read-side access policy.

Oversight roles see every unit. Everyone else sees a unit only if they are a
party to it: manufacturer, current owner, intended recipient, or the actor
of any event in its trace. This is applied on read paths only and is never
used to authorize a write.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable

from .models import Principal, TraceEvent, TrackedUnit

COMMERCIAL_KEYS = frozenset({"gst", "payment", "price", "invoice", "ewaybill", "refund_amount"})

REDACTED = "[redacted]"

# Metadata keys naming the counterparty of an event.
_COUNTERPARTY_KEYS = ("recipient_id", "source_id")


def _redact_metadata(metadata: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    out: dict[str, Any] = {}
    changed = False
    for key, value in metadata.items():
        if key.lower() in COMMERCIAL_KEYS:
            out[key] = REDACTED
            changed = True
        elif isinstance(value, dict):
            out[key], nested = _redact_metadata(value)
            changed = changed or nested
        else:
            out[key] = value
    return out, changed


def _is_counterparty(event: TraceEvent, principal_id: str) -> bool:
    if event.actor_id == principal_id:
        return True
    return any(event.metadata.get(key) == principal_id for key in _COUNTERPARTY_KEYS)


class VisibilityFilter:
    """Filters unit lists for a requesting principal."""

    def __init__(self, redact_commercial: bool = False):
        self.redact_commercial = redact_commercial

    def is_visible(self, unit: TrackedUnit, requester: Principal) -> bool:
        if requester.is_oversight:
            return True
        return requester.id in unit.parties()

    def filter(self, units: Iterable[TrackedUnit], requester: Principal) -> list[TrackedUnit]:
        """
        Return the units `requester` may see, in input order, without
        duplicates. Oversight roles get the input unchanged.
        """
        if requester.is_oversight:
            return list(units)

        seen: set[str] = set()
        visible: list[TrackedUnit] = []
        for unit in units:
            if unit.unit_id in seen or not self.is_visible(unit, requester):
                continue
            seen.add(unit.unit_id)
            visible.append(self.redact(unit, requester) if self.redact_commercial else unit)
        return visible

    def redact(self, unit: TrackedUnit, requester: Principal) -> TrackedUnit:
        """
        Mask commercial metadata on events the requester was not a party to.

        The result is a display copy: its digests no longer match its
        content, so it is flagged `redacted` and must not be verified.
        """
        if requester.is_oversight:
            return unit
        events: list[TraceEvent] = []
        changed = False
        for event in unit.trace:
            if _is_counterparty(event, requester.id):
                events.append(event)
                continue
            metadata, masked = _redact_metadata(event.metadata)
            if masked:
                changed = True
                events.append(replace(event, metadata=metadata))
            else:
                events.append(event)
        if not changed:
            return unit
        return replace(unit, trace=tuple(events), redacted=True)


def verifier_view(unit: TrackedUnit) -> dict[str, Any]:
    """
    Public product-verifier projection of a unit.

    Shows identity, status and where the unit has been. Event metadata is
    left out entirely, so no counterparty or commercial detail is exposed.
    """
    return {
        "unit_id": unit.unit_id,
        "product_code": unit.product_code,
        "product_name": unit.product_name,
        "lot_number": unit.lot_number,
        "manufacturer_id": unit.manufacturer_id,
        "status": unit.status.value,
        "identity_digest": unit.identity_digest,
        "ledger_ref": unit.ledger_ref,
        "expiry_date": unit.expiry_date,
        "trace": [
            {
                "kind": event.kind.value,
                "timestamp": event.timestamp.isoformat(),
                "actor_display_name": event.actor_display_name,
                "location": event.location,
            }
            for event in unit.trace
        ],
    }


__all__ = ["VisibilityFilter", "COMMERCIAL_KEYS", "REDACTED", "verifier_view"]
