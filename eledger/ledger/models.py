"""
Core data model: tracked units, trace events and participants.

Units are immutable values. A transition produces a new TrackedUnit whose
trace is the old trace plus exactly one event; prior events are never
reordered or edited.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Union

from ..errors import ValidationError
from .util import parse_timestamp


class Role(str, Enum):
    MANUFACTURER = "MANUFACTURER"  # distillery / brewery
    DISTRIBUTOR = "DISTRIBUTOR"  # bonded warehouse / wholesaler
    RETAILER = "RETAILER"  # wine shop / bar
    REGULATOR = "REGULATOR"  # excise inspector
    AUDITOR = "AUDITOR"


# Roles with full read transparency
OVERSIGHT_ROLES = frozenset({Role.REGULATOR, Role.AUDITOR})


class UnitStatus(str, Enum):
    CREATED = "CREATED"
    BONDED = "BONDED"  # in bonded warehouse, duty unpaid
    DUTY_PAID = "DUTY_PAID"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    SOLD = "SOLD"
    RETURNED = "RETURNED"
    QUARANTINED = "QUARANTINED"  # seized
    RECALLED = "RECALLED"
    DESTROYED = "DESTROYED"
    CONSUMED = "CONSUMED"


TERMINAL_STATUSES = frozenset({UnitStatus.SOLD, UnitStatus.RECALLED, UnitStatus.DESTROYED})


class EventKind(str, Enum):
    MANUFACTURE = "MANUFACTURE"
    DISPATCH = "DISPATCH"
    RECEIVE = "RECEIVE"
    SALE = "SALE"
    RETURN = "RETURN"
    RETURN_RECEIPT = "RETURN_RECEIPT"
    RECALL = "RECALL"
    DUTY_PAYMENT = "DUTY_PAYMENT"
    RELEASE = "RELEASE"
    DESTRUCTION = "DESTRUCTION"
    AGGREGATION = "AGGREGATION"


class ReturnReason(str, Enum):
    DAMAGED = "DAMAGED"
    EXPIRED = "EXPIRED"
    UNSOLD = "UNSOLD"
    RECALLED = "RECALLED"
    INCORRECT_ITEM = "INCORRECT_ITEM"


MetadataValue = Union[str, int, float, bool, "dict[str, MetadataValue]"]


def validate_metadata(metadata: Mapping[str, Any] | None, *, path: str = "metadata") -> dict[str, Any]:
    """
    Check that metadata only holds strings, numbers, booleans and nested maps.

    Returns a deep copy so later edits to the caller's dict never reach a
    recorded event.
    """
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise ValidationError(f"{path} must be a mapping")
    out: dict[str, Any] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            raise ValidationError(f"{path} keys must be non-empty strings (got {key!r})")
        where = f"{path}.{key}"
        if isinstance(value, Mapping):
            out[key] = validate_metadata(value, path=where)
        elif isinstance(value, (str, bool, int)):
            out[key] = value
        elif isinstance(value, float):
            if not math.isfinite(value):
                raise ValidationError(f"{where} must be a finite number")
            out[key] = value
        else:
            raise ValidationError(
                f"{where} has unsupported type {type(value).__name__}; "
                "expected string, number, bool or map"
            )
    return out


@dataclass(frozen=True)
class Principal:
    """A participant acting on or reading from the ledger."""

    id: str
    role: Role
    org_name: str = ""
    name: str = ""

    @property
    def is_oversight(self) -> bool:
        return self.role in OVERSIGHT_ROLES

    @property
    def display_name(self) -> str:
        return self.org_name or self.name or self.id

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "role": self.role.value, "org_name": self.org_name, "name": self.name}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Principal:
        pid = str(data.get("id", "")).strip()
        if not pid:
            raise ValidationError("participant id is required")
        try:
            role = Role(str(data.get("role", "")).upper())
        except ValueError as exc:
            raise ValidationError(f"participant {pid}: invalid role {data.get('role')!r}") from exc
        return cls(
            id=pid,
            role=role,
            org_name=str(data.get("org_name", "")),
            name=str(data.get("name", "")),
        )


@dataclass(frozen=True)
class TraceEvent:
    """One immutable, hash-linked fact in a unit's history."""

    event_id: str
    kind: EventKind
    timestamp: datetime
    actor_id: str
    actor_display_name: str
    location: str
    metadata: dict[str, Any]
    event_digest: str
    previous_digest: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "actor_display_name": self.actor_display_name,
            "location": self.location,
            "metadata": copy.deepcopy(self.metadata),
            "event_digest": self.event_digest,
            "previous_digest": self.previous_digest,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TraceEvent:
        return cls(
            event_id=data["event_id"],
            kind=EventKind(data["kind"]),
            timestamp=parse_timestamp(data["timestamp"]),
            actor_id=data["actor_id"],
            actor_display_name=data.get("actor_display_name", ""),
            location=data.get("location", ""),
            metadata=copy.deepcopy(data.get("metadata") or {}),
            event_digest=data["event_digest"],
            previous_digest=data["previous_digest"],
        )


@dataclass(frozen=True)
class TrackedUnit:
    """
    One regulated batch followed through its supply-chain lifecycle.

    Descriptive `attributes` (category, alcohol content, ...) are opaque to
    the ledger: stored and returned, never interpreted.
    """

    # Identity
    unit_id: str
    product_code: str
    lot_number: str
    identity_digest: str

    # Ownership
    manufacturer_id: str
    current_owner_id: str

    # Lifecycle
    status: UnitStatus
    trace: tuple[TraceEvent, ...] = ()
    intended_recipient_id: str | None = None
    duty_paid: bool = False

    # Descriptive
    product_name: str = ""
    quantity: int | float = 0
    unit_of_measure: str = "units"
    expiry_date: str | None = None
    production_date: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    # Set on read copies whose commercial metadata was masked
    redacted: bool = False

    @property
    def ledger_ref(self) -> str:
        return f"BLK-{self.identity_digest[:12]}"

    @property
    def last_event(self) -> TraceEvent | None:
        return self.trace[-1] if self.trace else None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def has_event(self, event_id: str) -> bool:
        return any(e.event_id == event_id for e in self.trace)

    def find_event(self, event_id: str) -> TraceEvent | None:
        for event in self.trace:
            if event.event_id == event_id:
                return event
        return None

    def parties(self) -> set[str]:
        """Every principal id with a stake in this unit."""
        ids = {self.manufacturer_id, self.current_owner_id}
        if self.intended_recipient_id:
            ids.add(self.intended_recipient_id)
        ids.update(e.actor_id for e in self.trace)
        return ids

    def with_event(self, event: TraceEvent, **changes: Any) -> TrackedUnit:
        """Return a copy with `event` appended and `changes` applied."""
        return replace(self, trace=(*self.trace, event), **changes)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "unit_id": self.unit_id,
            "product_code": self.product_code,
            "lot_number": self.lot_number,
            "identity_digest": self.identity_digest,
            "ledger_ref": self.ledger_ref,
            "manufacturer_id": self.manufacturer_id,
            "current_owner_id": self.current_owner_id,
            "intended_recipient_id": self.intended_recipient_id,
            "status": self.status.value,
            "duty_paid": self.duty_paid,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_of_measure": self.unit_of_measure,
            "expiry_date": self.expiry_date,
            "production_date": self.production_date,
            "attributes": copy.deepcopy(self.attributes),
            "trace": [e.to_dict() for e in self.trace],
        }
        if self.redacted:
            result["redacted"] = True
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TrackedUnit:
        return cls(
            unit_id=data["unit_id"],
            product_code=data["product_code"],
            lot_number=data["lot_number"],
            identity_digest=data["identity_digest"],
            manufacturer_id=data["manufacturer_id"],
            current_owner_id=data["current_owner_id"],
            status=UnitStatus(data["status"]),
            trace=tuple(TraceEvent.from_dict(e) for e in data.get("trace") or []),
            intended_recipient_id=data.get("intended_recipient_id"),
            duty_paid=bool(data.get("duty_paid", False)),
            product_name=data.get("product_name", ""),
            quantity=data.get("quantity", 0),
            unit_of_measure=data.get("unit_of_measure", "units"),
            expiry_date=data.get("expiry_date"),
            production_date=data.get("production_date"),
            attributes=copy.deepcopy(data.get("attributes") or {}),
            redacted=bool(data.get("redacted", False)),
        )


__all__ = [
    "Role",
    "OVERSIGHT_ROLES",
    "UnitStatus",
    "TERMINAL_STATUSES",
    "EventKind",
    "ReturnReason",
    "MetadataValue",
    "validate_metadata",
    "Principal",
    "TraceEvent",
    "TrackedUnit",
]
