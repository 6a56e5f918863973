"""
Unit status state machine.

Every mutation of a unit goes through apply_transition(): it checks the
transition table and its guards, builds one trace event, links it through
the hash chain and returns the updated unit. The input unit is never
modified, so a rejected transition leaves no partial state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from ..errors import (
    IllegalTransitionError,
    NotOwnerError,
    SaleBlockedError,
    ValidationError,
)
from .chain import EventDraft, HashChain
from .digest import GENESIS_DIGEST, identity_digest
from .models import (
    EventKind,
    Principal,
    ReturnReason,
    Role,
    TERMINAL_STATUSES,
    TraceEvent,
    TrackedUnit,
    UnitStatus,
    validate_metadata,
)
from .pos import PointOfSaleGuard, PosVerdict
from .util import new_ulid, parse_timestamp, utcnow

NON_TERMINAL = frozenset(UnitStatus) - TERMINAL_STATUSES

# Statuses each requestable event kind may start from.
TRANSITION_SOURCES: dict[EventKind, frozenset[UnitStatus]] = {
    EventKind.DISPATCH: frozenset(
        {UnitStatus.CREATED, UnitStatus.BONDED, UnitStatus.DUTY_PAID, UnitStatus.RECEIVED}
    ),
    EventKind.RECEIVE: frozenset({UnitStatus.IN_TRANSIT}),
    EventKind.RETURN_RECEIPT: frozenset({UnitStatus.IN_TRANSIT}),
    EventKind.SALE: frozenset({UnitStatus.RECEIVED, UnitStatus.BONDED, UnitStatus.DUTY_PAID}),
    EventKind.RETURN: NON_TERMINAL,
    # Recall overrides: allowed from any non-terminal state and from SOLD.
    EventKind.RECALL: NON_TERMINAL | {UnitStatus.SOLD},
    EventKind.DUTY_PAYMENT: frozenset({UnitStatus.CREATED, UnitStatus.BONDED}),
    EventKind.RELEASE: frozenset({UnitStatus.QUARANTINED}),
    EventKind.DESTRUCTION: frozenset({UnitStatus.QUARANTINED, UnitStatus.RETURNED}),
}

DEFAULT_LOCATIONS: dict[EventKind, str] = {
    EventKind.MANUFACTURE: "Manufacturing Plant",
    EventKind.DISPATCH: "Distribution Center",
    EventKind.RECEIVE: "Inbound Dock",
    EventKind.RETURN_RECEIPT: "Returns Dock",
    EventKind.SALE: "Point of Sale",
    EventKind.RETURN: "Returns",
    EventKind.RECALL: "Compliance Dept",
    EventKind.DUTY_PAYMENT: "Excise Portal",
    EventKind.RELEASE: "Compliance Dept",
    EventKind.DESTRUCTION: "Destruction Site",
}


@dataclass(frozen=True)
class _Outcome:
    """Status/ownership changes plus the metadata the ledger itself records."""

    kind: EventKind
    changes: dict[str, Any]
    metadata: dict[str, Any]


def _require(payload: Mapping[str, Any], key: str, kind: EventKind) -> Any:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{kind.value} requires '{key}'")
    return value.strip() if isinstance(value, str) else value


def _require_owner(unit: TrackedUnit, actor: Principal, kind: EventKind) -> None:
    if actor.id != unit.current_owner_id:
        raise NotOwnerError(
            f"{kind.value} on {unit.unit_id}: {actor.id} is not the current owner"
        )


def _open_transit(unit: TrackedUnit) -> TraceEvent | None:
    """The DISPATCH or RETURN event that started the current transit."""
    for event in reversed(unit.trace):
        if event.kind in (EventKind.DISPATCH, EventKind.RETURN):
            return event
    return None


class UnitStateMachine:
    """Validates and applies unit transitions. Stateless; safe to share."""

    def __init__(self, chain: HashChain | None = None, pos_guard: PointOfSaleGuard | None = None):
        self.chain = chain or HashChain()
        self.pos_guard = pos_guard or PointOfSaleGuard()
        self._handlers: dict[EventKind, Callable[..., _Outcome]] = {
            EventKind.DISPATCH: self._dispatch,
            EventKind.RECEIVE: self._receive,
            EventKind.RETURN_RECEIPT: self._receive,
            EventKind.SALE: self._sale,
            EventKind.RETURN: self._return,
            EventKind.RECALL: self._recall,
            EventKind.DUTY_PAYMENT: self._duty_payment,
            EventKind.RELEASE: self._release,
            EventKind.DESTRUCTION: self._destruction,
        }

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def allowed_kinds(self, unit: TrackedUnit) -> list[EventKind]:
        """Event kinds whose table row matches the unit's status (guards not checked)."""
        return [kind for kind, sources in TRANSITION_SOURCES.items() if unit.status in sources]

    # -------------------------------------------------------------------------
    # Genesis
    # -------------------------------------------------------------------------

    def create_unit(
        self,
        actor: Principal,
        *,
        unit_id: str,
        product_code: str,
        lot_number: str,
        product_name: str = "",
        quantity: int | float = 0,
        unit_of_measure: str = "units",
        expiry_date: str | None = None,
        production_date: str | None = None,
        duty_paid: bool | None = None,
        attributes: Mapping[str, Any] | None = None,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        timestamp: datetime | str | None = None,
        event_id: str | None = None,
    ) -> TrackedUnit:
        """
        Build a new unit with its genesis MANUFACTURE event.

        duty_paid=None creates a plain CREATED unit; False creates it BONDED
        (duty unpaid) and True creates it DUTY_PAID.
        """
        if actor.role != Role.MANUFACTURER:
            raise NotOwnerError(f"only manufacturers create units ({actor.id} is {actor.role.value})")
        for name, value in (("unit_id", unit_id), ("product_code", product_code), ("lot_number", lot_number)):
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{name} is required")
        if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) or quantity < 0:
            raise ValidationError("quantity must be a non-negative number")

        created_at = parse_timestamp(timestamp) if timestamp is not None else utcnow()
        unit_id = unit_id.strip()
        product_code = product_code.strip()
        lot_number = lot_number.strip()
        identity = identity_digest(product_code, lot_number, actor.id, unit_id, created_at)

        if duty_paid is None:
            status = UnitStatus.CREATED
        elif duty_paid:
            status = UnitStatus.DUTY_PAID
        else:
            status = UnitStatus.BONDED

        genesis_metadata = validate_metadata(metadata)
        genesis_metadata.update({"integrity_hash": identity, "initial_status": status.value})

        genesis = self.chain.seal(
            EventDraft(
                event_id=event_id or new_ulid(),
                kind=EventKind.MANUFACTURE,
                timestamp=created_at,
                actor_id=actor.id,
                actor_display_name=actor.display_name,
                location=location or DEFAULT_LOCATIONS[EventKind.MANUFACTURE],
                metadata=genesis_metadata,
            ),
            GENESIS_DIGEST,
        )

        return TrackedUnit(
            unit_id=unit_id,
            product_code=product_code,
            lot_number=lot_number,
            identity_digest=identity,
            manufacturer_id=actor.id,
            current_owner_id=actor.id,
            status=status,
            trace=(genesis,),
            duty_paid=bool(duty_paid),
            product_name=product_name,
            quantity=quantity,
            unit_of_measure=unit_of_measure,
            expiry_date=expiry_date,
            production_date=production_date,
            attributes=validate_metadata(attributes, path="attributes"),
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def apply_transition(
        self,
        unit: TrackedUnit,
        kind: EventKind | str,
        actor: Principal,
        payload: Mapping[str, Any] | None = None,
    ) -> tuple[TrackedUnit, TraceEvent]:
        """
        Apply one transition and return (updated unit, appended event).

        Payload keys: location, metadata, timestamp, event_id, and the
        kind-specific fields (recipient_id, reason, amount, challan_no).

        Raises:
            IllegalTransitionError: no table row matches (SaleBlockedError for
                a SALE refused by the point-of-sale guard)
            NotOwnerError: ownership or role guard fails
            ValidationError: required payload fields missing or malformed
        """
        payload = dict(payload or {})
        try:
            requested = EventKind(kind)
        except ValueError as exc:
            raise ValidationError(f"unknown event kind: {kind!r}") from exc

        if requested == EventKind.SALE:
            # Re-verified here, inside the caller's critical section.
            pos = self.pos_guard.evaluate(unit, unit.unit_id)
            if pos.verdict != PosVerdict.VALID:
                raise SaleBlockedError(f"sale of {unit.unit_id} refused: {pos.reason}", pos)

        sources = TRANSITION_SOURCES.get(requested)
        if sources is None:
            raise IllegalTransitionError(f"{requested.value} cannot be requested as a transition")
        if unit.status not in sources:
            raise IllegalTransitionError(
                f"{requested.value} not allowed from {unit.status.value} ({unit.unit_id})"
            )

        outcome = self._handlers[requested](unit, actor, payload, requested)

        event_id = payload.get("event_id") or new_ulid()
        if unit.has_event(event_id):
            raise ValidationError(f"event id {event_id} already recorded on {unit.unit_id}")

        user_metadata = validate_metadata(payload.get("metadata"))
        clash = set(user_metadata) & set(outcome.metadata)
        if clash:
            raise ValidationError(f"metadata keys reserved by the ledger: {sorted(clash)}")

        timestamp = payload.get("timestamp")
        event = self.chain.append(
            unit,
            EventDraft(
                event_id=event_id,
                kind=outcome.kind,
                timestamp=parse_timestamp(timestamp) if timestamp is not None else utcnow(),
                actor_id=actor.id,
                actor_display_name=actor.display_name,
                location=payload.get("location") or DEFAULT_LOCATIONS[outcome.kind],
                metadata={**user_metadata, **outcome.metadata},
            ),
        )
        return unit.with_event(event, **outcome.changes), event

    # -------------------------------------------------------------------------
    # Per-kind guards and effects
    # -------------------------------------------------------------------------

    def _dispatch(self, unit, actor, payload, kind) -> _Outcome:
        _require_owner(unit, actor, kind)
        recipient = _require(payload, "recipient_id", kind)
        if recipient == unit.current_owner_id:
            raise ValidationError(f"{unit.unit_id}: cannot dispatch to the current owner")
        return _Outcome(
            EventKind.DISPATCH,
            {"status": UnitStatus.IN_TRANSIT, "intended_recipient_id": recipient},
            {"recipient_id": recipient},
        )

    def _receive(self, unit, actor, payload, kind) -> _Outcome:
        if actor.id != unit.intended_recipient_id:
            raise NotOwnerError(
                f"{kind.value} on {unit.unit_id}: {actor.id} is not the intended recipient"
            )
        opener = _open_transit(unit)
        closing_return = opener is not None and opener.kind == EventKind.RETURN
        if kind == EventKind.RETURN_RECEIPT and not closing_return:
            raise IllegalTransitionError(f"{unit.unit_id} is not in transit as a return")
        return _Outcome(
            EventKind.RETURN_RECEIPT if closing_return else EventKind.RECEIVE,
            {
                "status": UnitStatus.QUARANTINED if closing_return else UnitStatus.RECEIVED,
                "current_owner_id": actor.id,
                "intended_recipient_id": None,
            },
            {"source_id": unit.current_owner_id},
        )

    def _sale(self, unit, actor, payload, kind) -> _Outcome:
        _require_owner(unit, actor, kind)
        return _Outcome(
            EventKind.SALE,
            {"status": UnitStatus.SOLD, "intended_recipient_id": None},
            {"scanner_id": str(payload.get("scanner_id") or actor.id)},
        )

    def _return(self, unit, actor, payload, kind) -> _Outcome:
        _require_owner(unit, actor, kind)
        recipient = _require(payload, "recipient_id", kind)
        if recipient == unit.current_owner_id:
            raise ValidationError(f"{unit.unit_id}: return target must differ from the current owner")
        raw_reason = _require(payload, "reason", kind)
        try:
            reason = ReturnReason(str(raw_reason).upper())
        except ValueError as exc:
            allowed = ", ".join(r.value for r in ReturnReason)
            raise ValidationError(f"invalid return reason {raw_reason!r} (expected one of {allowed})") from exc
        metadata: dict[str, Any] = {"recipient_id": recipient, "reason": reason.value}
        refund = payload.get("refund_amount")
        if refund is not None:
            metadata["refund_amount"] = refund
        return _Outcome(
            EventKind.RETURN,
            {"status": UnitStatus.IN_TRANSIT, "intended_recipient_id": recipient},
            metadata,
        )

    def _recall(self, unit, actor, payload, kind) -> _Outcome:
        if actor.id != unit.manufacturer_id and actor.role != Role.REGULATOR:
            raise NotOwnerError(
                f"RECALL on {unit.unit_id}: only the manufacturer of record or a regulator may recall"
            )
        reason = _require(payload, "reason", kind)
        return _Outcome(
            EventKind.RECALL,
            {"status": UnitStatus.RECALLED, "intended_recipient_id": None},
            {"reason": str(reason), "initiator_role": actor.role.value},
        )

    def _duty_payment(self, unit, actor, payload, kind) -> _Outcome:
        _require_owner(unit, actor, kind)
        amount = _require(payload, "amount", kind)
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 0:
            raise ValidationError("DUTY_PAYMENT amount must be a non-negative number")
        metadata: dict[str, Any] = {"amount": amount}
        challan = payload.get("challan_no")
        if challan:
            metadata["challan_no"] = str(challan)
        return _Outcome(EventKind.DUTY_PAYMENT, {"status": UnitStatus.DUTY_PAID, "duty_paid": True}, metadata)

    def _release(self, unit, actor, payload, kind) -> _Outcome:
        if actor.role != Role.REGULATOR:
            raise NotOwnerError(f"RELEASE on {unit.unit_id}: only a regulator may release seized units")
        metadata = {"reason": str(payload["reason"])} if payload.get("reason") else {}
        return _Outcome(EventKind.RELEASE, {"status": UnitStatus.RECEIVED}, metadata)

    def _destruction(self, unit, actor, payload, kind) -> _Outcome:
        if actor.role != Role.REGULATOR and actor.id != unit.current_owner_id:
            raise NotOwnerError(
                f"DESTRUCTION on {unit.unit_id}: only a regulator or the current owner may destroy"
            )
        reason = _require(payload, "reason", kind)
        return _Outcome(EventKind.DESTRUCTION, {"status": UnitStatus.DESTROYED}, {"reason": str(reason)})


__all__ = [
    "UnitStateMachine",
    "TRANSITION_SOURCES",
    "NON_TERMINAL",
    "DEFAULT_LOCATIONS",
]
