"""
Ledger orchestration.

Every mutation follows the same path: take the unit's lock, load it, let
the state machine validate and build the next event, persist the whole
record, release the lock. Reads go through the visibility filter.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from ..errors import IllegalTransitionError, NotFoundError, NotOwnerError, ValidationError
from .chain import ChainReport, HashChain
from .digest import identity_digest
from .locks import KeyedLocks
from .logistics import LogisticsStatus, LogisticsUnit, generate_sscc, is_valid_sscc
from .models import EventKind, Principal, TraceEvent, TrackedUnit, UnitStatus
from .pos import PointOfSaleGuard, PosCheckResult
from .transitions import UnitStateMachine
from .util import new_ulid, new_unit_id, utcnow
from .verification import VerificationRequest, VerificationStatus, assess
from .visibility import VisibilityFilter

if TYPE_CHECKING:
    from ..audit_log import AuditLog
    from ..config import LedgerConfig
    from ..store.base import LedgerStore

logger = logging.getLogger(__name__)

# Kinds an idempotent replay may have been recorded as
_REPLAY_KINDS: dict[EventKind, frozenset[EventKind]] = {
    EventKind.RECEIVE: frozenset({EventKind.RECEIVE, EventKind.RETURN_RECEIPT}),
}


@dataclass(frozen=True)
class TransitionResult:
    """The unit after a mutation and the event that produced it."""

    unit: TrackedUnit
    event: TraceEvent
    replayed: bool = False


@dataclass(frozen=True)
class UnitAudit:
    unit_id: str
    chain: ChainReport
    identity_ok: bool

    @property
    def ok(self) -> bool:
        return self.chain.valid and self.identity_ok

    def to_dict(self) -> dict[str, Any]:
        return {"unit_id": self.unit_id, "ok": self.ok, "identity_ok": self.identity_ok, "chain": self.chain.to_dict()}


class LedgerService:
    """Single-writer custody ledger over a LedgerStore."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        visibility: VisibilityFilter | None = None,
        audit_log: AuditLog | None = None,
        chain: HashChain | None = None,
    ):
        self.store = store
        self.chain = chain or HashChain()
        self.pos_guard = PointOfSaleGuard(store)
        self.state_machine = UnitStateMachine(self.chain, self.pos_guard)
        self.visibility = visibility or VisibilityFilter()
        self.audit_log = audit_log
        self._locks = KeyedLocks()

    @classmethod
    def from_config(cls, config: LedgerConfig) -> LedgerService:
        from ..audit_log import AuditLog
        from ..store import open_store

        return cls(
            open_store(config),
            visibility=VisibilityFilter(redact_commercial=config.redact_commercial_fields),
            audit_log=AuditLog(config.resolved_audit_path) if config.audit_enabled else None,
        )

    def close(self) -> None:
        self.store.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load(self, unit_id: str) -> TrackedUnit:
        unit = self.store.get_unit(unit_id)
        if unit is None:
            raise NotFoundError(f"unit not found: {unit_id}")
        return unit

    def _audit(self, actor: Principal, action: str, resource_id: str, details: dict[str, Any]) -> None:
        if self.audit_log is not None:
            self.audit_log.record(actor.id, action, resource_id, details)

    def _mutate(
        self,
        unit_id: str,
        kind: EventKind,
        actor: Principal,
        payload: dict[str, Any],
    ) -> TransitionResult:
        payload = {k: v for k, v in payload.items() if v is not None}
        with self._locks.hold(unit_id):
            unit = self._load(unit_id)

            event_id = payload.get("event_id")
            if event_id:
                recorded = unit.find_event(event_id)
                if recorded is not None:
                    if recorded.kind not in _REPLAY_KINDS.get(kind, frozenset({kind})):
                        raise ValidationError(
                            f"event id {event_id} already used for {recorded.kind.value} on {unit_id}"
                        )
                    logger.info("replayed %s %s on %s", kind.value, event_id, unit_id)
                    return TransitionResult(unit, recorded, replayed=True)

            updated, event = self.state_machine.apply_transition(unit, kind, actor, payload)
            self.store.put_unit(updated)

        logger.info(
            "%s %s by %s: %s -> %s",
            event.kind.value,
            unit_id,
            actor.id,
            unit.status.value,
            updated.status.value,
        )
        self._audit(
            actor,
            event.kind.value,
            unit_id,
            {"event_id": event.event_id, "from": unit.status.value, "to": updated.status.value},
        )
        return TransitionResult(updated, event)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_unit(
        self,
        actor: Principal,
        *,
        product_code: str,
        lot_number: str,
        unit_id: str | None = None,
        event_id: str | None = None,
        **fields: Any,
    ) -> TrackedUnit:
        """
        Register a new unit owned by its manufacturer.

        Extra keyword fields are passed to UnitStateMachine.create_unit
        (product_name, quantity, duty_paid, attributes, ...). Re-sending the
        same event_id for an existing unit returns it unchanged.
        """
        unit_id = (unit_id or "").strip() or new_unit_id()
        with self._locks.hold(unit_id):
            existing = self.store.get_unit(unit_id)
            if existing is not None:
                genesis = existing.trace[0] if existing.trace else None
                if event_id and genesis is not None and genesis.event_id == event_id:
                    logger.info("replayed creation of %s", unit_id)
                    return existing
                raise ValidationError(f"unit already exists: {unit_id}")

            unit = self.state_machine.create_unit(
                actor,
                unit_id=unit_id,
                product_code=product_code,
                lot_number=lot_number,
                event_id=event_id,
                **fields,
            )
            self.store.put_unit(unit)

        logger.info("created %s (%s lot %s) by %s as %s", unit_id, product_code, lot_number, actor.id, unit.status.value)
        self._audit(
            actor,
            EventKind.MANUFACTURE.value,
            unit_id,
            {"event_id": unit.trace[0].event_id, "status": unit.status.value, "ledger_ref": unit.ledger_ref},
        )
        return unit

    def record_event(
        self,
        unit_id: str,
        kind: EventKind | str,
        actor: Principal,
        payload: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """Apply any requestable transition by kind."""
        try:
            requested = EventKind(kind)
        except ValueError as exc:
            raise ValidationError(f"unknown event kind: {kind!r}") from exc
        return self._mutate(unit_id, requested, actor, dict(payload or {}))

    def dispatch(
        self,
        unit_id: str,
        recipient_id: str,
        actor: Principal,
        *,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        return self._mutate(
            unit_id,
            EventKind.DISPATCH,
            actor,
            {
                "recipient_id": recipient_id,
                "location": location,
                "metadata": metadata,
                "event_id": event_id,
                "timestamp": timestamp,
            },
        )

    def receive(
        self,
        unit_id: str,
        actor: Principal,
        *,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        """Accept an incoming unit. A returned unit lands QUARANTINED."""
        return self._mutate(
            unit_id,
            EventKind.RECEIVE,
            actor,
            {"location": location, "metadata": metadata, "event_id": event_id, "timestamp": timestamp},
        )

    def sell(
        self,
        unit_id: str,
        actor: Principal,
        *,
        scanner_id: str | None = None,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        """
        Sell a unit at the point of sale.

        Raises SaleBlockedError (carrying the PosCheckResult) when the unit
        is already sold or blocked.
        """
        return self._mutate(
            unit_id,
            EventKind.SALE,
            actor,
            {
                "scanner_id": scanner_id,
                "location": location,
                "metadata": metadata,
                "event_id": event_id,
                "timestamp": timestamp,
            },
        )

    def return_unit(
        self,
        unit_id: str,
        recipient_id: str,
        reason: str,
        actor: Principal,
        *,
        refund_amount: int | float | None = None,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        return self._mutate(
            unit_id,
            EventKind.RETURN,
            actor,
            {
                "recipient_id": recipient_id,
                "reason": reason,
                "refund_amount": refund_amount,
                "location": location,
                "metadata": metadata,
                "event_id": event_id,
                "timestamp": timestamp,
            },
        )

    def recall(
        self,
        unit_id: str,
        reason: str,
        actor: Principal,
        *,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        return self._mutate(
            unit_id,
            EventKind.RECALL,
            actor,
            {
                "reason": reason,
                "location": location,
                "metadata": metadata,
                "event_id": event_id,
                "timestamp": timestamp,
            },
        )

    def pay_duty(
        self,
        unit_id: str,
        amount: int | float,
        actor: Principal,
        *,
        challan_no: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        return self._mutate(
            unit_id,
            EventKind.DUTY_PAYMENT,
            actor,
            {
                "amount": amount,
                "challan_no": challan_no,
                "metadata": metadata,
                "event_id": event_id,
                "timestamp": timestamp,
            },
        )

    def release(
        self,
        unit_id: str,
        actor: Principal,
        *,
        reason: str | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        return self._mutate(
            unit_id,
            EventKind.RELEASE,
            actor,
            {"reason": reason, "event_id": event_id, "timestamp": timestamp},
        )

    def destroy(
        self,
        unit_id: str,
        reason: str,
        actor: Principal,
        *,
        location: str | None = None,
        event_id: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> TransitionResult:
        return self._mutate(
            unit_id,
            EventKind.DESTRUCTION,
            actor,
            {"reason": reason, "location": location, "event_id": event_id, "timestamp": timestamp},
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_unit(self, unit_id: str, requester: Principal) -> TrackedUnit:
        """
        Fetch one unit as `requester` may see it.

        Units the requester is not a party to are reported as not found.
        """
        unit = self.store.get_unit(unit_id)
        if unit is None or not self.visibility.is_visible(unit, requester):
            raise NotFoundError(f"unit not found: {unit_id}")
        visible = self.visibility.filter([unit], requester)
        return visible[0]

    def list_units(
        self,
        requester: Principal,
        *,
        status: UnitStatus | str | None = None,
    ) -> list[TrackedUnit]:
        units = self.visibility.filter(self.store.list_units(), requester)
        if status is not None:
            wanted = UnitStatus(status)
            units = [u for u in units if u.status == wanted]
        logger.debug("listed %d units for %s", len(units), requester.id)
        return units

    def verify_by_hash(self, value: str) -> TrackedUnit | None:
        """
        Find a unit by its integrity hash or its BLK- ledger reference.

        Public product-verifier lookup; applies no visibility filter.
        """
        needle = value.strip()
        if not needle:
            return None
        for unit in self.store.list_units():
            if needle in (unit.identity_digest, unit.ledger_ref):
                return unit
        return None

    def pos_check(self, unit_id: str, scanner_id: str) -> PosCheckResult:
        return self.pos_guard.check(unit_id, scanner_id)

    # -------------------------------------------------------------------------
    # Integrity audit
    # -------------------------------------------------------------------------

    def _audit_one(self, unit: TrackedUnit) -> UnitAudit:
        report = self.chain.verify(unit)
        identity_ok = False
        if unit.trace:
            genesis = unit.trace[0]
            try:
                expected = identity_digest(
                    unit.product_code,
                    unit.lot_number,
                    unit.manufacturer_id,
                    unit.unit_id,
                    genesis.timestamp,
                )
            except ValueError:
                expected = None
            identity_ok = expected == unit.identity_digest and genesis.metadata.get("integrity_hash") == expected
        if not identity_ok:
            logger.warning("identity digest mismatch for %s", unit.unit_id)
        return UnitAudit(unit.unit_id, report, identity_ok)

    def audit_unit(self, unit_id: str) -> UnitAudit:
        return self._audit_one(self._load(unit_id))

    def audit_all(self) -> list[UnitAudit]:
        return [self._audit_one(unit) for unit in self.store.list_units()]

    # -------------------------------------------------------------------------
    # Logistics units
    # -------------------------------------------------------------------------

    def create_logistics_unit(
        self,
        unit_ids: Iterable[str],
        actor: Principal,
        *,
        sscc: str | None = None,
    ) -> LogisticsUnit:
        """Aggregate units the actor owns under one SSCC."""
        contents = [u.strip() for u in unit_ids if u and u.strip()]
        if sscc is not None and not is_valid_sscc(sscc):
            raise ValidationError(f"invalid SSCC (18 digits with GS1 check digit): {sscc!r}")
        for unit_id in contents:
            unit = self._load(unit_id)
            if unit.current_owner_id != actor.id:
                raise NotOwnerError(f"{actor.id} does not own {unit_id}")
            if unit.is_terminal() or unit.status == UnitStatus.IN_TRANSIT:
                raise IllegalTransitionError(f"{unit_id} cannot be packed while {unit.status.value}")

        code = sscc or generate_sscc()
        with self._locks.hold(f"sscc:{code}"):
            if self.store.get_logistics_unit(code) is not None:
                raise ValidationError(f"SSCC already registered: {code}")
            lu = LogisticsUnit.build(code, actor.id, contents, utcnow())
            self.store.put_logistics_unit(lu)

        logger.info("created logistics unit %s with %d units by %s", code, len(contents), actor.id)
        self._audit(actor, "LOGISTICS_CREATE", code, {"contents": len(contents), "record_digest": lu.record_digest})
        return lu

    def _load_logistics(self, sscc: str) -> LogisticsUnit:
        lu = self.store.get_logistics_unit(sscc)
        if lu is None:
            raise NotFoundError(f"logistics unit not found: {sscc}")
        return lu

    def dispatch_logistics_unit(self, sscc: str, recipient_id: str, actor: Principal) -> LogisticsUnit:
        """
        Dispatch every contained unit to `recipient_id`, then mark the
        aggregate SHIPPED.

        All contained units are checked before the first one moves.
        """
        with self._locks.hold(f"sscc:{sscc}"):
            lu = self._load_logistics(sscc)
            if lu.status == LogisticsStatus.SHIPPED:
                raise IllegalTransitionError(f"logistics unit {sscc} is already in transit")
            if lu.holder_id != actor.id:
                raise NotOwnerError(f"{actor.id} does not hold logistics unit {sscc}")
            for unit_id in lu.contents:
                self.state_machine.apply_transition(
                    self._load(unit_id), EventKind.DISPATCH, actor, {"recipient_id": recipient_id}
                )
            for unit_id in lu.contents:
                self.dispatch(unit_id, recipient_id, actor, metadata={"sscc": sscc})
            shipped = lu.shipped_to(recipient_id)
            self.store.put_logistics_unit(shipped)

        logger.info("shipped logistics unit %s to %s", sscc, recipient_id)
        self._audit(actor, "LOGISTICS_DISPATCH", sscc, {"recipient_id": recipient_id})
        return shipped

    def receive_logistics_unit(self, sscc: str, actor: Principal) -> LogisticsUnit:
        with self._locks.hold(f"sscc:{sscc}"):
            lu = self._load_logistics(sscc)
            if lu.status != LogisticsStatus.SHIPPED:
                raise IllegalTransitionError(f"logistics unit {sscc} is not in transit")
            if lu.recipient_id != actor.id:
                raise NotOwnerError(f"{actor.id} is not the recipient of logistics unit {sscc}")
            for unit_id in lu.contents:
                self.state_machine.apply_transition(self._load(unit_id), EventKind.RECEIVE, actor)
            for unit_id in lu.contents:
                self.receive(unit_id, actor, metadata={"sscc": sscc})
            received = lu.received_by(actor.id)
            self.store.put_logistics_unit(received)

        logger.info("received logistics unit %s by %s", sscc, actor.id)
        self._audit(actor, "LOGISTICS_RECEIVE", sscc, {})
        return received

    def list_logistics_units(self, requester: Principal) -> list[LogisticsUnit]:
        aggregates = self.store.list_logistics_units()
        if requester.is_oversight:
            return aggregates
        visible_ids = {u.unit_id for u in self.visibility.filter(self.store.list_units(), requester)}
        return [
            lu
            for lu in aggregates
            if requester.id in (lu.creator_id, lu.holder_id, lu.recipient_id)
            or any(unit_id in visible_ids for unit_id in lu.contents)
        ]

    # -------------------------------------------------------------------------
    # Verification requests
    # -------------------------------------------------------------------------

    def submit_verification(self, product_code: str, lot_number: str, requester: Principal) -> VerificationRequest:
        code = (product_code or "").strip()
        lot = (lot_number or "").strip()
        if not code or not lot:
            raise ValidationError("product_code and lot_number are required")
        candidates = [u for u in self.store.list_units() if u.product_code == code and u.lot_number == lot]
        status, reason, unit = assess(candidates, self.chain)
        request = VerificationRequest(
            request_id=f"VRS-{new_ulid()}",
            product_code=code,
            lot_number=lot,
            requester_id=requester.id,
            responder_id=unit.manufacturer_id if unit else None,
            status=status,
            reason=reason,
            requested_at=utcnow(),
            unit_id=unit.unit_id if unit else None,
        )
        self.store.put_verification(request)
        log = logger.info if status == VerificationStatus.VERIFIED else logger.warning
        log("verification %s for %s/%s by %s: %s", request.request_id, code, lot, requester.id, status.value)
        self._audit(requester, "VERIFICATION", request.request_id, {"status": status.value, "unit_id": request.unit_id or ""})
        return request

    def verification_history(self, principal: Principal) -> list[VerificationRequest]:
        requests = self.store.list_verifications()
        if principal.is_oversight:
            return requests
        return [r for r in requests if principal.id in (r.requester_id, r.responder_id)]


class AsyncLedgerService:
    """
    Awaitable facade over LedgerService.

    Each call runs the synchronous operation in the default executor, so
    the per-unit critical sections are the same ones the sync API uses.
    """

    def __init__(self, service: LedgerService):
        self.service = service

    async def _run(self, method: str, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        call = functools.partial(getattr(self.service, method), *args, **kwargs)
        return await loop.run_in_executor(None, call)

    async def create_unit(self, actor: Principal, **kwargs: Any) -> TrackedUnit:
        return await self._run("create_unit", actor, **kwargs)

    async def record_event(self, unit_id: str, kind: EventKind | str, actor: Principal, payload=None) -> TransitionResult:
        return await self._run("record_event", unit_id, kind, actor, payload)

    async def dispatch(self, unit_id: str, recipient_id: str, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("dispatch", unit_id, recipient_id, actor, **kwargs)

    async def receive(self, unit_id: str, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("receive", unit_id, actor, **kwargs)

    async def sell(self, unit_id: str, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("sell", unit_id, actor, **kwargs)

    async def return_unit(self, unit_id: str, recipient_id: str, reason: str, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("return_unit", unit_id, recipient_id, reason, actor, **kwargs)

    async def recall(self, unit_id: str, reason: str, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("recall", unit_id, reason, actor, **kwargs)

    async def pay_duty(self, unit_id: str, amount: int | float, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("pay_duty", unit_id, amount, actor, **kwargs)

    async def release(self, unit_id: str, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("release", unit_id, actor, **kwargs)

    async def destroy(self, unit_id: str, reason: str, actor: Principal, **kwargs: Any) -> TransitionResult:
        return await self._run("destroy", unit_id, reason, actor, **kwargs)

    async def get_unit(self, unit_id: str, requester: Principal) -> TrackedUnit:
        return await self._run("get_unit", unit_id, requester)

    async def list_units(self, requester: Principal, **kwargs: Any) -> list[TrackedUnit]:
        return await self._run("list_units", requester, **kwargs)

    async def verify_by_hash(self, value: str) -> TrackedUnit | None:
        return await self._run("verify_by_hash", value)

    async def pos_check(self, unit_id: str, scanner_id: str) -> PosCheckResult:
        return await self._run("pos_check", unit_id, scanner_id)

    async def audit_unit(self, unit_id: str) -> UnitAudit:
        return await self._run("audit_unit", unit_id)

    async def audit_all(self) -> list[UnitAudit]:
        return await self._run("audit_all")


__all__ = ["LedgerService", "AsyncLedgerService", "TransitionResult", "UnitAudit"]
