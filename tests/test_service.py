"""End-to-end tests for LedgerService."""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from eledger.audit_log import AuditLog, read_audit_log
from eledger.errors import (
    IllegalTransitionError,
    NotFoundError,
    NotOwnerError,
    SaleBlockedError,
    StoreUnavailableError,
    ValidationError,
)
from eledger.ledger.models import EventKind, UnitStatus
from eledger.ledger.pos import PosVerdict
from eledger.ledger.service import AsyncLedgerService, LedgerService
from eledger.store.local import LocalCacheStore


def test_happy_path_to_sale(service, received_unit, retailer, regulator) -> None:
    result = service.sell(received_unit.unit_id, retailer)
    unit = result.unit

    assert unit.status == UnitStatus.SOLD
    assert [e.kind for e in unit.trace] == [
        EventKind.MANUFACTURE,
        EventKind.DISPATCH,
        EventKind.RECEIVE,
        EventKind.DISPATCH,
        EventKind.RECEIVE,
        EventKind.SALE,
    ]
    assert service.audit_unit(unit.unit_id).ok
    assert service.pos_check(unit.unit_id, "till-1").verdict == PosVerdict.DUPLICATE
    assert service.get_unit(unit.unit_id, regulator).status == UnitStatus.SOLD


def test_second_sale_is_refused_without_mutation(service, received_unit, retailer) -> None:
    service.sell(received_unit.unit_id, retailer)
    before = service.store.get_unit(received_unit.unit_id)

    with pytest.raises(SaleBlockedError) as excinfo:
        service.sell(received_unit.unit_id, retailer)
    assert excinfo.value.pos_result.verdict == PosVerdict.DUPLICATE
    assert service.store.get_unit(received_unit.unit_id) == before


def test_recall_blocks_sale(service, received_unit, manufacturer, retailer) -> None:
    service.recall(received_unit.unit_id, "contamination", manufacturer)

    check = service.pos_check(received_unit.unit_id, "till-1")
    assert check.verdict == PosVerdict.BLOCKED
    with pytest.raises(SaleBlockedError):
        service.sell(received_unit.unit_id, retailer)
    assert service.store.get_unit(received_unit.unit_id).status == UnitStatus.RECALLED


def test_regulator_recall_after_sale_blocks_rescan(service, received_unit, retailer, regulator) -> None:
    service.sell(received_unit.unit_id, retailer)
    assert service.pos_check(received_unit.unit_id, "till-1").verdict == PosVerdict.DUPLICATE

    recalled = service.recall(received_unit.unit_id, "counterfeit batch", regulator).unit
    assert recalled.status == UnitStatus.RECALLED

    check = service.pos_check(received_unit.unit_id, "till-1")
    assert check.verdict == PosVerdict.BLOCKED
    assert check.status == UnitStatus.RECALLED


def test_malformed_timestamp_is_a_validation_error(service, manufacturer, distributor) -> None:
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")
    before = service.store.get_unit("U")

    with pytest.raises(ValidationError, match="invalid timestamp"):
        service.dispatch("U", distributor.id, manufacturer, timestamp="yesterday-ish")
    with pytest.raises(ValidationError):
        service.create_unit(manufacturer, unit_id="V", product_code="P", lot_number="L", timestamp="31/02/2024")

    assert service.store.get_unit("U") == before
    assert service.store.get_unit("V") is None

def test_rejected_transitions_leave_no_trace(service, received_unit, distributor, manufacturer, retailer) -> None:
    before = service.store.get_unit(received_unit.unit_id)
    with pytest.raises(NotOwnerError):
        service.dispatch(received_unit.unit_id, manufacturer.id, distributor)
    with pytest.raises(IllegalTransitionError):
        service.receive(received_unit.unit_id, distributor)
    with pytest.raises(ValidationError):
        service.return_unit(received_unit.unit_id, "", "DAMAGED", retailer)
    assert service.store.get_unit(received_unit.unit_id) == before


def test_unknown_unit(service, retailer) -> None:
    with pytest.raises(NotFoundError):
        service.sell("MISSING", retailer)
    with pytest.raises(NotFoundError):
        service.get_unit("MISSING", retailer)


def test_invisible_unit_reads_as_not_found(service, received_unit, other_retailer) -> None:
    with pytest.raises(NotFoundError):
        service.get_unit(received_unit.unit_id, other_retailer)


def test_generated_unit_ids(service, manufacturer) -> None:
    unit = service.create_unit(manufacturer, product_code="P", lot_number="L")
    assert unit.unit_id.startswith("BATCH-")
    assert len(unit.unit_id) == len("BATCH-") + 26


def test_duplicate_unit_id_is_rejected(service, manufacturer) -> None:
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")
    with pytest.raises(ValidationError):
        service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")


def test_create_replay_with_same_event_id(service, manufacturer) -> None:
    first = service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L", event_id="gen-1")
    again = service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L", event_id="gen-1")
    assert again == first


def test_event_id_replay_is_idempotent(service, manufacturer, distributor) -> None:
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")
    first = service.dispatch("U", distributor.id, manufacturer, event_id="evt-1")
    again = service.dispatch("U", distributor.id, manufacturer, event_id="evt-1")

    assert not first.replayed
    assert again.replayed
    assert again.event == first.event
    assert len(service.store.get_unit("U").trace) == 2

    with pytest.raises(ValidationError):
        service.receive("U", distributor, event_id="evt-1")


def test_return_receipt_replay_matches_receive(service, received_unit, retailer, distributor) -> None:
    service.return_unit(received_unit.unit_id, distributor.id, "UNSOLD", retailer)
    first = service.receive(received_unit.unit_id, distributor, event_id="rr-1")
    again = service.receive(received_unit.unit_id, distributor, event_id="rr-1")
    assert first.event.kind == EventKind.RETURN_RECEIPT
    assert again.replayed
    assert first.unit.status == UnitStatus.QUARANTINED


def test_full_lifecycle_with_duty_release_and_destruction(service, manufacturer, distributor, regulator) -> None:
    unit = service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L", duty_paid=False)
    assert unit.status == UnitStatus.BONDED
    service.pay_duty("U", 4200, manufacturer, challan_no="CH-1")
    service.dispatch("U", distributor.id, manufacturer)
    service.receive("U", distributor)
    service.return_unit("U", manufacturer.id, "DAMAGED", distributor, refund_amount=99.5)
    quarantined = service.receive("U", manufacturer).unit
    assert quarantined.status == UnitStatus.QUARANTINED

    released = service.release("U", regulator, reason="inspection passed").unit
    assert released.status == UnitStatus.RECEIVED

    service.return_unit("U", distributor.id, "DAMAGED", manufacturer)
    service.receive("U", distributor)
    destroyed = service.destroy("U", "broken seals", regulator).unit
    assert destroyed.status == UnitStatus.DESTROYED
    assert service.audit_unit("U").ok


def test_concurrent_sales_only_one_succeeds(tmp_path, manufacturer, retailer) -> None:
    service = LedgerService(LocalCacheStore(tmp_path / "ledger.json"))
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L", duty_paid=True)

    barrier = threading.Barrier(8)

    def attempt(_: int) -> str:
        barrier.wait()
        try:
            service.sell("U", manufacturer)
            return "sold"
        except SaleBlockedError:
            return "blocked"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(8)))

    assert outcomes.count("sold") == 1
    assert outcomes.count("blocked") == 7
    unit = service.store.get_unit("U")
    assert [e.kind for e in unit.trace].count(EventKind.SALE) == 1
    assert service.audit_unit("U").ok


def test_different_units_progress_independently(service, manufacturer, distributor) -> None:
    for i in range(20):
        service.create_unit(manufacturer, unit_id=f"U{i}", product_code="P", lot_number="L")

    with ThreadPoolExecutor(max_workers=5) as pool:
        list(pool.map(lambda i: service.dispatch(f"U{i}", distributor.id, manufacturer), range(20)))

    assert all(u.status == UnitStatus.IN_TRANSIT for u in service.store.list_units())
    assert len(service._locks) == 0


def test_failed_persist_leaves_store_unchanged(service, manufacturer, distributor, monkeypatch) -> None:
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")
    before = service.store.get_unit("U")

    def broken(unit):
        raise StoreUnavailableError("disk full")

    monkeypatch.setattr(service.store, "put_unit", broken)
    with pytest.raises(StoreUnavailableError):
        service.dispatch("U", distributor.id, manufacturer)
    assert service.store.get_unit("U") == before


def test_verify_by_hash(service, received_unit) -> None:
    assert service.verify_by_hash(received_unit.identity_digest).unit_id == received_unit.unit_id
    assert service.verify_by_hash(received_unit.ledger_ref).unit_id == received_unit.unit_id
    assert service.verify_by_hash("BLK-000000000000") is None
    assert service.verify_by_hash("  ") is None


def test_audit_detects_tampering(service, received_unit) -> None:
    trace = list(received_unit.trace)
    trace[2] = replace(trace[2], actor_id="0490000000000")
    service.store.put_unit(replace(received_unit, trace=tuple(trace)))

    audit = service.audit_unit(received_unit.unit_id)
    assert not audit.ok
    assert audit.chain.failed_index == 2
    assert [a.unit_id for a in service.audit_all() if not a.ok] == [received_unit.unit_id]


def test_audit_detects_identity_edit(service, received_unit) -> None:
    service.store.put_unit(replace(received_unit, lot_number="L-FORGED"))
    audit = service.audit_unit(received_unit.unit_id)
    assert audit.chain.valid
    assert not audit.identity_ok


def test_mutations_are_written_to_audit_log(tmp_path, manufacturer, distributor) -> None:
    log_path = tmp_path / "audit.log"
    service = LedgerService(LocalCacheStore(), audit_log=AuditLog(log_path))
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")
    service.dispatch("U", distributor.id, manufacturer, event_id="e-1")
    service.dispatch("U", distributor.id, manufacturer, event_id="e-1")

    entries = read_audit_log(log_path)
    assert [e.action for e in entries] == ["MANUFACTURE", "DISPATCH"]
    assert entries[1].details["event_id"] == "e-1"
    assert entries[1].actor_id == manufacturer.id


def test_record_event_by_name(service, manufacturer, distributor) -> None:
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")
    result = service.record_event("U", "DISPATCH", manufacturer, {"recipient_id": distributor.id})
    assert result.unit.status == UnitStatus.IN_TRANSIT
    with pytest.raises(ValidationError):
        service.record_event("U", "WARP", manufacturer)


def test_async_facade(manufacturer, distributor) -> None:
    async def scenario() -> UnitStatus:
        ledger = AsyncLedgerService(LedgerService(LocalCacheStore()))
        await ledger.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L", duty_paid=True)
        await ledger.dispatch("U", distributor.id, manufacturer)
        result = await ledger.receive("U", distributor)
        outcomes = await asyncio.gather(
            ledger.sell("U", distributor),
            ledger.sell("U", distributor),
            return_exceptions=True,
        )
        assert sum(isinstance(o, SaleBlockedError) for o in outcomes) == 1
        assert (await ledger.audit_unit("U")).ok
        return result.unit.status

    assert asyncio.run(scenario()) == UnitStatus.RECEIVED


def test_persisted_ledger_survives_restart(tmp_path, manufacturer, distributor) -> None:
    path = tmp_path / "ledger.json"
    first = LedgerService(LocalCacheStore(path))
    first.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L")
    first.dispatch("U", distributor.id, manufacturer)

    second = LedgerService(LocalCacheStore(path))
    unit = second.receive("U", distributor).unit
    assert unit.status == UnitStatus.RECEIVED
    assert second.audit_unit("U").ok
