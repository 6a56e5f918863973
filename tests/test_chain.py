"""Tests for hash-chain linkage and verification."""

from __future__ import annotations

from dataclasses import replace

import pytest

from eledger.errors import IntegrityViolationError
from eledger.ledger.chain import HashChain
from eledger.ledger.digest import GENESIS_DIGEST
from eledger.ledger.models import UnitStatus


def test_every_step_keeps_the_chain_valid(service, manufacturer, distributor, retailer) -> None:
    chain = HashChain()
    unit = service.create_unit(manufacturer, unit_id="U1", product_code="890", lot_number="L1")
    assert chain.verify(unit)

    steps = [
        lambda: service.dispatch("U1", distributor.id, manufacturer),
        lambda: service.receive("U1", distributor),
        lambda: service.dispatch("U1", retailer.id, distributor),
        lambda: service.receive("U1", retailer),
        lambda: service.sell("U1", retailer),
    ]
    for step in steps:
        result = step()
        report = chain.verify(result.unit)
        assert report.valid
        assert report.events_checked == len(result.unit.trace)

    assert result.unit.status == UnitStatus.SOLD


def test_linkage_invariants(received_unit) -> None:
    trace = received_unit.trace
    assert trace[0].previous_digest == GENESIS_DIGEST
    for prev, event in zip(trace, trace[1:]):
        assert event.previous_digest == prev.event_digest


def test_verify_is_idempotent(received_unit) -> None:
    chain = HashChain()
    assert chain.verify(received_unit) == chain.verify(received_unit)


def test_edited_metadata_is_detected(received_unit) -> None:
    trace = list(received_unit.trace)
    trace[1] = replace(trace[1], metadata={"recipient_id": "0490000000000"})
    tampered = replace(received_unit, trace=tuple(trace))

    report = HashChain().verify(tampered)
    assert not report
    assert report.failed_index == 1
    assert "content" in (report.reason or "")


def test_reordered_events_are_detected(received_unit) -> None:
    trace = list(received_unit.trace)
    trace[1], trace[2] = trace[2], trace[1]
    report = HashChain().verify(replace(received_unit, trace=tuple(trace)))
    assert not report
    assert report.failed_index == 1


def test_removed_event_is_detected(received_unit) -> None:
    trace = list(received_unit.trace)
    del trace[2]
    report = HashChain().verify(replace(received_unit, trace=tuple(trace)))
    assert report.failed_index == 2


def test_bad_genesis_link_is_detected(received_unit) -> None:
    trace = list(received_unit.trace)
    trace[0] = replace(trace[0], previous_digest="f" * 64)
    report = HashChain().verify(replace(received_unit, trace=tuple(trace)))
    assert report.failed_index == 0


def test_empty_trace_is_invalid(received_unit) -> None:
    report = HashChain().verify(replace(received_unit, trace=()))
    assert not report.valid
    assert report.failed_index == 0


def test_ensure_intact_raises_for_audit(received_unit) -> None:
    chain = HashChain()
    assert chain.ensure_intact(received_unit).valid

    trace = list(received_unit.trace)
    trace[-1] = replace(trace[-1], location="Somewhere else")
    with pytest.raises(IntegrityViolationError) as excinfo:
        chain.ensure_intact(replace(received_unit, trace=tuple(trace)))
    assert excinfo.value.unit_id == received_unit.unit_id
    assert excinfo.value.index == len(trace) - 1
