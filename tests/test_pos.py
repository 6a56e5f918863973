"""Tests for the point-of-sale duplicate check."""

from __future__ import annotations

from dataclasses import replace

import pytest

from eledger.ledger.models import UnitStatus
from eledger.ledger.pos import PointOfSaleGuard, PosVerdict
from eledger.store.local import LocalCacheStore


def test_unknown_unit_is_blocked_not_found() -> None:
    result = PointOfSaleGuard(LocalCacheStore()).check("NOPE", "scanner-1")
    assert result.verdict == PosVerdict.BLOCKED
    assert result.reason == "not found"
    assert result.not_found


def test_sellable_unit_is_valid(service, received_unit) -> None:
    result = service.pos_check(received_unit.unit_id, "till-3")
    assert result.ok
    assert result.status == UnitStatus.RECEIVED


def test_sold_unit_is_always_duplicate(service, received_unit, retailer) -> None:
    service.sell(received_unit.unit_id, retailer)
    for _ in range(3):
        result = service.pos_check(received_unit.unit_id, "till-3")
        assert result.verdict == PosVerdict.DUPLICATE
        assert not result.not_found


@pytest.mark.parametrize("status", [UnitStatus.QUARANTINED, UnitStatus.RECALLED, UnitStatus.DESTROYED])
def test_compliance_statuses_block(received_unit, status) -> None:
    result = PointOfSaleGuard().evaluate(replace(received_unit, status=status))
    assert result.verdict == PosVerdict.BLOCKED
    assert status.value in result.reason
    assert not result.not_found


def test_check_without_store_is_an_error() -> None:
    with pytest.raises(RuntimeError):
        PointOfSaleGuard().check("U1", "s")


def test_result_to_dict(service, received_unit) -> None:
    data = service.pos_check(received_unit.unit_id, "s").to_dict()
    assert data == {"unit_id": received_unit.unit_id, "verdict": "VALID", "reason": "ok", "status": "RECEIVED"}
