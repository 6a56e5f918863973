"""Tests for the read-side visibility filter."""

from __future__ import annotations

from eledger.ledger.chain import HashChain
from eledger.ledger.visibility import REDACTED, VisibilityFilter


def _units(service, manufacturer, other_manufacturer, distributor):
    a = service.create_unit(manufacturer, unit_id="A", product_code="P1", lot_number="L1")
    b = service.create_unit(other_manufacturer, unit_id="B", product_code="P2", lot_number="L2")
    c = service.dispatch(
        service.create_unit(manufacturer, unit_id="C", product_code="P3", lot_number="L3").unit_id,
        distributor.id,
        manufacturer,
    ).unit
    return [a, b, c]


def test_oversight_sees_input_unchanged(service, manufacturer, other_manufacturer, distributor, regulator, auditor) -> None:
    units = _units(service, manufacturer, other_manufacturer, distributor)
    units_with_dupe = units + [units[0]]
    vf = VisibilityFilter()
    assert vf.filter(units_with_dupe, regulator) == units_with_dupe
    assert vf.filter(units, auditor) == units


def test_parties_only(service, manufacturer, other_manufacturer, distributor, retailer) -> None:
    a, b, c = _units(service, manufacturer, other_manufacturer, distributor)
    vf = VisibilityFilter()

    assert [u.unit_id for u in vf.filter([a, b, c], manufacturer)] == ["A", "C"]
    assert [u.unit_id for u in vf.filter([a, b, c], other_manufacturer)] == ["B"]
    # intended recipient sees the unit while it is in transit
    assert [u.unit_id for u in vf.filter([a, b, c], distributor)] == ["C"]
    assert vf.filter([a, b, c], retailer) == []


def test_no_duplicates_and_order_preserved(service, manufacturer, other_manufacturer, distributor) -> None:
    a, b, c = _units(service, manufacturer, other_manufacturer, distributor)
    result = VisibilityFilter().filter([c, a, c, a], manufacturer)
    assert [u.unit_id for u in result] == ["C", "A"]


def test_former_custodians_keep_visibility(service, received_unit, distributor, other_retailer) -> None:
    vf = VisibilityFilter()
    assert vf.is_visible(received_unit, distributor)
    assert not vf.is_visible(received_unit, other_retailer)


def test_service_list_applies_filter(service, manufacturer, other_manufacturer, distributor, regulator) -> None:
    _units(service, manufacturer, other_manufacturer, distributor)
    assert [u.unit_id for u in service.list_units(other_manufacturer)] == ["B"]
    assert [u.unit_id for u in service.list_units(regulator)] == ["A", "B", "C"]
    assert [u.unit_id for u in service.list_units(regulator, status="IN_TRANSIT")] == ["C"]


def test_commercial_fields_redacted_for_non_counterparties(
    service, manufacturer, distributor, retailer, regulator
) -> None:
    service.create_unit(manufacturer, unit_id="U", product_code="P", lot_number="L", duty_paid=True)
    service.dispatch("U", distributor.id, manufacturer, metadata={"invoice": "INV-9", "price": 1200})
    service.receive("U", distributor)
    service.dispatch("U", retailer.id, distributor, metadata={"invoice": "INV-10", "price": 1500})
    unit = service.receive("U", retailer).unit

    vf = VisibilityFilter(redact_commercial=True)
    seen_by_retailer = vf.filter([unit], retailer)[0]
    assert seen_by_retailer.redacted
    first_leg = seen_by_retailer.trace[1].metadata
    second_leg = seen_by_retailer.trace[3].metadata
    assert first_leg["invoice"] == REDACTED
    assert first_leg["price"] == REDACTED
    assert first_leg["recipient_id"] == distributor.id
    assert second_leg["invoice"] == "INV-10"

    # a display copy no longer verifies; the stored unit still does
    assert not HashChain().verify(seen_by_retailer)
    assert HashChain().verify(unit)

    assert vf.filter([unit], regulator)[0] is unit
    assert not vf.filter([unit], distributor)[0].redacted
