"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from eledger.ledger.models import Principal, Role
from eledger.ledger.service import LedgerService
from eledger.store.local import LocalCacheStore


@pytest.fixture
def manufacturer() -> Principal:
    return Principal("0490001234567", Role.MANUFACTURER, "Royal Spirits Distillery")


@pytest.fixture
def other_manufacturer() -> Principal:
    return Principal("0490009999991", Role.MANUFACTURER, "Hill Brewery")


@pytest.fixture
def distributor() -> Principal:
    return Principal("0490001234568", Role.DISTRIBUTOR, "State Bonded Warehouse #4")


@pytest.fixture
def retailer() -> Principal:
    return Principal("0490001234569", Role.RETAILER, "City Premium Wines")


@pytest.fixture
def other_retailer() -> Principal:
    return Principal("0490001234570", Role.RETAILER, "Corner Liquor Mart")


@pytest.fixture
def regulator() -> Principal:
    return Principal("0490001234599", Role.REGULATOR, "State Excise Department")


@pytest.fixture
def auditor() -> Principal:
    return Principal("0490001234600", Role.AUDITOR, "Comptroller Audit Cell")


@pytest.fixture
def service() -> LedgerService:
    """Service over an in-memory store."""
    return LedgerService(LocalCacheStore())


@pytest.fixture
def disk_service(tmp_path: Path) -> LedgerService:
    return LedgerService(LocalCacheStore(tmp_path / "ledger.json"))


@pytest.fixture
def received_unit(service, manufacturer, distributor, retailer):
    """A unit that travelled manufacturer -> distributor -> retailer."""
    unit = service.create_unit(
        manufacturer,
        unit_id="BATCH-001",
        product_code="8901234567890",
        lot_number="L-2024-11",
        product_name="Royal Reserve Whisky 750ml",
        quantity=120,
        duty_paid=True,
    )
    service.dispatch(unit.unit_id, distributor.id, manufacturer)
    service.receive(unit.unit_id, distributor)
    service.dispatch(unit.unit_id, retailer.id, distributor)
    return service.receive(unit.unit_id, retailer).unit
