"""Tests for verification requests."""

from __future__ import annotations

from dataclasses import replace

import pytest

from eledger.errors import ValidationError
from eledger.ledger.verification import VerificationStatus


def _make(service, manufacturer, unit_id="U", lot="L-7"):
    return service.create_unit(manufacturer, unit_id=unit_id, product_code="8901", lot_number=lot, duty_paid=True)


def test_genuine_product_is_verified(service, manufacturer, retailer) -> None:
    unit = _make(service, manufacturer)
    request = service.submit_verification("8901", "L-7", retailer)
    assert request.status == VerificationStatus.VERIFIED
    assert request.responder_id == manufacturer.id
    assert request.unit_id == unit.unit_id
    assert request.request_id.startswith("VRS-")


def test_unknown_product_fails(service, retailer) -> None:
    request = service.submit_verification("0000", "L-0", retailer)
    assert request.status == VerificationStatus.FAILED
    assert request.responder_id is None


def test_sold_product_is_duplicate(service, manufacturer, retailer) -> None:
    _make(service, manufacturer)
    service.sell("U", manufacturer)
    assert service.submit_verification("8901", "L-7", retailer).status == VerificationStatus.DUPLICATE


def test_recalled_or_tampered_product_is_suspect(service, manufacturer, retailer) -> None:
    _make(service, manufacturer)
    service.recall("U", "bad batch", manufacturer)
    assert service.submit_verification("8901", "L-7", retailer).status == VerificationStatus.SUSPECT

    other = _make(service, manufacturer, unit_id="V", lot="L-8")
    genesis = replace(other.trace[0], actor_id="forged")
    service.store.put_unit(replace(other, trace=(genesis,)))
    request = service.submit_verification("8901", "L-8", retailer)
    assert request.status == VerificationStatus.SUSPECT
    assert "integrity" in request.reason


def test_sellable_match_wins_over_sold_one(service, manufacturer, retailer) -> None:
    _make(service, manufacturer, unit_id="A")
    _make(service, manufacturer, unit_id="B")
    service.sell("A", manufacturer)
    request = service.submit_verification("8901", "L-7", retailer)
    assert request.status == VerificationStatus.VERIFIED
    assert request.unit_id == "B"


def test_requires_code_and_lot(service, retailer) -> None:
    with pytest.raises(ValidationError):
        service.submit_verification("8901", " ", retailer)


def test_history_is_scoped(service, manufacturer, other_manufacturer, retailer, other_retailer, regulator) -> None:
    _make(service, manufacturer)
    service.submit_verification("8901", "L-7", retailer)
    service.submit_verification("8901", "L-7", other_retailer)

    assert len(service.verification_history(retailer)) == 1
    assert len(service.verification_history(manufacturer)) == 2
    assert service.verification_history(other_manufacturer) == []
    assert len(service.verification_history(regulator)) == 2
