"""Tests for canonical hashing."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from eledger.errors import InvalidInputError, ValidationError
from eledger.ledger.digest import GENESIS_DIGEST, canonical_json, digest, event_digest, identity_digest


def test_digest_is_deterministic_and_hex() -> None:
    a = digest("SALE", {"b": 1, "a": {"y": 2, "x": 1}})
    b = digest("SALE", {"a": {"x": 1, "y": 2}, "b": 1})
    assert a == b
    assert len(a) == 64
    int(a, 16)


def test_digest_depends_on_part_order() -> None:
    assert digest("a", "b") != digest("b", "a")


def test_canonical_json_is_compact_sorted_ascii() -> None:
    assert canonical_json({"b": 1, "a": "é"}) == '{"a":"\\u00e9","b":1}'


def test_datetimes_are_normalized_to_utc() -> None:
    utc = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    ist = utc.astimezone(timezone(timedelta(hours=5, minutes=30)))
    assert digest(utc) == digest(ist)


@pytest.mark.parametrize(
    "bad",
    [
        None,
        datetime(2024, 1, 1),
        math.nan,
        math.inf,
        {"k": None},
        {1: "x"},
        object(),
    ],
)
def test_digest_rejects_unhashable_input(bad) -> None:
    with pytest.raises(InvalidInputError):
        digest("x", bad)


def test_invalid_input_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        digest(None)


def test_genesis_digest_is_64_zeros() -> None:
    assert GENESIS_DIGEST == "0" * 64


def test_identity_digest_changes_with_any_field() -> None:
    ts = datetime(2024, 5, 1, tzinfo=timezone.utc)
    base = identity_digest("890", "L1", "M1", "U1", ts)
    assert base == identity_digest("890", "L1", "M1", "U1", ts)
    assert base != identity_digest("890", "L2", "M1", "U1", ts)
    assert base != identity_digest("890", "L1", "M1", "U1", ts + timedelta(seconds=1))


def test_event_digest_commits_to_previous() -> None:
    ts = datetime(2024, 5, 1, tzinfo=timezone.utc)
    one = event_digest("DISPATCH", ts, "M1", "Dock", {"recipient_id": "D1"}, GENESIS_DIGEST)
    two = event_digest("DISPATCH", ts, "M1", "Dock", {"recipient_id": "D1"}, "1" * 64)
    assert one != two
