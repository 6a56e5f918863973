"""Tests for the JSONL operation log."""

from __future__ import annotations

from eledger.audit_log import AuditLog, format_audit_entry, read_audit_log


def test_record_and_read(tmp_path) -> None:
    path = tmp_path / "logs" / "audit.log"
    log = AuditLog(path)
    log.record("M1", "MANUFACTURE", "U1", {"status": "CREATED"})
    log.record("M1", "DISPATCH", "U1", {"event_id": "e-1"})

    entries = read_audit_log(path)
    assert [e.action for e in entries] == ["MANUFACTURE", "DISPATCH"]
    assert entries[0].entry_id != entries[1].entry_id
    assert [e.action for e in read_audit_log(path, last_n=1)] == ["DISPATCH"]


def test_missing_log_is_empty(tmp_path) -> None:
    assert read_audit_log(tmp_path / "none.log") == []


def test_malformed_lines_are_skipped(tmp_path) -> None:
    path = tmp_path / "audit.log"
    AuditLog(path).record("R1", "SALE", "U1")
    with path.open("a", encoding="utf-8") as f:
        f.write("{broken\n\n")
    AuditLog(path).record("R1", "SALE", "U2")
    assert [e.resource_id for e in read_audit_log(path)] == ["U1", "U2"]


def test_format_entry(tmp_path) -> None:
    entry = AuditLog(tmp_path / "a.log").record("R1", "SALE", "U1", {"event_id": "e-9"})
    text = format_audit_entry(entry)
    assert "SALE U1 by R1" in text
    assert "event_id: e-9" in text
