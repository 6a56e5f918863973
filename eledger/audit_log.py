"""
Operation log for ledger mutations.

Every committed mutation (unit created, event appended, logistics unit
shipped, verification recorded) is appended as one JSON object per line.
The trace itself stays the source of truth; this log answers "who did what,
when" across units without loading them all.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .ledger.util import new_ulid

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """A single audit log entry."""

    entry_id: str
    timestamp: str
    actor_id: str
    action: str
    resource_id: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp,
            "actor_id": self.actor_id,
            "action": self.action,
            "resource_id": self.resource_id,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEntry:
        return cls(
            entry_id=data.get("entry_id", ""),
            timestamp=data["timestamp"],
            actor_id=data.get("actor_id", ""),
            action=data["action"],
            resource_id=data.get("resource_id", ""),
            details=data.get("details", {}),
        )


class AuditLog:
    """Append-only JSONL writer. Thread-safe within one process."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(
        self,
        actor_id: str,
        action: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            entry_id=new_ulid(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            actor_id=actor_id,
            action=action,
            resource_id=resource_id,
            details=details or {},
        )
        line = json.dumps(entry.to_dict(), sort_keys=True) + "\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
        return entry


def read_audit_log(path: Path | str, last_n: int | None = None) -> list[AuditEntry]:
    """
    Read entries from the audit log (oldest first).

    Malformed lines are skipped with a warning.
    """
    log_path = Path(path)
    if not log_path.exists():
        return []

    entries: list[AuditEntry] = []
    with log_path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(AuditEntry.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.warning("skipping malformed audit log line %d in %s", lineno, log_path)

    if last_n is not None:
        return entries[-last_n:] if last_n > 0 else []
    return entries


def format_audit_entry(entry: AuditEntry) -> str:
    """Format an audit entry for human-readable display."""
    lines = [f"[{entry.timestamp}] {entry.action} {entry.resource_id} by {entry.actor_id}"]
    for key, value in entry.details.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)


__all__ = ["AuditEntry", "AuditLog", "read_audit_log", "format_audit_entry"]
