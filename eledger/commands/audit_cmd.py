"""Audit CLI commands: operation log, chain integrity, participant directory."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..audit_log import format_audit_entry, read_audit_log
from ..config import LedgerConfig
from ..errors import LedgerError
from ..ledger.service import LedgerService
from .render import dump, report_error


def run_audit_log(path: Path, *, last_n: int | None = None, output_json: bool = False) -> int:
    entries = read_audit_log(path, last_n=last_n)
    if output_json:
        print(dump([e.to_dict() for e in entries], "json"))
        return 0
    if not entries:
        Console().print("No audit entries.", style="dim")
        return 0
    for entry in entries:
        print(format_audit_entry(entry))
    return 0


def run_audit_chain(service: LedgerService, *, output_json: bool = False) -> int:
    """Verify every unit; exit 1 when any chain or identity check fails."""
    try:
        audits = service.audit_all()
    except LedgerError as exc:
        return report_error(exc)
    broken = [a for a in audits if not a.ok]

    if output_json:
        print(dump({"checked": len(audits), "broken": [a.to_dict() for a in broken]}, "json"))
        return 1 if broken else 0

    console = Console()
    if broken:
        table = Table(title="Integrity failures")
        table.add_column("unit_id", style="cyan", no_wrap=True)
        table.add_column("event", justify="right")
        table.add_column("reason", style="red")
        for a in broken:
            reason = a.chain.reason if not a.chain.valid else "identity digest mismatch"
            index = "" if a.chain.failed_index is None else str(a.chain.failed_index)
            table.add_row(a.unit_id, index, reason or "")
        console.print(table)
    console.print(f"{len(audits) - len(broken)}/{len(audits)} units intact")
    return 1 if broken else 0


def run_participants(config: LedgerConfig) -> int:
    table = Table(title="Participants")
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("role", style="magenta")
    table.add_column("organization")
    table.add_column("name", style="dim")
    for p in config.participants:
        table.add_row(p.id, p.role.value, p.org_name, p.name)
    Console().print(table)
    return 0
