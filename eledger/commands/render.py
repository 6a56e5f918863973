"""Shared output helpers for command modules."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from ..errors import LedgerError
from ..ledger.models import TrackedUnit

FORMATS = ("table", "json", "yaml")


def dump(data: Any, fmt: str) -> str:
    """Serialize plain data as JSON or YAML."""
    if fmt == "yaml":
        import yaml

        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip("\n")
    return json.dumps(data, indent=2, sort_keys=True)


def report_error(exc: LedgerError) -> int:
    err = Console(stderr=True)
    err.print(f"{type(exc).__name__}: {exc}", style="bold red")
    return 1


def units_table(units: list[TrackedUnit], title: str = "Units") -> Table:
    table = Table(title=title)
    table.add_column("unit_id", style="cyan", no_wrap=True)
    table.add_column("product")
    table.add_column("lot")
    table.add_column("status", style="magenta")
    table.add_column("owner")
    table.add_column("ledger_ref", style="dim")

    for unit in units:
        table.add_row(
            unit.unit_id,
            unit.product_name or unit.product_code,
            unit.lot_number,
            unit.status.value,
            unit.current_owner_id,
            unit.ledger_ref,
        )
    return table


def trace_table(unit: TrackedUnit) -> Table:
    table = Table(title=f"Trace {unit.unit_id}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("kind", style="magenta")
    table.add_column("timestamp")
    table.add_column("actor")
    table.add_column("location")
    table.add_column("digest", style="dim")

    for index, event in enumerate(unit.trace):
        table.add_row(
            str(index),
            event.kind.value,
            event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            event.actor_display_name or event.actor_id,
            event.location,
            event.event_digest[:12] + "…",
        )
    return table
