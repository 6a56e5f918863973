"""Logistics unit (SSCC) CLI commands."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from ..errors import LedgerError
from ..ledger.models import Principal
from ..ledger.service import LedgerService
from .render import dump, report_error


def run_logistics_create(
    service: LedgerService,
    actor: Principal,
    unit_ids: list[str],
    *,
    sscc: str | None = None,
    output_json: bool = False,
) -> int:
    try:
        lu = service.create_logistics_unit(unit_ids, actor, sscc=sscc)
    except LedgerError as exc:
        return report_error(exc)

    if output_json:
        print(dump(lu.to_dict(), "json"))
        return 0
    Console().print(f"[green]Created[/green] SSCC {lu.sscc} with {len(lu.contents)} units")
    return 0


def run_logistics_list(service: LedgerService, requester: Principal, *, fmt: str = "table") -> int:
    try:
        aggregates = service.list_logistics_units(requester)
    except LedgerError as exc:
        return report_error(exc)

    if fmt != "table":
        print(dump([lu.to_dict() for lu in aggregates], fmt))
        return 0

    table = Table(title="Logistics units")
    table.add_column("sscc", style="cyan", no_wrap=True)
    table.add_column("status", style="magenta")
    table.add_column("units", justify="right")
    table.add_column("creator")
    table.add_column("holder")
    table.add_column("recipient")
    for lu in aggregates:
        table.add_row(
            lu.sscc,
            lu.status.value,
            str(len(lu.contents)),
            lu.creator_id,
            lu.holder_id,
            lu.recipient_id or "",
        )
    Console().print(table)
    return 0


def run_logistics_dispatch(service: LedgerService, actor: Principal, sscc: str, recipient_id: str) -> int:
    try:
        lu = service.dispatch_logistics_unit(sscc, recipient_id, actor)
    except LedgerError as exc:
        return report_error(exc)
    Console().print(f"[green]SHIPPED[/green] {lu.sscc} -> {recipient_id} ({len(lu.contents)} units)")
    return 0


def run_logistics_receive(service: LedgerService, actor: Principal, sscc: str) -> int:
    try:
        lu = service.receive_logistics_unit(sscc, actor)
    except LedgerError as exc:
        return report_error(exc)
    Console().print(f"[green]RECEIVED[/green] {lu.sscc} ({len(lu.contents)} units)")
    return 0
