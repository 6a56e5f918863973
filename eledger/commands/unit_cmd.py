"""Unit lifecycle and point-of-sale CLI commands."""

from __future__ import annotations

from typing import Any

from rich.console import Console

from ..errors import LedgerError, SaleBlockedError
from ..ledger.models import EventKind, Principal
from ..ledger.pos import PosCheckResult, PosVerdict
from ..ledger.service import LedgerService
from ..ledger.visibility import verifier_view
from .render import dump, report_error, trace_table, units_table

# Exit codes for point-of-sale verdicts
EXIT_VALID = 0
EXIT_DUPLICATE = 2
EXIT_BLOCKED = 3
EXIT_NOT_FOUND = 4


def pos_exit_code(result: PosCheckResult) -> int:
    if result.not_found:
        return EXIT_NOT_FOUND
    return {
        PosVerdict.VALID: EXIT_VALID,
        PosVerdict.DUPLICATE: EXIT_DUPLICATE,
        PosVerdict.BLOCKED: EXIT_BLOCKED,
    }[result.verdict]


def run_unit_create(
    service: LedgerService,
    actor: Principal,
    *,
    product_code: str,
    lot_number: str,
    fmt: str = "table",
    **fields: Any,
) -> int:
    console = Console()
    try:
        unit = service.create_unit(actor, product_code=product_code, lot_number=lot_number, **fields)
    except LedgerError as exc:
        return report_error(exc)

    if fmt != "table":
        print(dump(unit.to_dict(), fmt))
        return 0
    console.print(f"[green]Created[/green] {unit.unit_id} ({unit.status.value})")
    console.print(f"  integrity hash: {unit.identity_digest}", style="dim")
    console.print(f"  ledger ref:     {unit.ledger_ref}", style="dim")
    return 0


def run_unit_list(
    service: LedgerService,
    requester: Principal,
    *,
    status: str | None = None,
    fmt: str = "table",
) -> int:
    try:
        units = service.list_units(requester, status=status.upper() if status else None)
    except LedgerError as exc:
        return report_error(exc)
    except ValueError as exc:
        Console(stderr=True).print(f"Invalid status: {status} ({exc})", style="bold red")
        return 1

    if fmt != "table":
        print(dump([u.to_dict() for u in units], fmt))
        return 0
    Console().print(units_table(units, title=f"Units visible to {requester.display_name}"))
    return 0


def run_unit_show(service: LedgerService, requester: Principal, unit_id: str, *, fmt: str = "json") -> int:
    try:
        unit = service.get_unit(unit_id, requester)
    except LedgerError as exc:
        return report_error(exc)

    data = unit.to_dict()
    if fmt == "table":
        data.pop("trace")
        console = Console()
        for key, value in data.items():
            console.print(f"[bold]{key}[/bold]: {value}")
        return 0
    print(dump(data, fmt))
    return 0


def run_unit_trace(service: LedgerService, requester: Principal, unit_id: str) -> int:
    try:
        unit = service.get_unit(unit_id, requester)
    except LedgerError as exc:
        return report_error(exc)

    console = Console()
    console.print(trace_table(unit))
    if unit.redacted:
        console.print("commercial fields redacted", style="dim")
    return 0


def run_unit_transition(
    service: LedgerService,
    actor: Principal,
    unit_id: str,
    kind: EventKind,
    payload: dict[str, Any],
    *,
    output_json: bool = False,
) -> int:
    """
    Apply one transition. A refused sale exits with the matching
    point-of-sale code instead of 1.
    """
    err = Console(stderr=True)
    try:
        result = service.record_event(unit_id, kind, actor, payload)
    except SaleBlockedError as exc:
        err.print(f"Sale refused: {exc}", style="bold red")
        return pos_exit_code(exc.pos_result)
    except LedgerError as exc:
        return report_error(exc)

    if output_json:
        print(dump({"unit": result.unit.to_dict(), "event": result.event.to_dict(), "replayed": result.replayed}, "json"))
        return 0

    console = Console()
    if result.replayed:
        console.print(f"{result.event.kind.value} {unit_id}: already recorded ({result.event.event_id})", style="yellow")
    else:
        console.print(
            f"[green]{result.event.kind.value}[/green] {unit_id} -> {result.unit.status.value}"
            f" [dim]({result.event.event_id})[/dim]"
        )
    return 0


def run_unit_verify(service: LedgerService, unit_id: str, *, output_json: bool = False) -> int:
    try:
        audit = service.audit_unit(unit_id)
    except LedgerError as exc:
        return report_error(exc)

    if output_json:
        print(dump(audit.to_dict(), "json"))
        return 0 if audit.ok else 1

    console = Console()
    if audit.ok:
        console.print(f"[green]OK[/green] {unit_id}: {audit.chain.events_checked} events verified")
        return 0
    if not audit.chain.valid:
        console.print(
            f"[red]BROKEN[/red] {unit_id}: event {audit.chain.failed_index}: {audit.chain.reason}"
        )
    if not audit.identity_ok:
        console.print(f"[red]BROKEN[/red] {unit_id}: identity digest does not match unit data")
    return 1


def run_unit_lookup(service: LedgerService, value: str, *, fmt: str = "table") -> int:
    """Public verifier lookup; prints no event metadata."""
    try:
        unit = service.verify_by_hash(value)
    except LedgerError as exc:
        return report_error(exc)
    if unit is None:
        Console(stderr=True).print(f"No unit with integrity hash or ledger ref {value}", style="bold red")
        return EXIT_NOT_FOUND

    if fmt != "table":
        print(dump(verifier_view(unit), fmt))
        return 0
    console = Console()
    console.print(f"[green]Genuine record[/green] {unit.unit_id}: {unit.product_name or unit.product_code}")
    console.print(f"  lot {unit.lot_number}, manufacturer {unit.manufacturer_id}, status {unit.status.value}")
    return 0


def run_pos_check(service: LedgerService, unit_id: str, scanner_id: str, *, output_json: bool = False) -> int:
    try:
        result = service.pos_check(unit_id, scanner_id)
    except LedgerError as exc:
        return report_error(exc)

    if output_json:
        print(dump(result.to_dict(), "json"))
        return pos_exit_code(result)

    style = {"VALID": "green", "DUPLICATE": "bold red", "BLOCKED": "red"}[result.verdict.value]
    Console().print(f"[{style}]{result.verdict.value}[/{style}] {unit_id}: {result.reason}")
    return pos_exit_code(result)
