"""Verification request (VRS) CLI commands."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from ..errors import LedgerError
from ..ledger.models import Principal
from ..ledger.service import LedgerService
from ..ledger.verification import VerificationStatus
from .render import dump, report_error

_STYLES = {
    VerificationStatus.VERIFIED: "green",
    VerificationStatus.FAILED: "red",
    VerificationStatus.SUSPECT: "bold red",
    VerificationStatus.DUPLICATE: "bold red",
    VerificationStatus.PENDING: "yellow",
}


def run_vrs_submit(
    service: LedgerService,
    requester: Principal,
    product_code: str,
    lot_number: str,
    *,
    output_json: bool = False,
) -> int:
    try:
        request = service.submit_verification(product_code, lot_number, requester)
    except LedgerError as exc:
        return report_error(exc)

    if output_json:
        print(dump(request.to_dict(), "json"))
    else:
        style = _STYLES[request.status]
        Console().print(
            f"[{style}]{request.status.value}[/{style}] {product_code} lot {lot_number}: {request.reason}"
            f" [dim]({request.request_id})[/dim]"
        )
    return 0 if request.status == VerificationStatus.VERIFIED else 1


def run_vrs_list(service: LedgerService, principal: Principal, *, fmt: str = "table") -> int:
    try:
        requests = service.verification_history(principal)
    except LedgerError as exc:
        return report_error(exc)

    if fmt != "table":
        print(dump([r.to_dict() for r in requests], fmt))
        return 0

    table = Table(title="Verification requests")
    table.add_column("request_id", style="cyan", no_wrap=True)
    table.add_column("product")
    table.add_column("lot")
    table.add_column("status")
    table.add_column("requester")
    table.add_column("responder")
    table.add_column("requested_at", style="dim")
    for r in requests:
        table.add_row(
            r.request_id,
            r.product_code,
            r.lot_number,
            f"[{_STYLES[r.status]}]{r.status.value}[/{_STYLES[r.status]}]",
            r.requester_id,
            r.responder_id or "",
            r.requested_at.strftime("%Y-%m-%d %H:%M"),
        )
    Console().print(table)
    return 0
