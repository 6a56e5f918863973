"""CLI entrypoint for eledger."""

import logging
import sys
from pathlib import Path
from typing import Any

import click

from . import __version__
from .ledger.models import EventKind

FORMAT_CHOICE = click.Choice(["table", "json", "yaml"])


def _configure_logging(verbose: bool) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _parse_scalar(text: str) -> Any:
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    for convert in (int, float):
        try:
            return convert(text)
        except ValueError:
            continue
    return text


def _parse_pairs(pairs: tuple[str, ...], option: str) -> dict[str, Any]:
    """Parse repeated KEY=VALUE options; dotted keys build nested maps."""
    result: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint=option)
        target = result
        *parents, leaf = key.split(".")
        for part in parents:
            target = target.setdefault(part, {})
            if not isinstance(target, dict):
                raise click.BadParameter(f"{key!r} conflicts with an earlier value", param_hint=option)
        target[leaf] = _parse_scalar(value)
    return result


def _config(ctx: click.Context):
    return ctx.obj["config"]


def _service(ctx: click.Context):
    service = ctx.obj.get("service")
    if service is None:
        from .errors import LedgerError
        from .ledger.service import LedgerService

        try:
            service = LedgerService.from_config(_config(ctx))
        except (LedgerError, ValueError) as exc:
            raise click.ClickException(f"cannot open ledger store: {exc}") from exc
        ctx.obj["service"] = service
        ctx.call_on_close(service.close)
    return service


def _principal(ctx: click.Context):
    from .errors import NotFoundError

    acting = ctx.obj.get("as")
    if not acting:
        raise click.UsageError("Select the acting participant with --as <participant id> (see `eledger participants`).")
    try:
        return _config(ctx).participant(acting)
    except NotFoundError as exc:
        raise click.BadParameter(str(exc), param_hint="--as") from exc


@click.group()
@click.version_option(__version__, prog_name="eledger")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="TOML config file (defaults to ./eledger.toml when present)",
)
@click.option("--store", type=click.Choice(["local", "sqlite", "http"]), default=None, help="Override store backend")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Override data directory",
)
@click.option("--as", "acting", envvar="ELEDGER_AS", default=None, help="Acting participant id")
@click.option("--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    store: str | None,
    data_dir: Path | None,
    acting: str | None,
    verbose: bool,
) -> None:
    """eledger - tamper-evident custody ledger for excise-controlled goods.

    Track batches from distillery to shelf, detect edited history and
    refuse re-sales of already sold identities.
    """
    from .config import load_config, with_overrides

    _configure_logging(verbose)
    ctx.ensure_object(dict)
    try:
        config = with_overrides(load_config(config_path), store_backend=store, data_dir=data_dir)
    except ValueError as exc:
        raise click.ClickException(f"invalid configuration: {exc}") from exc
    ctx.obj["config"] = config
    ctx.obj["as"] = acting


# -----------------------------------------------------------------------------
# unit
# -----------------------------------------------------------------------------


@cli.group()
def unit() -> None:
    """Create, move and inspect tracked units."""


@unit.command("create")
@click.option("--product-code", required=True, help="GTIN-like product code")
@click.option("--lot", "lot_number", required=True, help="Lot / batch number")
@click.option("--unit-id", default=None, help="Unit id (generated BATCH-<ulid> when omitted)")
@click.option("--name", "product_name", default="", help="Product name")
@click.option("--quantity", type=float, default=0, help="Quantity in the batch")
@click.option("--uom", "unit_of_measure", default="units", help="Unit of measure")
@click.option("--expiry", "expiry_date", default=None, help="Expiry date (YYYY-MM-DD)")
@click.option("--production-date", default=None, help="Production date (YYYY-MM-DD)")
@click.option(
    "--duty",
    type=click.Choice(["none", "bonded", "paid"]),
    default="none",
    help="Initial compliance state: none -> CREATED, bonded -> BONDED, paid -> DUTY_PAID",
)
@click.option("--attr", "attrs", multiple=True, help="Descriptive attribute KEY=VALUE (repeatable)")
@click.option("--event-id", default=None, help="Idempotency key for the genesis event")
@click.option("--format", "fmt", type=FORMAT_CHOICE, default="table")
@click.pass_context
def unit_create(
    ctx: click.Context,
    product_code: str,
    lot_number: str,
    unit_id: str | None,
    product_name: str,
    quantity: float,
    unit_of_measure: str,
    expiry_date: str | None,
    production_date: str | None,
    duty: str,
    attrs: tuple[str, ...],
    event_id: str | None,
    fmt: str,
) -> None:
    """Register a new unit (manufacturers only)."""
    from .commands.unit_cmd import run_unit_create

    exit_code = run_unit_create(
        _service(ctx),
        _principal(ctx),
        product_code=product_code,
        lot_number=lot_number,
        unit_id=unit_id,
        product_name=product_name,
        quantity=int(quantity) if float(quantity).is_integer() else quantity,
        unit_of_measure=unit_of_measure,
        expiry_date=expiry_date,
        production_date=production_date,
        duty_paid={"none": None, "bonded": False, "paid": True}[duty],
        attributes=_parse_pairs(attrs, "--attr"),
        event_id=event_id,
        fmt=fmt,
    )
    sys.exit(exit_code)


@unit.command("list")
@click.option("--status", default=None, help="Only units in this status")
@click.option("--format", "fmt", type=FORMAT_CHOICE, default="table")
@click.pass_context
def unit_list(ctx: click.Context, status: str | None, fmt: str) -> None:
    """List the units visible to the acting participant."""
    from .commands.unit_cmd import run_unit_list

    sys.exit(run_unit_list(_service(ctx), _principal(ctx), status=status, fmt=fmt))


@unit.command("show")
@click.argument("unit_id")
@click.option("--format", "fmt", type=FORMAT_CHOICE, default="json")
@click.pass_context
def unit_show(ctx: click.Context, unit_id: str, fmt: str) -> None:
    """Show one unit with its trace."""
    from .commands.unit_cmd import run_unit_show

    sys.exit(run_unit_show(_service(ctx), _principal(ctx), unit_id, fmt=fmt))


@unit.command("trace")
@click.argument("unit_id")
@click.pass_context
def unit_trace(ctx: click.Context, unit_id: str) -> None:
    """Print the chain of custody of a unit."""
    from .commands.unit_cmd import run_unit_trace

    sys.exit(run_unit_trace(_service(ctx), _principal(ctx), unit_id))


def _transition_options(func):
    func = click.option("--json", "output_json", is_flag=True, help="Output as JSON")(func)
    func = click.option("--event-id", default=None, help="Idempotency key for this event")(func)
    func = click.option("--meta", "meta", multiple=True, help="Event metadata KEY=VALUE (repeatable)")(func)
    func = click.option("--location", default=None, help="Where the event happened")(func)
    return func


def _run_transition(
    ctx: click.Context,
    unit_id: str,
    kind: EventKind,
    payload: dict[str, Any],
    location: str | None,
    meta: tuple[str, ...],
    event_id: str | None,
    output_json: bool,
) -> None:
    from .commands.unit_cmd import run_unit_transition

    payload.update(
        {
            "location": location,
            "metadata": _parse_pairs(meta, "--meta") or None,
            "event_id": event_id,
        }
    )
    payload = {k: v for k, v in payload.items() if v is not None}
    sys.exit(run_unit_transition(_service(ctx), _principal(ctx), unit_id, kind, payload, output_json=output_json))


@unit.command("dispatch")
@click.argument("unit_id")
@click.option("--to", "recipient_id", required=True, help="Recipient participant id")
@_transition_options
@click.pass_context
def unit_dispatch(ctx, unit_id, recipient_id, location, meta, event_id, output_json) -> None:
    """Ship a unit to another participant."""
    _run_transition(ctx, unit_id, EventKind.DISPATCH, {"recipient_id": recipient_id}, location, meta, event_id, output_json)


@unit.command("receive")
@click.argument("unit_id")
@_transition_options
@click.pass_context
def unit_receive(ctx, unit_id, location, meta, event_id, output_json) -> None:
    """Accept a unit in transit to you."""
    _run_transition(ctx, unit_id, EventKind.RECEIVE, {}, location, meta, event_id, output_json)


@unit.command("sell")
@click.argument("unit_id")
@click.option("--scanner", "scanner_id", default=None, help="Scanner / terminal id")
@_transition_options
@click.pass_context
def unit_sell(ctx, unit_id, scanner_id, location, meta, event_id, output_json) -> None:
    """Sell a unit at the point of sale (exit 2 duplicate, 3 blocked, 4 unknown)."""
    _run_transition(ctx, unit_id, EventKind.SALE, {"scanner_id": scanner_id}, location, meta, event_id, output_json)


@unit.command("return")
@click.argument("unit_id")
@click.option("--to", "recipient_id", required=True, help="Return target participant id")
@click.option("--reason", required=True, help="DAMAGED, EXPIRED, UNSOLD, RECALLED or INCORRECT_ITEM")
@click.option("--refund", "refund_amount", type=float, default=None, help="Refund amount")
@_transition_options
@click.pass_context
def unit_return(ctx, unit_id, recipient_id, reason, refund_amount, location, meta, event_id, output_json) -> None:
    """Send a unit back up the chain."""
    payload = {"recipient_id": recipient_id, "reason": reason, "refund_amount": refund_amount}
    _run_transition(ctx, unit_id, EventKind.RETURN, payload, location, meta, event_id, output_json)


@unit.command("recall")
@click.argument("unit_id")
@click.option("--reason", required=True, help="Recall reason")
@_transition_options
@click.pass_context
def unit_recall(ctx, unit_id, reason, location, meta, event_id, output_json) -> None:
    """Recall a unit (manufacturer of record or regulator)."""
    _run_transition(ctx, unit_id, EventKind.RECALL, {"reason": reason}, location, meta, event_id, output_json)


@unit.command("pay-duty")
@click.argument("unit_id")
@click.option("--amount", type=float, required=True, help="Excise duty paid")
@click.option("--challan", "challan_no", default=None, help="Payment challan number")
@_transition_options
@click.pass_context
def unit_pay_duty(ctx, unit_id, amount, challan_no, location, meta, event_id, output_json) -> None:
    """Record excise duty payment for a bonded unit."""
    payload = {"amount": amount, "challan_no": challan_no}
    _run_transition(ctx, unit_id, EventKind.DUTY_PAYMENT, payload, location, meta, event_id, output_json)


@unit.command("release")
@click.argument("unit_id")
@click.option("--reason", default=None, help="Release note")
@_transition_options
@click.pass_context
def unit_release(ctx, unit_id, reason, location, meta, event_id, output_json) -> None:
    """Release a quarantined unit (regulators only)."""
    _run_transition(ctx, unit_id, EventKind.RELEASE, {"reason": reason}, location, meta, event_id, output_json)


@unit.command("destroy")
@click.argument("unit_id")
@click.option("--reason", required=True, help="Destruction reason")
@_transition_options
@click.pass_context
def unit_destroy(ctx, unit_id, reason, location, meta, event_id, output_json) -> None:
    """Record destruction of a quarantined or returned unit."""
    _run_transition(ctx, unit_id, EventKind.DESTRUCTION, {"reason": reason}, location, meta, event_id, output_json)


@unit.command("verify")
@click.argument("unit_id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def unit_verify(ctx: click.Context, unit_id: str, output_json: bool) -> None:
    """Recompute a unit's hash chain and identity digest."""
    from .commands.unit_cmd import run_unit_verify

    sys.exit(run_unit_verify(_service(ctx), unit_id, output_json=output_json))


@unit.command("lookup")
@click.argument("value")
@click.option("--format", "fmt", type=FORMAT_CHOICE, default="table")
@click.pass_context
def unit_lookup(ctx: click.Context, value: str, fmt: str) -> None:
    """Find a unit by integrity hash or BLK- ledger reference."""
    from .commands.unit_cmd import run_unit_lookup

    sys.exit(run_unit_lookup(_service(ctx), value, fmt=fmt))


# -----------------------------------------------------------------------------
# pos
# -----------------------------------------------------------------------------


@cli.group()
def pos() -> None:
    """Point-of-sale checks."""


@pos.command("check")
@click.argument("unit_id")
@click.option("--scanner", "scanner_id", default="cli", help="Scanner / terminal id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def pos_check(ctx: click.Context, unit_id: str, scanner_id: str, output_json: bool) -> None:
    """Check a scanned unit: exit 0 valid, 2 duplicate, 3 blocked, 4 unknown."""
    from .commands.unit_cmd import run_pos_check

    sys.exit(run_pos_check(_service(ctx), unit_id, scanner_id, output_json=output_json))


# -----------------------------------------------------------------------------
# logistics
# -----------------------------------------------------------------------------


@cli.group()
def logistics() -> None:
    """SSCC logistics units (pallets, cases)."""


@logistics.command("create")
@click.argument("unit_ids", nargs=-1, required=True)
@click.option("--sscc", default=None, help="18-digit SSCC (generated when omitted)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def logistics_create(ctx: click.Context, unit_ids: tuple[str, ...], sscc: str | None, output_json: bool) -> None:
    """Pack owned units under one SSCC."""
    from .commands.logistics_cmd import run_logistics_create

    sys.exit(run_logistics_create(_service(ctx), _principal(ctx), list(unit_ids), sscc=sscc, output_json=output_json))


@logistics.command("list")
@click.option("--format", "fmt", type=FORMAT_CHOICE, default="table")
@click.pass_context
def logistics_list(ctx: click.Context, fmt: str) -> None:
    """List logistics units visible to the acting participant."""
    from .commands.logistics_cmd import run_logistics_list

    sys.exit(run_logistics_list(_service(ctx), _principal(ctx), fmt=fmt))


@logistics.command("dispatch")
@click.argument("sscc")
@click.option("--to", "recipient_id", required=True, help="Recipient participant id")
@click.pass_context
def logistics_dispatch(ctx: click.Context, sscc: str, recipient_id: str) -> None:
    """Dispatch every unit in a logistics unit."""
    from .commands.logistics_cmd import run_logistics_dispatch

    sys.exit(run_logistics_dispatch(_service(ctx), _principal(ctx), sscc, recipient_id))


@logistics.command("receive")
@click.argument("sscc")
@click.pass_context
def logistics_receive(ctx: click.Context, sscc: str) -> None:
    """Receive every unit in a shipped logistics unit."""
    from .commands.logistics_cmd import run_logistics_receive

    sys.exit(run_logistics_receive(_service(ctx), _principal(ctx), sscc))


# -----------------------------------------------------------------------------
# vrs
# -----------------------------------------------------------------------------


@cli.group()
def vrs() -> None:
    """Verification requests."""


@vrs.command("submit")
@click.option("--product-code", required=True)
@click.option("--lot", "lot_number", required=True)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def vrs_submit(ctx: click.Context, product_code: str, lot_number: str, output_json: bool) -> None:
    """Ask the ledger whether a product code + lot is genuine."""
    from .commands.vrs_cmd import run_vrs_submit

    sys.exit(run_vrs_submit(_service(ctx), _principal(ctx), product_code, lot_number, output_json=output_json))


@vrs.command("list")
@click.option("--format", "fmt", type=FORMAT_CHOICE, default="table")
@click.pass_context
def vrs_list(ctx: click.Context, fmt: str) -> None:
    """List verification requests you sent or answered."""
    from .commands.vrs_cmd import run_vrs_list

    sys.exit(run_vrs_list(_service(ctx), _principal(ctx), fmt=fmt))


# -----------------------------------------------------------------------------
# audit
# -----------------------------------------------------------------------------


@cli.group()
def audit() -> None:
    """Operation log and integrity audit."""


@audit.command("log")
@click.option("--last", "last_n", type=int, default=None, help="Only the last N entries")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def audit_log(ctx: click.Context, last_n: int | None, output_json: bool) -> None:
    """Show the operation log."""
    from .commands.audit_cmd import run_audit_log

    sys.exit(run_audit_log(_config(ctx).resolved_audit_path, last_n=last_n, output_json=output_json))


@audit.command("chain")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def audit_chain(ctx: click.Context, output_json: bool) -> None:
    """Verify the hash chain of every unit."""
    from .commands.audit_cmd import run_audit_chain

    sys.exit(run_audit_chain(_service(ctx), output_json=output_json))


@cli.command()
@click.pass_context
def participants(ctx: click.Context) -> None:
    """List the configured participant directory."""
    from .commands.audit_cmd import run_participants

    sys.exit(run_participants(_config(ctx)))


if __name__ == "__main__":
    cli()
