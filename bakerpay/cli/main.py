"""Main CLI entry point."""

import threading
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from bakerpay.services.errors import ChainClientError, PayoutError

app = typer.Typer(
    name="bakerpay",
    help="Tezos baker reward payouts",
    add_completion=False,
)

console = Console()

MUTEZ_PER_TEZ: int = 1_000_000


def format_tez(mutez: int) -> str:
    whole, frac = divmod(mutez, MUTEZ_PER_TEZ)
    return f"{whole:,}.{frac:06d}"


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=1)


# ── Wiring ────────────────────────────────────────────────────────────────────


def build_client(settings):
    from bakerpay.services.chain_client import TezosClient

    return TezosClient(
        rpc_url=settings.chain.rpc_url,
        timeout=settings.chain.rpc_timeout,
        retry_attempts=settings.chain.retry_attempts,
        retry_delay=settings.chain.retry_delay,
    )


def load_key(settings):
    from bakerpay.tezos.keys import Key

    secret: str = settings.baker.secret_key.get_secret_value()
    if not secret:
        _fail("BAKER_SECRET_KEY is not set")
    return Key.from_encoded_key(secret, settings.baker.passphrase)


def build_processor(settings, chain, key):
    from bakerpay.services.processor import OperationLimits, PayoutProcessor

    return PayoutProcessor(
        chain,
        key,
        OperationLimits(
            network_fee=settings.operation.network_fee,
            gas_limit=settings.operation.gas_limit,
            storage_limit=settings.operation.storage_limit,
        ),
    )


def build_payout(settings, chain, cycle: int):
    """Assemble and filter the payout for *cycle* with the configured rules."""
    from bakerpay.services.payouts import PayoutAssembler, apply_filters

    assembler = PayoutAssembler(
        chain,
        fee_rate=settings.baker.fee_rate,
        max_workers=settings.chain.max_workers,
        fail_fast=settings.fail_fast,
        sort_by_address=settings.sort_by_address,
    )
    payout = assembler.assemble(settings.baker.delegate, cycle)
    return apply_filters(
        payout,
        minimum_payment=settings.baker.minimum_payment,
        blacklist=settings.baker.blacklist_addresses,
    )


def _require_delegate(settings) -> None:
    if not settings.baker.delegate:
        _fail("BAKER_DELEGATE is not set")


# ── Output ────────────────────────────────────────────────────────────────────


def print_payout(payout) -> None:
    table = Table(title=f"Payout for cycle {payout.cycle}")
    table.add_column("Delegator", style="cyan")
    table.add_column("Share", justify="right")
    table.add_column("Gross (ꜩ)", justify="right")
    table.add_column("Fee (ꜩ)", justify="right")
    table.add_column("Net (ꜩ)", justify="right", style="green")

    for e in payout.earnings:
        table.add_row(
            e.delegator,
            f"{e.share:.6f}",
            format_tez(e.gross_rewards),
            format_tez(e.fee),
            format_tez(e.net_rewards),
        )
    table.add_section()
    table.add_row(
        "Total",
        "",
        format_tez(payout.total_gross),
        format_tez(payout.total_fee),
        format_tez(payout.total_net),
    )
    console.print(table)
    console.print(
        f"Frozen rewards: {format_tez(payout.frozen_balance.rewards)} ꜩ  "
        f"Staking balance: {format_tez(payout.staking_balance)} ꜩ"
    )

    if payout.excluded:
        console.print(f"\n[yellow]Excluded ({len(payout.excluded)}):[/yellow]")
        for x in payout.excluded:
            console.print(
                f"  {x.earning.delegator}  {format_tez(x.earning.net_rewards)} ꜩ  ({x.reason})"
            )
    if payout.failures:
        console.print(f"\n[red]Lookup failures ({len(payout.failures)}):[/red]")
        for f in payout.failures[:10]:
            console.print(f"  {f.delegator}: {f.error}")
        if len(payout.failures) > 10:
            console.print(f"  ... and {len(payout.failures) - 10} more")


# ── Commands ──────────────────────────────────────────────────────────────────


@app.callback()
def main() -> None:
    """Configure logging before any command runs."""
    from bakerpay.logging_config import setup_logging
    from config import get_settings

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)


@app.command()
def init_db(
    force: bool = typer.Option(False, "--force", "-f", help="Drop and recreate tables"),
):
    """Initialize the payout ledger schema."""
    from db.connection import get_engine, init_db as create_tables
    from db.models import Base

    with console.status("Initializing database..."):
        if force:
            Base.metadata.drop_all(get_engine())
            console.print("[yellow]Dropped existing tables[/yellow]")
        create_tables()

    console.print("[green]Database initialized successfully[/green]")


@app.command()
def key_info():
    """Show the public key and address of the configured secret key."""
    from config import get_settings

    settings = get_settings()
    try:
        key = load_key(settings)
    except PayoutError as e:
        _fail(f"Invalid secret key: {e}")

    table = Table(title="Payout key")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Curve", key.kind.value)
    table.add_row("Public key", key.public_key)
    table.add_row("Address", key.public_key_hash)
    if settings.baker.delegate:
        table.add_row("Delegate", settings.baker.delegate)
    console.print(table)


@app.command()
def run(
    cycle: int = typer.Option(..., "--cycle", "-c", help="Cycle to pay"),
    execute: bool = typer.Option(False, "--execute", help="Forge, sign and inject the payout"),
    force: bool = typer.Option(False, "--force", help="Pay even if the ledger says it was paid"),
):
    """Compute the payout for a cycle (dry run unless --execute)."""
    from bakerpay.services.ledger import PayoutLedger
    from bakerpay.services.schemas import PayoutResult
    from config import get_settings
    from db.connection import get_session, init_db as create_tables

    settings = get_settings()
    _require_delegate(settings)
    create_tables()

    with get_session() as session:
        if execute and not force and PayoutLedger(session).is_cycle_paid(
            settings.baker.delegate, cycle
        ):
            _fail(f"Cycle {cycle} was already paid; use --force to pay again")

    chain = build_client(settings)
    payout = None
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(f"Computing payout for cycle {cycle}...", total=None)
            payout = build_payout(settings, chain, cycle)
            progress.remove_task(task)

        print_payout(payout)

        has_key: bool = bool(settings.baker.secret_key.get_secret_value())
        if not execute and not has_key:
            console.print("\n[yellow]Dry run: no secret key configured, nothing signed[/yellow]")
            return

        processor = build_processor(settings, chain, load_key(settings))
        result = processor.process(payout) if execute else processor.dry_run(payout)
    except (PayoutError, ChainClientError) as e:
        if execute and payout is not None:
            with get_session() as session:
                PayoutLedger(session).record_result(
                    PayoutResult(
                        cycle=cycle,
                        delegate=settings.baker.delegate,
                        success=False,
                        payout=payout,
                        error=f"{type(e).__name__}: {e}",
                    ),
                    settings.snapshot(),
                )
        _fail(f"Payout for cycle {cycle} failed: {e}")
    finally:
        chain.close()

    with get_session() as session:
        PayoutLedger(session).record_result(result, settings.snapshot())

    if result.dry_run:
        console.print(
            f"\n[yellow]Dry run[/yellow]: operation {result.operation_hash or '-'} "
            "was signed but not injected"
        )
    elif result.operation_hash:
        console.print(f"\n[green]Injected operation {result.operation_hash}[/green]")
    else:
        console.print("\n[yellow]Nothing to pay[/yellow]")


@app.command()
def serv():
    """Watch for new cycles and pay each one as it appears."""
    from bakerpay.services.ledger import PayoutLedger, ledger_observer
    from bakerpay.services.payout_queue import PayoutQueue
    from bakerpay.services.scheduler import CycleWatcher
    from config import get_settings
    from db.connection import get_session, init_db as create_tables

    settings = get_settings()
    _require_delegate(settings)
    create_tables()

    try:
        key = load_key(settings)
    except PayoutError as e:
        _fail(f"Invalid secret key: {e}")
    chain = build_client(settings)
    processor = build_processor(settings, chain, key)

    def already_paid(cycle: int) -> bool:
        with get_session() as session:
            return PayoutLedger(session).is_cycle_paid(settings.baker.delegate, cycle)

    def report(result) -> None:
        if result.success:
            console.print(
                f"[green]Cycle {result.cycle} paid[/green] {result.operation_hash or '(nothing to pay)'}"
            )
        else:
            console.print(f"[red]Cycle {result.cycle} failed:[/red] {result.error}")

    payout_queue = PayoutQueue(processor.process)
    payout_queue.subscribe(ledger_observer(get_session, settings.snapshot()))
    payout_queue.subscribe(report)

    watcher = CycleWatcher(
        chain,
        payout_queue,
        build=lambda cycle: build_payout(settings, chain, cycle),
        poll_interval=settings.chain.poll_interval,
        wait_for_unfreeze=settings.baker.wait_for_unfreeze,
        already_paid=already_paid,
    )

    console.print(
        f"Paying delegators of {settings.baker.delegate} from {key.public_key_hash} "
        f"(polling every {settings.chain.poll_interval:g}s, Ctrl-C to stop)"
    )
    stop = threading.Event()
    payout_queue.start()
    try:
        watcher.run_forever(stop)
    except KeyboardInterrupt:
        stop.set()
        console.print("\n[yellow]Stopping; finishing queued payouts...[/yellow]")
    finally:
        payout_queue.stop()
        chain.close()


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show"),
    delegate: Optional[str] = typer.Option(None, "--delegate", "-d", help="Filter by delegate"),
):
    """List recorded payout runs."""
    from bakerpay.services.ledger import PayoutLedger
    from db.connection import get_session, init_db as create_tables

    create_tables()
    with get_session() as session:
        runs = PayoutLedger(session).list_runs(limit=limit, delegate=delegate)

    if not runs:
        console.print("[yellow]No payout runs recorded[/yellow]")
        return

    table = Table(title="Payout runs")
    table.add_column("Cycle", justify="right", style="cyan")
    table.add_column("Status")
    table.add_column("Delegators", justify="right")
    table.add_column("Net (ꜩ)", justify="right", style="green")
    table.add_column("Operation")
    table.add_column("Recorded")

    status_style: dict[str, str] = {
        "success": "green",
        "empty": "dim",
        "dry_run": "yellow",
        "failed": "red",
    }
    for r in runs:
        style: str = status_style.get(r["status"], "white")
        table.add_row(
            str(r["cycle"]),
            f"[{style}]{r['status']}[/{style}]",
            str(r["delegator_count"]),
            format_tez(r["total_net"]),
            r["operation_hash"] or (r["error_details"] or "-")[:60],
            r["created_at"][:19],
        )
    console.print(table)


if __name__ == "__main__":
    app()
