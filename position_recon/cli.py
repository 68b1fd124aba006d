"""
CLI entrypoint for the position reconciliation engine.

Provides commands for reconcile and status.
"""
import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from position_recon import __version__
from position_recon.config.config import Config, load_config
from position_recon.monitoring.logger import get_logger, setup_logging

app = typer.Typer(
    name="position-recon",
    help="Ghost position detection and cleanup",
    add_completion=False,
)

logger = get_logger(__name__)


def _load(config_path: Optional[Path]) -> Config:
    config = load_config(str(config_path) if config_path else None)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)
    return config


def _print_report(report, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(report.to_dict(include_positions=True), indent=2, default=str))
        return
    colors = {
        "ok": typer.colors.GREEN,
        "throttled": typer.colors.YELLOW,
        "suppressed": typer.colors.YELLOW,
        "failed": typer.colors.RED,
    }
    typer.secho(
        f"[{report.status.value.upper()}] {report.wallet_id}/{report.trading_mode}",
        fg=colors.get(report.status.value),
        bold=True,
    )
    if report.reason:
        typer.echo(f"  Reason:       {report.reason}")
    typer.echo(f"  Ghosts found: {report.ghosts_found}")
    typer.echo(f"  Cleaned:      {report.ghosts_cleaned}")
    typer.echo(f"  Legitimate:   {report.legitimate_count}")
    for a in report.assessments:
        typer.echo(
            f"    {a.position.id} {a.position.symbol or '-'} "
            f"{a.classification.verdict.value} score={a.factors.ghost_score:.1f} ({a.classification.reason})"
        )
    for err in report.errors:
        typer.secho(f"  Error: {err}", fg=typer.colors.RED)


@app.command()
def reconcile(
    wallet: str = typer.Option(..., "--wallet", help="Wallet id"),
    mode: str = typer.Option(..., "--mode", help="Trading mode (e.g. live, paper)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
    loop: bool = typer.Option(False, "--loop", help="Keep reconciling every --interval seconds"),
    interval: float = typer.Option(60.0, "--interval", help="Seconds between passes in --loop mode"),
    reset_stale_after: Optional[float] = typer.Option(
        None, "--reset-stale-after",
        help="In --loop mode, reset suppressed wallets whose last attempt is older than this many seconds",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """
    Run a reconciliation pass and print the report.

    Example:
        position-recon reconcile --wallet main --mode live
    """
    config = _load(config_path)

    from position_recon.data.exchange_client import CcxtExchangeStateClient
    from position_recon.monitoring.alerting import alert_on_ghosts_cleaned
    from position_recon.monitoring.notifier import NotificationBus
    from position_recon.reconciliation.report import ReconcileStatus
    from position_recon.reconciliation.scheduler import build_scheduler
    from position_recon.storage.audit import JsonFileAuditSink
    from position_recon.storage.json_store import JsonPositionStore

    async def run() -> bool:
        store = JsonPositionStore.from_config(config.storage)
        exchange = CcxtExchangeStateClient.from_config(config.exchange)
        audit_sink = JsonFileAuditSink(config.storage.audit_dir)
        bus = NotificationBus(max_queue_size=config.monitoring.notification_queue_size)
        if config.monitoring.alert_on_cleanup:
            bus.subscribe("ghosts-cleaned", alert_on_ghosts_cleaned)

        scheduler = build_scheduler(config, store, exchange, audit_sink, bus)
        await bus.start()
        try:
            while True:
                report = await scheduler.reconcile(wallet, mode)
                _print_report(report, as_json)
                if not loop:
                    return report.status is not ReconcileStatus.FAILED
                if reset_stale_after is not None:
                    scheduler.reset_stale_attempts(reset_stale_after)
                await asyncio.sleep(interval)
        finally:
            await bus.stop()
            await exchange.close()

    try:
        ok = asyncio.run(run())
    except KeyboardInterrupt:
        typer.echo("Interrupted")
        return
    if not ok:
        raise typer.Exit(1)


@app.command()
def status(
    wallet: str = typer.Option(..., "--wallet", help="Wallet id"),
    mode: str = typer.Option(..., "--mode", help="Trading mode (e.g. live, paper)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """
    Show reconciliation candidates and gate settings for a wallet.

    Attempt counters live in the reconciling process; this shows the store side.
    """
    config = _load(config_path)

    from position_recon.storage.json_store import JsonPositionStore

    store = JsonPositionStore.from_config(config.storage)
    positions = asyncio.run(store.list_open_positions(wallet, mode))
    rc = config.reconciliation

    typer.echo("Reconciliation Status")
    typer.echo("=" * 50)
    typer.echo(f"Environment:  {config.environment}")
    typer.echo(f"Wallet:       {wallet}/{mode}")
    typer.echo(f"Enabled:      {rc.reconcile_enabled}")
    typer.echo(f"Throttle:     {int(rc.throttle_seconds * 1000)} ms")
    typer.echo(f"Max attempts: {rc.max_attempts}")
    typer.echo(f"Cleanup:      {rc.cleanup_action}")
    typer.echo(f"\nOpen positions ({len(positions)})")
    typer.echo("-" * 50)
    for p in positions:
        typer.echo(f"  {p.id} {p.symbol or '-'} qty={p.expected_quantity} status={p.status.value}")
    typer.echo("=" * 50)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"position-recon v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", help="Show version and exit", is_eager=True, callback=_version_callback,
    ),
):
    """
    Position Reconciliation Engine
    """


if __name__ == "__main__":
    app()
