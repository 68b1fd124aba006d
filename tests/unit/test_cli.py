"""
Unit tests for the typer CLI.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog
from typer.testing import CliRunner

from recon_helpers import MODE, WALLET, make_position
from position_recon import __version__
from position_recon.cli import app
from position_recon.reconciliation.report import ReconcileStatus, ReconciliationReport
from position_recon.storage.json_store import JsonPositionStore

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "storage:\n"
        f"  data_dir: {tmp_path / 'data'}\n"
        f"  audit_dir: {tmp_path / 'audit'}\n"
        "monitoring:\n"
        "  log_level: WARNING\n"
        "  log_format: text\n"
        "  alert_on_cleanup: false\n"
    )
    yield path
    structlog.reset_defaults()


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_status_lists_candidates(config_file, tmp_path):
    store = JsonPositionStore(tmp_path / "data")
    asyncio.run(store.save_position(make_position("p1")))
    asyncio.run(store.save_position(make_position("p2", wallet_id="other")))

    result = runner.invoke(app, ["status", "--wallet", WALLET, "--mode", MODE, "--config", str(config_file)])

    assert result.exit_code == 0, result.stdout
    assert "Open positions (1)" in result.stdout
    assert "p1 BTCUSDT" in result.stdout
    assert "Max attempts: 3" in result.stdout


def _patched_engine(report):
    scheduler = MagicMock()
    scheduler.reconcile = AsyncMock(return_value=report)
    exchange = MagicMock()
    exchange.close = AsyncMock()
    return (
        patch("position_recon.reconciliation.scheduler.build_scheduler", return_value=scheduler),
        patch("position_recon.data.exchange_client.CcxtExchangeStateClient.from_config", return_value=exchange),
    )


def test_reconcile_prints_json(config_file):
    report = ReconciliationReport(status=ReconcileStatus.OK, wallet_id=WALLET, trading_mode=MODE, legitimate_count=2)
    build, client = _patched_engine(report)
    with build, client:
        result = runner.invoke(
            app, ["reconcile", "--wallet", WALLET, "--mode", MODE, "--config", str(config_file), "--json"]
        )

    assert result.exit_code == 0, result.stdout
    body = json.loads(result.stdout)
    assert body["status"] == "ok"
    assert body["legitimate_count"] == 2


def test_reconcile_failed_exits_nonzero(config_file):
    report = ReconciliationReport(
        status=ReconcileStatus.FAILED, wallet_id=WALLET, trading_mode=MODE,
        errors=["store down"], reason="PersistenceError",
    )
    build, client = _patched_engine(report)
    with build, client:
        result = runner.invoke(app, ["reconcile", "--wallet", WALLET, "--mode", MODE, "--config", str(config_file)])

    assert result.exit_code == 1
    assert "[FAILED]" in result.stdout
    assert "store down" in result.stdout
