"""
Integration tests for a full reconciliation pass: scheduler -> analyzer ->
classifier -> cleanup -> attempt tracker.
"""
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from recon_helpers import MODE, NOW, WALLET, Engine, make_order, make_position, make_trade
from position_recon.config.config import Config
from position_recon.data.exchange_client import CcxtExchangeStateClient
from position_recon.domain.models import PositionStatus
from position_recon.monitoring.notifier import NotificationBus
from position_recon.reconciliation.classifier import GhostVerdict
from position_recon.reconciliation.report import ReconcileStatus
from position_recon.reconciliation.scheduler import build_scheduler
from position_recon.storage.audit import JsonFileAuditSink
from position_recon.storage.json_store import JsonPositionStore


class TestScenarios:

    @pytest.mark.asyncio
    async def test_clean_pass(self):
        engine = Engine(positions=[make_position("p1", expected="1.0", price="50000")], holdings={"BTC": "1.0"})
        # Prior ghost-finding passes must not survive a clean one
        engine.tracker.record_attempt(WALLET, MODE, ghosts_found=1)
        engine.tracker.record_attempt(WALLET, MODE, ghosts_found=1)

        report = await engine.reconcile()

        assert report.status == ReconcileStatus.OK
        assert report.ghosts_found == 0
        assert report.ghosts_cleaned == 0
        assert report.legitimate_count == 1
        assert engine.tracker.get_state(WALLET, MODE).attempt_count == 0
        assert engine.audit.snapshots == []

    @pytest.mark.asyncio
    async def test_high_confidence_ghost(self):
        engine = Engine(positions=[make_position("p1", expected="1.0", price="50000")], holdings={"BTC": "0.02"})

        report = await engine.reconcile()

        assert report.ghosts_found == 1
        assert report.ghosts_cleaned == 1
        assert report.assessments[0].classification.verdict == GhostVerdict.GHOST_HIGH
        assert engine.journal[0][0] == "snapshot"
        assert engine.journal[1] == ("delete", "p1")
        assert "p1" not in engine.store.positions
        assert engine.bus.events[0][0] == "ghosts-cleaned"

    @pytest.mark.asyncio
    async def test_corrupted_price(self):
        engine = Engine(positions=[make_position("p1", expected="1.0", price="0")], holdings={"BTC": "1.0"})

        report = await engine.reconcile()

        assessment = report.assessments[0]
        assert assessment.factors.quantity_match.ratio == Decimal("1")
        assert assessment.classification.verdict == GhostVerdict.GHOST_HIGH
        assert report.ghosts_cleaned == 1

    @pytest.mark.asyncio
    async def test_mismatch_with_trade_history_is_legitimate(self):
        engine = Engine(
            positions=[make_position("p1", expected="1.0", age_hours=72)],
            holdings={"BTC": "0.80"},
            trades={"p1": [make_trade("p1")]},
        )

        report = await engine.reconcile()

        assert report.legitimate_count == 1
        assert report.ghosts_found == 0
        assert "p1" in engine.store.positions

    @pytest.mark.asyncio
    async def test_medium_confidence_ghost_cleaned(self):
        engine = Engine(positions=[make_position("p1", expected="1.0", age_hours=72)], holdings={"BTC": "0.80"})

        report = await engine.reconcile()

        assert report.assessments[0].classification.verdict == GhostVerdict.GHOST_MEDIUM
        assert report.ghosts_cleaned == 1

    @pytest.mark.asyncio
    async def test_exchange_orders_protect_position(self):
        engine = Engine(
            positions=[make_position("p1", expected="1.0", age_hours=72)],
            holdings={"BTC": "0.80"},
            orders=[make_order("BTC/USDT", "buy", hours_ago=71)],
        )

        report = await engine.reconcile()

        assert report.legitimate_count == 1

    @pytest.mark.asyncio
    async def test_exchange_outage_keeps_positions(self):
        engine = Engine(positions=[make_position("p1"), make_position("p2", symbol="ETHUSDT")], holdings={})
        engine.exchange.fail_holdings = True
        engine.exchange.fail_orders = True

        report = await engine.reconcile()

        assert report.status == ReconcileStatus.OK
        assert report.ghosts_found == 0
        assert report.legitimate_count == 2
        assert len(engine.store.positions) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("held", ["Infinity", "NaN"])
    async def test_non_finite_holdings_keep_position(self, held):
        engine = Engine(positions=[make_position("p1", expected="1.0")], holdings={"BTC": held})

        report = await engine.reconcile()

        assessment = report.assessments[0]
        assert assessment.classification.verdict == GhostVerdict.LEGITIMATE
        assert assessment.factors.quantity_match.ratio is None
        assert report.ghosts_found == 0
        assert "p1" in engine.store.positions
        assert engine.journal == []

    @pytest.mark.asyncio
    async def test_loop_suppression(self):
        engine = Engine(positions=[make_position("p1")], holdings={"BTC": "0.02"})
        engine.store.fail_writes = True

        for _ in range(3):
            report = await engine.reconcile()
            assert report.status == ReconcileStatus.OK
            assert report.ghosts_found == 1
            assert report.ghosts_cleaned == 0
            assert len(report.errors) == 1
            engine.clock.advance(60)

        holdings_calls = engine.exchange.holdings_calls
        report = await engine.reconcile()

        assert report.status == ReconcileStatus.SUPPRESSED
        assert engine.exchange.holdings_calls == holdings_calls
        assert engine.store.list_calls == 3

    @pytest.mark.asyncio
    async def test_successful_cleanup_then_clean_pass_resets(self):
        engine = Engine(positions=[make_position("p1")], holdings={"BTC": "0.02"})

        await engine.reconcile()
        assert engine.tracker.get_state(WALLET, MODE).attempt_count == 1

        engine.clock.advance(31)
        report = await engine.reconcile()
        assert report.ghosts_found == 0
        assert engine.tracker.get_state(WALLET, MODE).attempt_count == 0

    @pytest.mark.asyncio
    async def test_mixed_wallet(self):
        engine = Engine(
            positions=[
                make_position("ok", symbol="BTCUSDT", expected="1.0"),
                make_position("ghost", symbol="ETHUSDT", expected="5.0"),
                make_position("corrupt", symbol=None),
                make_position("closed", symbol="SOLUSDT", status=PositionStatus.CLOSED),
            ],
            holdings={"BTC": "1.0", "ETH": "0"},
        )

        report = await engine.reconcile()

        verdicts = {a.position.id: a.classification.verdict for a in report.assessments}
        assert verdicts == {
            "ok": GhostVerdict.LEGITIMATE,
            "ghost": GhostVerdict.GHOST_HIGH,
            "corrupt": GhostVerdict.GHOST_HIGH,
        }
        assert report.ghosts_cleaned == 2
        label, records = engine.audit.snapshots[0]
        assert sorted(r["id"] for r in records) == ["corrupt", "ghost"]


class TestEndToEnd:
    """Real JSON store, audit sink and notification bus; ccxt mocked."""

    @pytest.mark.asyncio
    async def test_json_backed_pass(self, tmp_path):
        config = Config()
        config.storage.data_dir = tmp_path / "data"
        config.storage.audit_dir = tmp_path / "audit"
        config.reconciliation.cleanup_action = "mark_closed"

        store = JsonPositionStore.from_config(config.storage)
        old = NOW - timedelta(days=3)
        for position in (
            make_position("p1", symbol="BTCUSDT", expected="1.0"),
            make_position("p2", symbol="ETH/USDT", expected="2.0"),
        ):
            position.created_at = old
            await store.save_position(position)

        ccxt_exchange = MagicMock()
        ccxt_exchange.fetch_balance = AsyncMock(return_value={
            "free": {"BTC": 1.0, "USDT": 500.0},
            "used": {},
        })
        ccxt_exchange.fetch_closed_orders = AsyncMock(return_value=[])
        exchange = CcxtExchangeStateClient(api_key="k", api_secret="s", exchange=ccxt_exchange)
        audit = JsonFileAuditSink(config.storage.audit_dir)
        bus = NotificationBus()
        received = []
        bus.subscribe("ghosts-cleaned", lambda event: received.append(event.payload))

        scheduler = build_scheduler(config, store, exchange, audit, bus)
        report = await scheduler.reconcile(WALLET, MODE)
        await bus.drain()

        assert report.status == ReconcileStatus.OK
        assert report.ghosts_found == 1
        assert report.ghosts_cleaned == 1
        assert [p.id for p in await store.list_open_positions(WALLET, MODE)] == ["p1"]

        closed = await store.get_position("p2")
        assert closed.exit_reason == "ghost_position_purge"

        backups = list((tmp_path / "audit").glob("ghost-positions-backup-W1-live-*.json"))
        assert len(backups) == 1
        assert json.loads(backups[0].read_text())["records"][0]["id"] == "p2"

        assert received[0]["ghosts_cleaned"] == 1
        assert ccxt_exchange.fetch_balance.await_count == 1
