"""
Unit tests for core/dashboard.py – live push messages, broadcasting and the
WebSocket endpoint (served in-process by the FastAPI TestClient).
"""
import asyncio
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from core.dashboard import (
    ConnectionManager,
    DashboardSink,
    create_app,
    cycle_message,
    trade_message,
)
from core.telemetry import TelemetryFanout
from signals.engine import CycleRecord, TransitionRecord
from signals.position import PositionState

_T = datetime(2024, 11, 1, 12, 0, tzinfo=timezone.utc)

_SCORED = CycleRecord(
    timestamp=_T, price_y=10.5, price_x=5.1,
    beta_raw=-1.9, spread=0.4, mean=0.1, std=0.2, z=1.5,
)

_ENTRY = TransitionRecord(
    timestamp=_T, kind="entry", side="short",
    from_state=PositionState.FLAT, to_state=PositionState.SHORT_SPREAD,
    z=3.4, spread=0.9, beta_raw=-1.9, beta_used=1.9, inverted=True,
    units_y=0.005, units_x=0.0095, exit_reason=None,
)


class _Recorder:
    def __init__(self):
        self.messages = []

    async def broadcast(self, data):
        self.messages.append(data)


class _Socket:
    def __init__(self, broken=False):
        self.sent = []
        self.broken = broken

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(data)


class TestMessages:

    def test_unscored_cycle_is_not_pushed(self):
        assert cycle_message("A/B", CycleRecord(timestamp=_T, price_y=10.0, price_x=5.0)) is None

    def test_cycle_message(self):
        assert cycle_message("A/B", _SCORED) == {
            "event": "data",
            "pair": "A/B",
            "timestamp": _T.isoformat(),
            "spread": 0.4,
            "rollingMean": 0.1,
            "zScore": 1.5,
        }

    def test_trade_message(self):
        msg = trade_message("A/B", _ENTRY)
        assert msg["event"] == "trade"
        assert msg["type"] == "entry"
        assert msg["positionType"] == "short"
        assert msg["originalBeta"] == pytest.approx(-1.9)
        assert msg["usedBeta"] == pytest.approx(1.9)
        assert msg["hedgeInverted"] is True
        assert msg["exitReason"] is None


class TestDashboardSink:

    def test_publishes_scored_cycles_and_trades(self):
        manager = _Recorder()
        sink = DashboardSink(manager, "A/B")
        sink.record_cycle(CycleRecord(timestamp=_T, price_y=10.0, price_x=5.0))
        sink.record_cycle(_SCORED)
        sink.record_transition(_ENTRY)
        assert [m["event"] for m in manager.messages] == ["data", "trade"]

    def test_fanout_feeds_every_sink(self):
        a, b = _Recorder(), _Recorder()
        fan = TelemetryFanout(DashboardSink(a, "A/B"), DashboardSink(b, "A/B"))
        fan.record_cycle(_SCORED)
        fan.record_transition(_ENTRY)
        assert len(a.messages) == len(b.messages) == 2


class TestConnectionManager:

    def test_broadcast_drops_dead_clients(self):
        manager = ConnectionManager()
        alive, dead = _Socket(), _Socket(broken=True)
        manager.active_connections = [alive, dead]

        asyncio.run(manager.broadcast({"event": "data", "zScore": 1.0}))

        assert alive.sent == [{"event": "data", "zScore": 1.0}]
        assert manager.active_connections == [alive]
        assert manager.last_data == {"event": "data", "zScore": 1.0}

    def test_trades_do_not_replace_latest_data(self):
        manager = ConnectionManager()
        asyncio.run(manager.broadcast({"event": "data", "zScore": 1.0}))
        asyncio.run(manager.broadcast({"event": "trade", "type": "entry"}))
        assert manager.last_data["event"] == "data"


class TestEndpoints:

    def test_new_client_gets_latest_data(self):
        manager = ConnectionManager()
        DashboardSink(manager, "A/B").record_cycle(_SCORED)
        client = TestClient(create_app(manager))

        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == cycle_message("A/B", _SCORED)

        assert client.get("/api/latest").json()["zScore"] == 1.5

    def test_latest_is_empty_before_first_score(self):
        client = TestClient(create_app(ConnectionManager()))
        assert client.get("/api/latest").json() == {}
