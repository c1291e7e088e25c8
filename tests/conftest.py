"""
conftest.py – isolate side effects and share synthetic price paths.

Every test gets its own SQLite file (storage.DB is redirected to tmp_path) and
Telegram is treated as unconfigured, so no test touches the network or the
real bot.db.

Synthetic pair used across the suite:
    X_t = 5 + 0.5 * sin(t / 3),   Y_t = X_t ** 2
log(Y) = 2 * log(X) exactly, so the hedge ratio is 2.0 and the spread
X^2 - 2X oscillates with a bounded z-score (|z| < 2 on ordinary samples).
"""
import math
from datetime import datetime, timedelta, timezone

import pytest

import storage
from signals.buffer import PriceSample
from signals.config import PairsConfig
from signals.engine import PairContext, run_cycle
from signals.position import Side

T0 = datetime(2024, 11, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_db(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "DB", tmp_path / "bot.db")
    storage.init_db()


@pytest.fixture(autouse=True)
def _no_telegram(monkeypatch):
    import apps.alert
    monkeypatch.setattr(apps.alert, "_telegram_cfg", lambda: None)


def ts(i: int) -> datetime:
    return T0 + timedelta(minutes=5 * i)


def pair_prices(i: int):
    px = 5.0 + 0.5 * math.sin(i / 3.0)
    return px * px, px


@pytest.fixture
def cfg():
    return PairsConfig()


@pytest.fixture
def make_sample():
    def _make(i: int, price_y: float = None, price_x: float = None) -> PriceSample:
        if price_y is None or price_x is None:
            price_y, price_x = pair_prices(i)
        return PriceSample(timestamp=ts(i), price_y=price_y, price_x=price_x)
    return _make


class AckingVenue:
    """Acknowledges every order and remembers it."""

    def __init__(self):
        self.orders = []

    def place_order(self, market, side, units):
        from core.execution import OrderAck
        self.orders.append((market, side, units))
        return OrderAck(ok=True, market=market, side=side, units=units,
                        order_id=f"o{len(self.orders)}")


class FailingVenue(AckingVenue):
    """Fails the order with the given 1-based index (raise or ok=False)."""

    def __init__(self, fail_on: int, raise_error: bool = False):
        super().__init__()
        self.fail_on = fail_on
        self.raise_error = raise_error

    def place_order(self, market, side, units):
        from core.execution import OrderAck
        self.orders.append((market, side, units))
        if len(self.orders) == self.fail_on:
            if self.raise_error:
                raise ConnectionError("venue unreachable")
            return OrderAck(ok=False, market=market, side=side, units=units,
                            error="insufficient margin")
        return OrderAck(ok=True, market=market, side=side, units=units,
                        order_id=f"o{len(self.orders)}")


class ListSink:
    def __init__(self):
        self.cycles = []
        self.transitions = []

    def record_cycle(self, record):
        self.cycles.append(record)

    def record_transition(self, transition):
        self.transitions.append(transition)


@pytest.fixture
def venue():
    return AckingVenue()


@pytest.fixture
def failing_venue():
    return FailingVenue


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def warm_context(make_sample):
    """Context fed `n` ordinary samples (indices 0..n-1); no intent can fire on them."""
    def _warm(cfg: PairsConfig, n: int = 100) -> PairContext:
        ctx = PairContext.create(cfg)
        v = AckingVenue()
        for i in range(n):
            run_cycle(ctx, make_sample(i), v)
        assert v.orders == []
        return ctx
    return _warm


@pytest.fixture
def open_short():
    """Builds a SHORT_SPREAD position on the reference markets."""
    from signals.hedge import HedgeRoles
    from signals.position import OrderLeg, Position, PositionState

    def _open(cfg: PairsConfig, units_y: float = 0.005, units_x: float = 0.01) -> Position:
        return Position(
            state=PositionState.SHORT_SPREAD,
            entry_z=3.4,
            units_y=units_y,
            units_x=units_x,
            legs=(
                OrderLeg(market=cfg.y_market, side=Side.SELL, units=units_y),
                OrderLeg(market=cfg.x_market, side=Side.BUY, units=units_x),
            ),
            roles=HedgeRoles.NORMAL,
            opened_at=T0,
        )
    return _open
