"""
Tests for apps/jobs.py – the polling job around the engine, persistence and
operator reconciliation. Prices come from fake sources; Telegram messages are
captured instead of sent.
"""
import logging

import pytest
import requests

import apps.jobs as jobs
import storage
from core.prices import JupiterPriceSource
from core.telemetry import TelemetryRecorder
from signals.engine import PairContext
from signals.errors import DataUnavailable, PartialExecutionFailure
from signals.position import Position, PositionState


@pytest.fixture
def sent(monkeypatch):
    messages = []
    monkeypatch.setattr(jobs, "send", messages.append)
    return messages


@pytest.fixture
def recorder(tmp_path, cfg):
    return TelemetryRecorder(tmp_path / "prices.csv", cfg.pair_id)


def _feed(monkeypatch, sample):
    monkeypatch.setattr(jobs, "fetch_sample", lambda source, cfg: sample)


def _spike(make_sample, i):
    base = make_sample(i)
    return make_sample(i, price_y=base.price_y * 2.0, price_x=base.price_x)


class _DownSession:
    def __init__(self):
        self.calls = 0

    def get(self, url, params=None, timeout=None):
        self.calls += 1
        raise requests.ConnectionError("jupiter unreachable")


class TestPollJob:

    def test_price_failure_skips_cycle(self, cfg, venue, recorder, sent, monkeypatch):
        def _fail(source, cfg):
            raise DataUnavailable("price fetch failed for token X")
        monkeypatch.setattr(jobs, "fetch_sample", _fail)

        ctx = PairContext.create(cfg)
        assert jobs.poll_job(ctx, None, venue, recorder) is None
        assert ctx.samples.total == 0
        assert not recorder.csv_path.exists()
        assert sent == []

    def test_quote_outage_is_logged_below_warning(self, cfg, venue, recorder, sent, caplog):
        caplog.set_level(logging.DEBUG)
        source = JupiterPriceSource(session=_DownSession())
        ctx = PairContext.create(cfg)

        assert jobs.poll_job(ctx, source, venue, recorder) is None
        assert source.session.calls == 1
        assert caplog.records
        assert max(r.levelno for r in caplog.records) <= logging.INFO

    def test_warm_up_cycle_persists_flat_state(self, cfg, make_sample, venue, recorder, sent, monkeypatch):
        _feed(monkeypatch, make_sample(0))
        ctx = PairContext.create(cfg)
        result = jobs.poll_job(ctx, None, venue, recorder)

        assert result.record.beta_raw is None
        assert recorder.csv_path.exists()
        assert storage.get_pair_state(cfg.pair_id)["state"] == "FLAT"
        assert sent == []

    def test_entry_is_persisted_and_announced(self, cfg, warm_context, make_sample, venue, recorder, sent, monkeypatch):
        ctx = warm_context(cfg)
        _feed(monkeypatch, _spike(make_sample, 100))
        result = jobs.poll_job(ctx, None, venue, recorder)

        assert result.transition.kind == "entry"
        row = storage.get_pair_state(cfg.pair_id)
        assert row["state"] == "SHORT_SPREAD"
        assert len(row["legs"]) == 2
        assert len(sent) == 1
        assert "ENTER SHORT" in sent[0]
        assert storage.get_recent_transitions(cfg.pair_id)[0]["kind"] == "entry"

    def test_stop_loss_exit_announced_distinctly(self, cfg, warm_context, make_sample, open_short, venue, recorder, sent, monkeypatch):
        ctx = warm_context(cfg)
        jobs.persist_context(PairContext.create(cfg, position=open_short(cfg)))
        _feed(monkeypatch, _spike(make_sample, 100))
        result = jobs.poll_job(ctx, None, venue, recorder)

        assert result.transition.exit_reason == "stop_loss"
        assert "STOP LOSS" in sent[0]
        assert storage.get_pair_state(cfg.pair_id)["state"] == "FLAT"

    def test_partial_execution_halts_and_alerts(self, cfg, warm_context, make_sample, failing_venue, recorder, sent, monkeypatch):
        ctx = warm_context(cfg)
        _feed(monkeypatch, _spike(make_sample, 100))

        with pytest.raises(PartialExecutionFailure):
            jobs.poll_job(ctx, None, failing_venue(fail_on=2), recorder)

        row = storage.get_pair_state(cfg.pair_id)
        assert row["halted"] is True
        assert row["state"] == "FLAT"
        assert "PARTIAL EXECUTION" in sent[0]

    def test_halt_survives_restart(self, cfg, make_sample, venue, recorder, sent, monkeypatch):
        storage.set_halted(cfg.pair_id, True, "partial entry")
        ctx = PairContext.create(cfg)
        _feed(monkeypatch, make_sample(0))
        jobs.poll_job(ctx, None, venue, recorder)
        assert ctx.halted is True
        assert storage.get_pair_state(cfg.pair_id)["halted"] is True

    def test_rejected_order_warns_without_transition(self, cfg, warm_context, make_sample, failing_venue, recorder, sent, monkeypatch):
        ctx = warm_context(cfg)
        _feed(monkeypatch, _spike(make_sample, 100))
        result = jobs.poll_job(ctx, None, failing_venue(fail_on=1), recorder)
        assert result.transition is None
        assert "order rejected" in sent[0]
        assert storage.get_pair_state(cfg.pair_id)["halted"] is False


class TestPositionRows:

    def test_round_trip(self, cfg, open_short):
        pos = open_short(cfg)
        row = jobs.position_to_row(cfg.pair_id, pos, False, None)
        storage.upsert_pair_state(row)
        assert jobs.position_from_row(storage.get_pair_state(cfg.pair_id)) == pos

    def test_flat_row(self, cfg):
        assert jobs.position_from_row({"state": "FLAT"}) == Position()


class TestOperatorJobs:

    def test_reconcile_flat(self, cfg, open_short):
        storage.upsert_pair_state(jobs.position_to_row(cfg.pair_id, open_short(cfg), True, "partial exit"))
        jobs.reconcile_job(cfg, keep=False)
        row = storage.get_pair_state(cfg.pair_id)
        assert row["halted"] is False
        assert row["state"] == "FLAT"

    def test_reconcile_keep(self, cfg, open_short):
        storage.upsert_pair_state(jobs.position_to_row(cfg.pair_id, open_short(cfg), True, "partial exit"))
        jobs.reconcile_job(cfg, keep=True)
        ctx = PairContext.create(cfg)
        jobs.restore_context(ctx)
        assert ctx.halted is False
        assert ctx.position.state is PositionState.SHORT_SPREAD

    def test_status_reports_halt(self, cfg, tmp_path):
        storage.set_halted(cfg.pair_id, True, "partial entry")
        text = jobs.status_job(cfg, tmp_path / "missing.toml")
        assert cfg.pair_id in text
        assert "HALTED" in text

    def test_trades_lists_transitions(self, cfg, warm_context, make_sample, venue, recorder, sent, monkeypatch):
        assert "no transitions" in jobs.trades_job(cfg)
        ctx = warm_context(cfg)
        _feed(monkeypatch, _spike(make_sample, 100))
        jobs.poll_job(ctx, None, venue, recorder)
        assert "entry short" in jobs.trades_job(cfg)

    def test_telemetry_path_from_config(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[storage]\ntelemetry_csv = "data/pair.csv"\n')
        assert str(jobs.telemetry_csv_path(path)).endswith("pair.csv")
        assert jobs.telemetry_csv_path(tmp_path / "none.toml").name == jobs.DEFAULT_TELEMETRY_CSV

    def test_orders_lists_recent_venue_orders(self, cfg, warm_context, make_sample, recorder, sent, monkeypatch):
        from core.execution import PaperVenue

        assert jobs.orders_job() == "No orders placed yet."
        ctx = warm_context(cfg)
        _feed(monkeypatch, _spike(make_sample, 100))
        jobs.poll_job(ctx, None, PaperVenue(), recorder)

        text = jobs.orders_job()
        assert text.startswith("Last 2 orders")
        assert "SELL 0.0" in text and cfg.y_market in text
        assert cfg.x_market in text
        assert "(paper)" in text


class TestRuntimeWiring:

    def test_paper_venue_by_default(self, tmp_path):
        from core.execution import PaperVenue
        assert isinstance(jobs.build_venue(tmp_path / "none.toml"), PaperVenue)

    def test_unknown_venue_rejected(self, tmp_path):
        from signals.errors import InvalidConfiguration
        path = tmp_path / "config.toml"
        path.write_text('[execution]\nvenue = "binance"\n')
        with pytest.raises(InvalidConfiguration, match="binance"):
            jobs.build_venue(path)

    def test_dydx_venue_gets_credentials_from_config(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text(
            '[execution]\nvenue = "dydx"\n\n'
            '[dydx]\nmnemonic = "abandon ability"\naddress = "dydx1abc"\nnetwork = "testnet"\n'
        )
        monkeypatch.setattr(jobs.DydxVenue, "connect", classmethod(lambda cls, settings: settings))
        settings = jobs.build_venue(path)
        assert settings.address == "dydx1abc"
        assert settings.network == "testnet"

    def test_dashboard_disabled_by_default(self, tmp_path, cfg):
        sink = jobs.build_sink(cfg, tmp_path / "none.toml")
        assert isinstance(sink, TelemetryRecorder)

    def test_dashboard_enabled_fans_out(self, tmp_path, cfg, monkeypatch):
        from core.dashboard import ConnectionManager, DashboardSink
        from core.telemetry import TelemetryFanout

        started = {}

        def _start(pair_id, host, port):
            started.update(pair_id=pair_id, host=host, port=port)
            return DashboardSink(ConnectionManager(), pair_id)

        monkeypatch.setattr(jobs, "start_dashboard", _start)
        path = tmp_path / "config.toml"
        path.write_text('[dashboard]\nenabled = true\nport = 3100\n')

        sink = jobs.build_sink(cfg, path)
        assert isinstance(sink, TelemetryFanout)
        assert started == {"pair_id": cfg.pair_id, "host": "0.0.0.0", "port": 3100}
