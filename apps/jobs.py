import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import toml

from .alert import send
from core.dashboard import start_dashboard
from core.dydx import DydxSettings, DydxVenue
from core.execution import PaperVenue
from core.prices import JupiterPriceSource, fetch_sample
from core.telemetry import TelemetryFanout, TelemetryRecorder, load_telemetry
from signals.config import PairsConfig, load_config
from signals.engine import CycleResult, PairContext, TransitionRecord, run_cycle
from signals.errors import DataUnavailable, InvalidConfiguration, PartialExecutionFailure
from signals.hedge import HedgeRoles
from signals.position import OrderLeg, Position, PositionState, Side
from storage import (
    get_pair_state,
    get_recent_transitions,
    init_db,
    list_orders,
    set_halted,
    upsert_pair_state,
)

# --------------------------------------------------------------------------------------
# CONFIG
# --------------------------------------------------------------------------------------
CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.toml"
DEFAULT_TELEMETRY_CSV = "five_minute_price_data_beta.csv"


def _section(config_path: Path, name: str) -> dict:
    if config_path.exists():
        return toml.load(config_path).get(name) or {}
    return {}


def telemetry_csv_path(config_path: Path = CONFIG_PATH) -> Path:
    section = _section(config_path, "storage")
    return Path(section.get("telemetry_csv", DEFAULT_TELEMETRY_CSV))


def build_venue(config_path: Path = CONFIG_PATH):
    """`[execution] venue` selects "paper" (default) or "dydx" (credentials in `[dydx]`)."""
    name = _section(config_path, "execution").get("venue", "paper")
    if name == "paper":
        return PaperVenue()
    if name == "dydx":
        return DydxVenue.connect(DydxSettings.from_section(_section(config_path, "dydx")))
    raise InvalidConfiguration(f"Invalid execution venue '{name}' (expected paper or dydx)")


def build_sink(cfg: PairsConfig, config_path: Path = CONFIG_PATH):
    """CSV/SQLite recorder, plus the live dashboard push when `[dashboard] enabled = true`."""
    recorder = TelemetryRecorder(telemetry_csv_path(config_path), cfg.pair_id)
    dash = _section(config_path, "dashboard")
    if not dash.get("enabled", False):
        return recorder
    dashboard = start_dashboard(cfg.pair_id, dash.get("host", "0.0.0.0"), int(dash.get("port", 3000)))
    return TelemetryFanout(recorder, dashboard)


# --------------------------------------------------------------------------------------
# Position <-> storage rows
# --------------------------------------------------------------------------------------
def position_to_row(pair_id: str, position: Position, halted: bool, halt_reason: Optional[str]) -> dict:
    return {
        "pair_id": pair_id,
        "state": position.state.value,
        "entry_z": position.entry_z,
        "units_y": position.units_y,
        "units_x": position.units_x,
        "legs": [
            {"market": leg.market, "side": leg.side.value, "units": leg.units}
            for leg in position.legs
        ],
        "roles": position.roles.value if position.roles else None,
        "opened_at": position.opened_at.isoformat() if position.opened_at else None,
        "halted": halted,
        "halt_reason": halt_reason,
    }


def position_from_row(row: dict) -> Position:
    state = PositionState(row.get("state") or PositionState.FLAT.value)
    if state is PositionState.FLAT:
        return Position()
    return Position(
        state=state,
        entry_z=row.get("entry_z"),
        units_y=row.get("units_y"),
        units_x=row.get("units_x"),
        legs=tuple(
            OrderLeg(market=leg["market"], side=Side(leg["side"]), units=float(leg["units"]))
            for leg in row.get("legs", [])
        ),
        roles=HedgeRoles(row["roles"]) if row.get("roles") else None,
        opened_at=datetime.fromisoformat(row["opened_at"]) if row.get("opened_at") else None,
    )


def restore_context(ctx: PairContext) -> None:
    """Storage is the source of truth for position and halt flag between cycles."""
    row = get_pair_state(ctx.cfg.pair_id)
    if row is None:
        return
    ctx.position = position_from_row(row)
    ctx.halted = bool(row.get("halted"))
    ctx.halt_reason = row.get("halt_reason")


def persist_context(ctx: PairContext) -> None:
    upsert_pair_state(position_to_row(ctx.cfg.pair_id, ctx.position, ctx.halted, ctx.halt_reason))


# --------------------------------------------------------------------------------------
# Messages
# --------------------------------------------------------------------------------------
def format_transition(pair_id: str, tr: TransitionRecord) -> str:
    if tr.kind == "entry":
        head = f"📈 {pair_id}: ENTER {tr.side.upper()} spread"
    else:
        why = "mean reversion" if tr.exit_reason == "take_profit" else "STOP LOSS"
        head = f"📉 {pair_id}: EXIT {tr.side.upper()} spread ({why})"
    return (
        f"{head}\n"
        f"Time: {tr.timestamp.isoformat()}\n"
        f"Z-Score: {tr.z:.2f} | Spread: {tr.spread:.6f}\n"
        f"Beta: raw={tr.beta_raw:.4f}, used={tr.beta_used:.4f}, inverted={tr.inverted}\n"
        f"Units: Y'={tr.units_y:.6f}, X'={tr.units_x:.6f}"
    )


# --------------------------------------------------------------------------------------
# Jobs
# --------------------------------------------------------------------------------------
def build_runtime(config_path: Path = CONFIG_PATH):
    """Context, price source, venue and telemetry for one pair, built once at startup."""
    cfg = load_config(config_path)
    init_db()
    ctx = PairContext.create(cfg)
    restore_context(ctx)
    return ctx, JupiterPriceSource(), build_venue(config_path), build_sink(cfg, config_path)


def poll_job(ctx: PairContext, source, venue, recorder) -> Optional[CycleResult]:
    """
    One polling cycle. A failed quote skips the cycle without touching state.
    A partial execution is persisted as a halt and re-raised.
    """
    pair_id = ctx.cfg.pair_id
    init_db()
    restore_context(ctx)

    try:
        sample = fetch_sample(source, ctx.cfg)
    except DataUnavailable as e:
        logging.info("%s – skipping cycle", e)
        return None

    try:
        result = run_cycle(ctx, sample, venue, recorder)
    except PartialExecutionFailure as e:
        persist_context(ctx)
        send(
            f"🚨 {pair_id}: PARTIAL EXECUTION – automatic trading halted.\n{e}\n"
            "Check real exposure on the venue, then /reconcile flat|keep."
        )
        raise

    persist_context(ctx)

    if result.transition is not None:
        send(format_transition(pair_id, result.transition))
    elif result.execution_error:
        send(f"⚠️ {pair_id}: order rejected, position unchanged – {result.execution_error}")
    return result


def status_job(cfg: PairsConfig, config_path: Path = CONFIG_PATH) -> str:
    init_db()
    row = get_pair_state(cfg.pair_id)
    position = position_from_row(row) if row else Position()
    lines = [f"{cfg.pair_id}: {position.state.value}"]
    if position.is_open:
        lines.append(
            f"  entry z={position.entry_z:.2f} | Y'={position.units_y:.6f} | X'={position.units_x:.6f}"
        )
        for leg in position.legs:
            lines.append(f"  {leg.side.value} {leg.units:.6f} {leg.market}")
    if row and row.get("halted"):
        lines.append(f"  ⛔ HALTED: {row.get('halt_reason') or 'awaiting reconciliation'}")

    df = load_telemetry(telemetry_csv_path(config_path))
    if not df.empty:
        last = df.iloc[-1]
        lines.append(f"  last cycle {last['Timestamp']}: z={last['Z-Score']}")
    return "\n".join(lines)


def trades_job(cfg: PairsConfig, n: int = 10) -> str:
    init_db()
    rows = get_recent_transitions(cfg.pair_id, n)
    if not rows:
        return f"{cfg.pair_id}: no transitions yet."
    lines = [f"{cfg.pair_id}: last {len(rows)} transitions"]
    for r in rows:
        reason = f" ({r['exit_reason']})" if r["exit_reason"] else ""
        lines.append(f"- {r['ts']} {r['kind']} {r['side']}{reason} z={r['z']:.2f}")
    return "\n".join(lines)


def orders_job(n: int = 10) -> str:
    init_db()
    rows = list_orders(n)
    if not rows:
        return "No orders placed yet."
    lines = [f"Last {len(rows)} orders"]
    for r in rows:
        venue = "paper" if r["paper"] else "live"
        lines.append(f"- {r['ts']} {r['side']} {r['units']:.6f} {r['market']} ({venue})")
    return "\n".join(lines)


def reconcile_job(cfg: PairsConfig, keep: bool = False) -> str:
    """
    Operator reconciliation after a halt.

    keep=False: real exposure was flattened by hand -> FLAT.
    keep=True:  the stored position matches real exposure -> keep it.
    """
    init_db()
    if keep:
        set_halted(cfg.pair_id, False)
        msg = f"✅ {cfg.pair_id}: halt cleared, stored position kept."
    else:
        upsert_pair_state(position_to_row(cfg.pair_id, Position(), False, None))
        msg = f"✅ {cfg.pair_id}: reconciled to FLAT, trading resumed."
    logging.warning(msg)
    return msg


def help_job() -> str:
    return (
        "Available Commands:\n\n"
        "/status          – Position, halt flag and last z-score.\n"
        "/trades          – Recent entries and exits.\n"
        "/orders          – Recent orders sent to the venue.\n"
        "/reconcile flat  – Real exposure is flat: reset and resume.\n"
        "/reconcile keep  – Stored position is correct: resume.\n"
        "/help            – Show this message.\n\n"
        "Note: This bot trades a statistical signal, not investment advice."
    )


def _cli():
    import sys
    from core.logging import configure_logging

    configure_logging()
    job = sys.argv[1] if len(sys.argv) > 1 else None
    cfg = load_config(CONFIG_PATH)

    if job == "poll":
        ctx, source, venue, recorder = build_runtime(CONFIG_PATH)
        poll_job(ctx, source, venue, recorder)
    elif job == "status":
        print(status_job(cfg))
    elif job == "trades":
        print(trades_job(cfg))
    elif job == "orders":
        print(orders_job())
    elif job == "reconcile-flat":
        print(reconcile_job(cfg, keep=False))
    elif job == "reconcile-keep":
        print(reconcile_job(cfg, keep=True))
    elif job == "help":
        print(help_job())
    else:
        print(
            "Usage: python -m apps.jobs "
            "[poll|status|trades|orders|reconcile-flat|reconcile-keep|help]"
        )


if __name__ == "__main__":
    _cli()
