"""
One evaluation cycle of the pairs signal engine.

    sample -> SampleBuffer -> hedge (once the price window is full)
           -> spread window -> z-score (once 2 x window samples were seen)
           -> position state machine -> {none | entry intent | exit intent}

All per-pair mutable state lives in a PairContext passed into every call, so
independent pairs never share windows or positions. Only `run_cycle` commits a
position transition, and only after the venue acknowledged every leg.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from signals.buffer import PriceSample, SampleBuffer
from signals.config import PairsConfig
from signals.errors import (
    DegenerateDistribution,
    ExecutionRejected,
    InsufficientHistory,
    PartialExecutionFailure,
    TradingHalted,
)
from signals.hedge import HedgeEstimate, estimate_hedge
from signals.position import (
    Position,
    PositionState,
    TradeIntent,
    apply_intent,
    build_intent,
    decide_action,
)
from signals.spread import SpreadTracker, compute_spread, compute_zscore

if TYPE_CHECKING:
    from core.execution import ExecutionVenue, OrderAck
    from core.telemetry import TelemetrySink


@dataclass(frozen=True)
class CycleRecord:
    """Per-cycle telemetry; derived fields stay None until their stage has data."""
    timestamp: datetime
    price_y: float
    price_x: float
    beta_raw: Optional[float] = None
    spread: Optional[float] = None
    mean: Optional[float] = None
    std: Optional[float] = None
    z: Optional[float] = None


@dataclass(frozen=True)
class TransitionRecord:
    timestamp: datetime
    kind: str                       # "entry" | "exit"
    side: str                       # "long" | "short"
    from_state: PositionState
    to_state: PositionState
    z: float
    spread: float
    beta_raw: float
    beta_used: float
    inverted: bool
    units_y: float
    units_x: float
    exit_reason: Optional[str] = None


@dataclass
class CycleResult:
    record: CycleRecord
    hedge: Optional[HedgeEstimate] = None
    action: Optional[str] = None
    rationale: str = ""
    intent: Optional[TradeIntent] = None
    transition: Optional[TransitionRecord] = None
    skipped: Optional[str] = None
    execution_error: Optional[str] = None


@dataclass
class PairContext:
    cfg: PairsConfig
    samples: SampleBuffer
    spreads: SpreadTracker
    position: Position = field(default_factory=Position)
    halted: bool = False
    halt_reason: Optional[str] = None

    @classmethod
    def create(cls, cfg: PairsConfig, position: Optional[Position] = None) -> "PairContext":
        return cls(
            cfg=cfg,
            samples=SampleBuffer(cfg.rolling_window_size),
            spreads=SpreadTracker(cfg.rolling_window_size),
            position=position if position is not None else Position(),
        )


def evaluate_cycle(ctx: PairContext, sample: PriceSample) -> CycleResult:
    """
    Ingest a sample and derive the signal and the intent it implies.

    Mutates the rolling windows only; the position is left untouched.
    Missing history or zero variance end the cycle early with partial telemetry.
    """
    cfg = ctx.cfg
    ctx.samples.append(sample)
    record = CycleRecord(timestamp=sample.timestamp, price_y=sample.price_y, price_x=sample.price_x)

    try:
        window_y, window_x = ctx.samples.recent(cfg.rolling_window_size)
        hedge = estimate_hedge(window_y, window_x)
    except (InsufficientHistory, DegenerateDistribution) as e:
        logging.debug("%s: no hedge this cycle – %s", cfg.pair_id, e)
        return CycleResult(record=record, skipped=str(e))

    spread = compute_spread(sample.price_y, sample.price_x, hedge)
    ctx.spreads.update(spread)
    record = replace(record, beta_raw=hedge.beta_raw, spread=spread)

    if ctx.samples.total < cfg.warmup_samples:
        msg = f"warming up spread distribution ({ctx.samples.total}/{cfg.warmup_samples} samples)"
        logging.debug("%s: %s", cfg.pair_id, msg)
        return CycleResult(record=record, hedge=hedge, skipped=msg)

    try:
        stats = ctx.spreads.stats()
        record = replace(record, mean=stats.mean, std=stats.std)
        z = compute_zscore(spread, stats)
    except (InsufficientHistory, DegenerateDistribution) as e:
        logging.debug("%s: no signal this cycle – %s", cfg.pair_id, e)
        return CycleResult(record=record, hedge=hedge, skipped=str(e))
    record = replace(record, z=z)

    if ctx.halted:
        msg = f"trading halted: {ctx.halt_reason or 'awaiting reconciliation'}"
        logging.warning("%s: %s – signal z=%.2f not acted on", cfg.pair_id, msg, z)
        return CycleResult(record=record, hedge=hedge, skipped=msg)

    action, rationale, exit_reason = decide_action(z, ctx.position, cfg)
    intent = build_intent(
        action,
        z=z,
        spread=spread,
        hedge=hedge,
        sample=sample,
        position=ctx.position,
        cfg=cfg,
        exit_reason=exit_reason,
    )
    return CycleResult(
        record=record, hedge=hedge, action=action, rationale=rationale, intent=intent
    )


def execute_intent(ctx: PairContext, intent: TradeIntent, venue: ExecutionVenue) -> List[OrderAck]:
    """
    Place every leg of the intent, in order, and return the acks.

    - first leg fails              -> ExecutionRejected (nothing filled)
    - a later leg fails            -> PartialExecutionFailure, context halted
    Raising or returning an ack with ok=False both count as a failed leg.
    """
    if ctx.halted:
        raise TradingHalted(f"{ctx.cfg.pair_id}: trading halted, refusing to place orders")

    acks: List[OrderAck] = []
    for leg in intent.legs:
        error: Optional[str] = None
        try:
            ack = venue.place_order(leg.market, leg.side, leg.units)
        except Exception as e:
            logging.exception("%s: order %s %s %.6f raised", ctx.cfg.pair_id, leg.side.value, leg.market, leg.units)
            error = f"{type(e).__name__}: {e}"
        else:
            if getattr(ack, "ok", False):
                acks.append(ack)
                continue
            error = getattr(ack, "error", None) or "order not acknowledged"

        failed = intent.legs[len(acks):]
        if not acks:
            raise ExecutionRejected(
                f"{ctx.cfg.pair_id}: {intent.kind} rejected on {leg.side.value} {leg.market} – {error}"
            )

        ctx.halted = True
        ctx.halt_reason = (
            f"partial {intent.kind} of {intent.state.value}: "
            f"{len(acks)}/{len(intent.legs)} legs filled, {leg.side.value} {leg.market} failed ({error})"
        )
        logging.critical("%s: %s", ctx.cfg.pair_id, ctx.halt_reason)
        raise PartialExecutionFailure(
            f"{ctx.cfg.pair_id}: {ctx.halt_reason}", acked=acks, failed=failed
        )
    return acks


def _transition_from(ctx: PairContext, intent: TradeIntent, ts: datetime, before: Position) -> TransitionRecord:
    return TransitionRecord(
        timestamp=ts,
        kind=intent.kind,
        side="short" if intent.state is PositionState.SHORT_SPREAD else "long",
        from_state=before.state,
        to_state=ctx.position.state,
        z=intent.z,
        spread=intent.spread,
        beta_raw=intent.hedge.beta_raw,
        beta_used=intent.hedge.beta_used,
        inverted=intent.hedge.inverted,
        units_y=intent.units_y,
        units_x=intent.units_x,
        exit_reason=intent.exit_reason.value if intent.exit_reason else None,
    )


def run_cycle(
    ctx: PairContext,
    sample: PriceSample,
    venue: ExecutionVenue,
    sink: Optional[TelemetrySink] = None,
) -> CycleResult:
    """
    Full cycle: evaluate, execute the intent if any, commit the transition on
    complete acknowledgement, then hand telemetry to the sink.

    PartialExecutionFailure is re-raised after the cycle's telemetry was recorded.
    """
    result = evaluate_cycle(ctx, sample)
    intent = result.intent

    if intent is not None:
        try:
            execute_intent(ctx, intent, venue)
        except ExecutionRejected as e:
            logging.warning("%s", e)
            result.execution_error = str(e)
        except PartialExecutionFailure as e:
            result.execution_error = str(e)
            if sink is not None:
                sink.record_cycle(result.record)
            raise
        else:
            before = ctx.position
            ctx.position = apply_intent(before, intent, sample.timestamp)
            result.transition = _transition_from(ctx, intent, sample.timestamp, before)
            _log_transition(result.transition)

    if sink is not None:
        sink.record_cycle(result.record)
        if result.transition is not None:
            sink.record_transition(result.transition)
    return result


def reconcile(ctx: PairContext, position: Optional[Position] = None) -> None:
    """Operator action: install the externally verified position and resume trading."""
    ctx.position = position if position is not None else Position()
    ctx.halted = False
    ctx.halt_reason = None
    logging.warning("%s: reconciled to %s, trading resumed", ctx.cfg.pair_id, ctx.position.state.value)


def _log_transition(tr: TransitionRecord) -> None:
    if tr.kind == "entry":
        logging.info(
            "[%s] Entering %s spread. Z-Score: %.2f, rawBeta: %.4f, usedBeta: %.4f, hedgeInverted: %s",
            tr.timestamp.isoformat(), tr.side.upper(), tr.z, tr.beta_raw, tr.beta_used, tr.inverted,
        )
    else:
        logging.info(
            "[%s] Closing %s spread (%s). Z-Score: %.2f",
            tr.timestamp.isoformat(), tr.side.upper(), tr.exit_reason, tr.z,
        )
