"""
Position state machine for a single pair.

States: FLAT, LONG_SPREAD (long Y', short X'), SHORT_SPREAD (short Y', long X').
At most one position is open at a time; entries happen only from FLAT.

Rules, evaluated once per cycle with a valid z-score:
  FLAT         -> SHORT_SPREAD  if z >  entry
  FLAT         -> LONG_SPREAD   if z < -entry
  SHORT_SPREAD -> FLAT          if z <= take_profit  (mean reversion)  or z >=  stop_loss
  LONG_SPREAD  -> FLAT          if z >= -take_profit (mean reversion)  or z <= -stop_loss

The exit bounds are deliberately asymmetric between sides: each side's stop is on
the side the spread kept diverging to.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from signals.buffer import PriceSample
from signals.config import PairsConfig
from signals.hedge import HedgeEstimate, HedgeRoles


class PositionState(str, Enum):
    FLAT = "FLAT"
    LONG_SPREAD = "LONG_SPREAD"
    SHORT_SPREAD = "SHORT_SPREAD"


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"     # spread reverted toward its mean
    STOP_LOSS = "stop_loss"         # spread blew through the stop bound


# Actions returned by decide_action
ENTER_SHORT = "ENTER_SHORT"
ENTER_LONG = "ENTER_LONG"
EXIT = "EXIT"
HOLD = "HOLD"
WAIT = "WAIT"


@dataclass(frozen=True)
class OrderLeg:
    market: str
    side: Side
    units: float


@dataclass(frozen=True)
class TradeIntent:
    kind: str                       # "entry" | "exit"
    state: PositionState            # spread side being opened or closed
    legs: Tuple[OrderLeg, ...]
    z: float
    spread: float
    hedge: HedgeEstimate
    units_y: float
    units_x: float
    exit_reason: Optional[ExitReason] = None


@dataclass(frozen=True)
class Position:
    state: PositionState = PositionState.FLAT
    entry_z: Optional[float] = None
    units_y: Optional[float] = None
    units_x: Optional[float] = None
    # Legs as filled at entry; closing reverses exactly these
    legs: Tuple[OrderLeg, ...] = ()
    roles: Optional[HedgeRoles] = None
    opened_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.state is not PositionState.FLAT

    @property
    def side(self) -> Optional[str]:
        if self.state is PositionState.LONG_SPREAD:
            return "long"
        if self.state is PositionState.SHORT_SPREAD:
            return "short"
        return None


def size_legs(
    *,
    price_y: float,
    price_x: float,
    beta_used: float,
    cfg: PairsConfig,
) -> Tuple[float, float]:
    """
    Units for each leg, fixed for the lifetime of the position:
      trade_capital = total_capital * risk_per_trade
      units_y = trade_capital / (Y' + beta * X') / sizing_scale_factor
      units_x = units_y * beta

    Prices are the relabeled Y'/X' prices of the entry cycle.
    """
    trade_capital = float(cfg.total_capital * cfg.risk_per_trade)
    units_y = float(trade_capital / (price_y + beta_used * price_x) / cfg.sizing_scale_factor)
    return units_y, float(units_y * beta_used)


def decide_action(
    z: float,
    position: Position,
    cfg: PairsConfig,
) -> Tuple[str, str, Optional[ExitReason]]:
    """
    Returns:
      action, rationale, exit_reason (only for EXIT)
    """
    if not position.is_open:
        if z > cfg.entry_threshold:
            return ENTER_SHORT, f"z={z:.2f} > entry {cfg.entry_threshold:.2f}: spread wide", None
        if z < -cfg.entry_threshold:
            return ENTER_LONG, f"z={z:.2f} < -entry {cfg.entry_threshold:.2f}: spread narrow", None
        return WAIT, f"No entry: |z|={abs(z):.2f} <= {cfg.entry_threshold:.2f}", None

    if position.state is PositionState.SHORT_SPREAD:
        if z <= cfg.take_profit_threshold:
            return (
                EXIT,
                f"Mean reversion: z={z:.2f} <= take-profit {cfg.take_profit_threshold:.2f}",
                ExitReason.TAKE_PROFIT,
            )
        if z >= cfg.stop_loss_threshold:
            return (
                EXIT,
                f"Stop loss: z={z:.2f} >= stop {cfg.stop_loss_threshold:.2f}",
                ExitReason.STOP_LOSS,
            )
    else:
        if z >= -cfg.take_profit_threshold:
            return (
                EXIT,
                f"Mean reversion: z={z:.2f} >= -take-profit {-cfg.take_profit_threshold:.2f}",
                ExitReason.TAKE_PROFIT,
            )
        if z <= -cfg.stop_loss_threshold:
            return (
                EXIT,
                f"Stop loss: z={z:.2f} <= -stop {-cfg.stop_loss_threshold:.2f}",
                ExitReason.STOP_LOSS,
            )

    return HOLD, f"Hold {position.state.value}: z={z:.2f}", None


def build_intent(
    action: str,
    *,
    z: float,
    spread: float,
    hedge: HedgeEstimate,
    sample: PriceSample,
    position: Position,
    cfg: PairsConfig,
    exit_reason: Optional[ExitReason] = None,
) -> Optional[TradeIntent]:
    """Turn a decision into concrete order legs. HOLD/WAIT -> None."""
    if action in (ENTER_SHORT, ENTER_LONG):
        if position.is_open:
            raise ValueError(f"cannot enter: {position.state.value} position already open")

        price_y, price_x = hedge.roles.assign(sample.price_y, sample.price_x)
        market_y, market_x = hedge.roles.assign(cfg.y_market, cfg.x_market)
        units_y, units_x = size_legs(
            price_y=price_y, price_x=price_x, beta_used=hedge.beta_used, cfg=cfg
        )

        if action == ENTER_SHORT:
            state, side_y = PositionState.SHORT_SPREAD, Side.SELL
        else:
            state, side_y = PositionState.LONG_SPREAD, Side.BUY

        legs = (
            OrderLeg(market=market_y, side=side_y, units=units_y),
            OrderLeg(market=market_x, side=side_y.opposite, units=units_x),
        )
        return TradeIntent(
            kind="entry", state=state, legs=legs, z=z, spread=spread,
            hedge=hedge, units_y=units_y, units_x=units_x,
        )

    if action == EXIT:
        if not position.is_open:
            raise ValueError("cannot exit: no open position")
        legs = tuple(
            OrderLeg(market=leg.market, side=leg.side.opposite, units=leg.units)
            for leg in position.legs
        )
        return TradeIntent(
            kind="exit", state=position.state, legs=legs, z=z, spread=spread,
            hedge=hedge, units_y=float(position.units_y or 0.0),
            units_x=float(position.units_x or 0.0), exit_reason=exit_reason,
        )

    return None


def apply_intent(position: Position, intent: TradeIntent, timestamp: datetime) -> Position:
    """Position after every leg of the intent was acknowledged."""
    if intent.kind == "entry":
        if position.is_open:
            raise ValueError(f"cannot open over an existing {position.state.value} position")
        return Position(
            state=intent.state,
            entry_z=intent.z,
            units_y=intent.units_y,
            units_x=intent.units_x,
            legs=intent.legs,
            roles=intent.hedge.roles,
            opened_at=timestamp,
        )
    if intent.kind == "exit":
        if position.state is not intent.state:
            raise ValueError(
                f"exit intent for {intent.state.value} does not match {position.state.value}"
            )
        return Position()
    raise ValueError(f"unknown intent kind '{intent.kind}'")
