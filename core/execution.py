"""
Execution venue interface and the paper venue shipped with the bot.

A venue places market orders one leg at a time. A leg counts as filled only if
`place_order` returns an OrderAck with ok=True; raising or ok=False is a failure.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from signals.position import Side
from storage import save_order


@dataclass(frozen=True)
class OrderAck:
    ok: bool
    market: str
    side: Side
    units: float
    order_id: Optional[str] = None
    error: Optional[str] = None


class ExecutionVenue(Protocol):
    def place_order(self, market: str, side: Side, units: float) -> OrderAck:
        ...


class PaperVenue:
    """
    Simulated venue: every market order is acknowledged and recorded in the
    orders table with paper=1. No real capital is committed.
    """

    def place_order(self, market: str, side: Side, units: float) -> OrderAck:
        if units <= 0:
            return OrderAck(ok=False, market=market, side=side, units=units,
                            error=f"units must be > 0, got {units}")

        order_id = uuid.uuid4().hex
        save_order({
            "order_id": order_id,
            "ts": datetime.now(timezone.utc).isoformat(),
            "market": market,
            "side": side.value,
            "units": float(units),
            "paper": 1,
        })
        logging.info("[PAPER] %s %.6f %s (order %s)", side.value, units, market, order_id[:8])
        return OrderAck(ok=True, market=market, side=side, units=units, order_id=order_id)
