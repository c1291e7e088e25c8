"""
Append-only telemetry: one CSV row per cycle, one SQLite row per transition.
The engine never reads either back.
"""
from __future__ import annotations

from pathlib import Path
from typing import Protocol, Union

import pandas as pd

from signals.engine import CycleRecord, TransitionRecord
from storage import save_transition

CSV_COLUMNS = [
    "Timestamp",
    "token Y",
    "token X",
    "Rolling Beta",
    "Spread",
    "Rolling Mean",
    "Rolling SD",
    "Z-Score",
]


class TelemetrySink(Protocol):
    def record_cycle(self, record: CycleRecord) -> None:
        ...

    def record_transition(self, transition: TransitionRecord) -> None:
        ...


class TelemetryRecorder:

    def __init__(self, csv_path: Union[str, Path], pair_id: str):
        self.csv_path = Path(csv_path)
        self.pair_id = pair_id

    def record_cycle(self, record: CycleRecord) -> None:
        row = pd.DataFrame([[
            record.timestamp.isoformat(),
            record.price_y,
            record.price_x,
            record.beta_raw,
            record.spread,
            record.mean,
            record.std,
            record.z,
        ]], columns=CSV_COLUMNS)

        write_header = not self.csv_path.exists()
        if write_header and self.csv_path.parent:
            self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        row.to_csv(self.csv_path, mode="a", header=write_header, index=False)

    def record_transition(self, transition: TransitionRecord) -> None:
        save_transition({
            "ts": transition.timestamp.isoformat(),
            "pair_id": self.pair_id,
            "kind": transition.kind,
            "side": transition.side,
            "from_state": transition.from_state.value,
            "to_state": transition.to_state.value,
            "z": transition.z,
            "spread": transition.spread,
            "beta_raw": transition.beta_raw,
            "beta_used": transition.beta_used,
            "inverted": int(transition.inverted),
            "units_y": transition.units_y,
            "units_x": transition.units_x,
            "exit_reason": transition.exit_reason,
        })


def load_telemetry(csv_path: Union[str, Path]) -> pd.DataFrame:
    """Read the cycle CSV back for analysis (empty frame if none written yet)."""
    path = Path(csv_path)
    if not path.exists():
        return pd.DataFrame(columns=CSV_COLUMNS)
    return pd.read_csv(path, parse_dates=["Timestamp"])


class TelemetryFanout:
    """Hands every record to each sink in turn (CSV/SQLite recorder, dashboard push)."""

    def __init__(self, *sinks: TelemetrySink):
        self.sinks = sinks

    def record_cycle(self, record: CycleRecord) -> None:
        for sink in self.sinks:
            sink.record_cycle(record)

    def record_transition(self, transition: TransitionRecord) -> None:
        for sink in self.sinks:
            sink.record_transition(transition)
