from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

import toml

from signals.errors import InvalidConfiguration

# Quote-service ids (Solana mints) of the reference pair
POPCAT_MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
PNUT_MINT = "2qEHjDLDLbuBgRYvsxhc5D6uDWAivNFZGan56P1tpump"


@dataclass(frozen=True)
class PairsConfig:

    """
    Pairs-trading configuration, read once at startup and immutable thereafter.

    Threshold semantics (all in z-score units):
      - entry_threshold:       open when |z| exceeds it
      - take_profit_threshold: close once the spread reverts inside it (tighter than entry)
      - stop_loss_threshold:   close if the spread keeps diverging past it (wider than entry)

    Expected ordering: 0 < take_profit < entry < stop_loss.
    """

    # Instruments: "Y" and "X" are role placeholders, swapped when the hedge inverts
    y_market: str = "POPCAT-USD"
    x_market: str = "PNUT-USD"
    y_price_id: str = POPCAT_MINT
    x_price_id: str = PNUT_MINT

    # ------------------------------------------------------------------
    # Signal thresholds
    # ------------------------------------------------------------------
    entry_threshold: float = 3.0
    take_profit_threshold: float = 0.2
    stop_loss_threshold: float = 4.0

    # Samples used for the hedge regression and for the spread distribution
    rolling_window_size: int = 50

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------
    # Fixed capital base; live balance tracking is not part of the engine
    total_capital: float = 50.0
    risk_per_trade: float = 0.02

    # Fixed fractional haircut applied on top of the risk budget (units / 10)
    sizing_scale_factor: float = 10.0

    # Polling cadence of the scheduler (5 minutes)
    poll_interval_seconds: int = 300

    def __post_init__(self) -> None:
        errors = []

        # --- Instruments ---
        for name in ("y_market", "x_market", "y_price_id", "x_price_id"):
            if not str(getattr(self, name)).strip():
                errors.append(f"{name} must be a non-empty string")
        if self.y_market == self.x_market:
            errors.append(f"y_market and x_market must differ, both are '{self.y_market}'")
        if self.y_price_id == self.x_price_id:
            errors.append("y_price_id and x_price_id must differ")

        # --- Thresholds ---
        if self.entry_threshold <= 0:
            errors.append(f"entry_threshold must be > 0, got {self.entry_threshold}")
        if self.take_profit_threshold <= 0:
            errors.append(
                f"take_profit_threshold must be > 0, got {self.take_profit_threshold}"
            )
        if self.take_profit_threshold >= self.entry_threshold:
            errors.append(
                f"take_profit_threshold ({self.take_profit_threshold}) must be < "
                f"entry_threshold ({self.entry_threshold})"
            )
        if self.stop_loss_threshold <= self.entry_threshold:
            errors.append(
                f"stop_loss_threshold ({self.stop_loss_threshold}) must be > "
                f"entry_threshold ({self.entry_threshold})"
            )

        # --- Windows ---
        if self.rolling_window_size < 2:
            errors.append(f"rolling_window_size must be >= 2, got {self.rolling_window_size}")

        # --- Sizing ---
        if self.total_capital <= 0:
            errors.append(f"total_capital must be > 0, got {self.total_capital}")
        if not (0.0 < self.risk_per_trade <= 1.0):
            errors.append(f"risk_per_trade must be in (0, 1], got {self.risk_per_trade}")
        if self.sizing_scale_factor <= 0:
            errors.append(f"sizing_scale_factor must be > 0, got {self.sizing_scale_factor}")

        if self.poll_interval_seconds < 1:
            errors.append(
                f"poll_interval_seconds must be >= 1, got {self.poll_interval_seconds}"
            )

        if errors:
            raise InvalidConfiguration(
                "Invalid PairsConfig:\n" + "\n".join(f"  • {e}" for e in errors)
            )

    @property
    def pair_id(self) -> str:
        return f"{self.y_market}/{self.x_market}"

    @property
    def warmup_samples(self) -> int:
        """Samples needed before the first z-score: one window for beta, one for spreads."""
        return 2 * self.rolling_window_size


def load_config(path: Union[str, Path, None] = None) -> PairsConfig:
    """
    Build a PairsConfig from the [pairs] table of a TOML file.

    Missing file or table -> defaults. Unknown keys are rejected rather than
    silently ignored, so a typo cannot fall back to a default threshold.
    """
    if path is None:
        path = Path(__file__).resolve().parent.parent / "config.toml"
    path = Path(path)
    if not path.exists():
        return PairsConfig()

    try:
        raw = toml.load(path)
    except toml.TomlDecodeError as e:
        raise InvalidConfiguration(f"Invalid PairsConfig:\n  • cannot parse {path}: {e}") from e

    section: Optional[dict] = raw.get("pairs")
    if not section:
        return PairsConfig()

    known = {f.name for f in fields(PairsConfig)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise InvalidConfiguration(
            "Invalid PairsConfig:\n" + "\n".join(f"  • unknown key '{k}'" for k in unknown)
        )
    return PairsConfig(**section)
