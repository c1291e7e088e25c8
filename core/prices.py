"""
Spot prices from the Jupiter price API (quoted in USDC).

Thin I/O wrapper: any failure yields None, and `fetch_sample` turns a missing
or invalid quote for either instrument into DataUnavailable so the cycle is
skipped before any engine state is touched.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Optional

import requests
from requests.adapters import HTTPAdapter, Retry

from signals.buffer import PriceSample
from signals.config import PairsConfig
from signals.errors import DataUnavailable

JUPITER_PRICE_URL = "https://api.jup.ag/price/v2"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def _default_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(total=2, backoff_factor=0.5, status_forcelist=[500, 502, 503, 504])
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class JupiterPriceSource:

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10.0,
                 vs_token: str = USDC_MINT):
        self.session = session or _default_session()
        self.timeout = timeout
        self.vs_token = vs_token

    def get_price(self, price_id: str) -> Optional[float]:
        try:
            resp = self.session.get(
                JUPITER_PRICE_URL,
                params={"ids": price_id, "vsToken": self.vs_token},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
            logging.debug("Price data for %s: %s", price_id, payload)
            return float(payload["data"][price_id]["price"])
        except (requests.RequestException, KeyError, TypeError, ValueError) as e:
            logging.debug("Error fetching price for %s: %s", price_id, e)
            return None


def fetch_sample(source, cfg: PairsConfig, now: Optional[datetime] = None) -> PriceSample:
    """
    Quote both instruments; never substitutes a stale or synthetic price.
    Stops at the first bad quote, the cycle is skipped anyway.
    """
    prices = {}
    for label, price_id in (("Y", cfg.y_price_id), ("X", cfg.x_price_id)):
        px = source.get_price(price_id)
        if px is None or not math.isfinite(px) or px <= 0:
            raise DataUnavailable(f"{cfg.pair_id}: price fetch failed for token {label} ({px!r})")
        prices[label] = float(px)

    ts = now or datetime.now(timezone.utc)
    return PriceSample(timestamp=ts, price_y=prices["Y"], price_x=prices["X"])
