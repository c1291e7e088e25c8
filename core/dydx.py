"""
dYdX v4 execution venue: one short-term MARKET order per leg.

Credentials (mnemonic + address) are injected from the `[dydx]` table of
config.toml; nothing here derives or stores keys. `dydx-v4-client` is an
optional extra (`pip install .[dydx]`) and is imported only when a live venue
is connected.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Optional

from core.execution import OrderAck
from signals.errors import InvalidConfiguration
from signals.position import Side
from storage import save_order

MAINNET_NODE = "oegs.dydx.trade:443"
MAINNET_INDEXER = "https://indexer.dydx.trade"
MAINNET_WEBSOCKET = "wss://indexer.dydx.trade/v4/ws"


@dataclass(frozen=True)
class DydxSettings:
    mnemonic: str = ""
    address: str = ""
    network: str = "mainnet"
    subaccount: int = 0

    # worst acceptable fill, as a fraction of the oracle price
    slippage: float = 0.05
    good_til_blocks: int = 10

    node_url: str = MAINNET_NODE
    rest_indexer: str = MAINNET_INDEXER
    websocket_indexer: str = MAINNET_WEBSOCKET

    def __post_init__(self) -> None:
        errors = []
        if not self.mnemonic.strip():
            errors.append("mnemonic must be set")
        if not self.address.strip():
            errors.append("address must be set")
        if self.network not in ("mainnet", "testnet"):
            errors.append(f"network must be 'mainnet' or 'testnet', got '{self.network}'")
        if self.subaccount < 0:
            errors.append(f"subaccount must be >= 0, got {self.subaccount}")
        if not (0.0 < self.slippage < 1.0):
            errors.append(f"slippage must be in (0, 1), got {self.slippage}")
        if self.good_til_blocks < 1:
            errors.append(f"good_til_blocks must be >= 1, got {self.good_til_blocks}")
        if errors:
            raise InvalidConfiguration(
                "Invalid DydxSettings:\n" + "\n".join(f"  • {e}" for e in errors)
            )

    @classmethod
    def from_section(cls, section: Optional[dict]) -> "DydxSettings":
        section = dict(section or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise InvalidConfiguration(
                "Invalid DydxSettings:\n" + "\n".join(f"  • unknown key '{k}'" for k in unknown)
            )
        return cls(**section)


def _sdk() -> SimpleNamespace:
    from dydx_v4_client import MAX_CLIENT_ID, NodeClient, OrderFlags, Wallet
    from dydx_v4_client.indexer.rest.constants import OrderType
    from dydx_v4_client.indexer.rest.indexer_client import IndexerClient
    from dydx_v4_client.network import TESTNET, make_mainnet
    from dydx_v4_client.node.market import Market
    from v4_proto.dydxprotocol.clob.order_pb2 import Order

    return SimpleNamespace(
        MAX_CLIENT_ID=MAX_CLIENT_ID,
        NodeClient=NodeClient,
        OrderFlags=OrderFlags,
        Wallet=Wallet,
        OrderType=OrderType,
        IndexerClient=IndexerClient,
        TESTNET=TESTNET,
        make_mainnet=make_mainnet,
        Market=Market,
        Order=Order,
    )


class DydxVenue:
    """
    Live venue on the dYdX v4 chain. `place_order` is synchronous for the
    engine; the async client runs on a private event loop.

    A transaction with a non-zero result code is a failed leg (ok=False);
    transport errors propagate and the engine counts them as failed too.
    """

    def __init__(self, node, indexer, wallet, settings: DydxSettings,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.node = node
        self.indexer = indexer
        self.wallet = wallet
        self.settings = settings
        self._loop = loop or asyncio.new_event_loop()

    @classmethod
    def connect(cls, settings: DydxSettings) -> "DydxVenue":
        sdk = _sdk()
        if settings.network == "testnet":
            network = sdk.TESTNET
        else:
            network = sdk.make_mainnet(
                node_url=settings.node_url,
                rest_indexer=settings.rest_indexer,
                websocket_indexer=settings.websocket_indexer,
            )
        loop = asyncio.new_event_loop()
        node = loop.run_until_complete(sdk.NodeClient.connect(network.node))
        indexer = sdk.IndexerClient(network.rest_indexer)
        wallet = loop.run_until_complete(
            sdk.Wallet.from_mnemonic(node, settings.mnemonic, settings.address)
        )
        logging.info("🔗 Connected to dYdX %s as %s", settings.network, settings.address)
        return cls(node, indexer, wallet, settings, loop=loop)

    def place_order(self, market: str, side: Side, units: float) -> OrderAck:
        if units <= 0:
            return OrderAck(ok=False, market=market, side=side, units=units,
                            error=f"units must be > 0, got {units}")

        tx = self._loop.run_until_complete(self._submit(market, side, units))
        resp = tx.tx_response
        if resp.code != 0:
            logging.error("dYdX rejected %s %.6f %s: code %s %s",
                          side.value, units, market, resp.code, resp.raw_log)
            return OrderAck(ok=False, market=market, side=side, units=units,
                            error=f"tx code {resp.code}: {resp.raw_log}")

        save_order({
            "order_id": resp.txhash,
            "ts": datetime.now(timezone.utc).isoformat(),
            "market": market,
            "side": side.value,
            "units": float(units),
            "paper": 0,
        })
        logging.info("[DYDX] %s %.6f %s (tx %s)", side.value, units, market, resp.txhash)
        return OrderAck(ok=True, market=market, side=side, units=units, order_id=resp.txhash)

    async def _submit(self, market_id: str, side: Side, units: float):
        sdk = _sdk()
        s = self.settings

        listing = await self.indexer.markets.get_perpetual_markets(market_id)
        market = sdk.Market(listing["markets"][market_id])
        oracle = float(market.market["oraclePrice"])

        if side is Side.BUY:
            proto_side, price = sdk.Order.Side.SIDE_BUY, oracle * (1 + s.slippage)
        else:
            proto_side, price = sdk.Order.Side.SIDE_SELL, oracle * (1 - s.slippage)

        order_id = market.order_id(
            s.address, s.subaccount, random.randint(0, sdk.MAX_CLIENT_ID), sdk.OrderFlags.SHORT_TERM
        )
        block = await self.node.latest_block_height()
        order = market.order(
            order_id=order_id,
            order_type=sdk.OrderType.MARKET,
            side=proto_side,
            size=units,
            price=price,
            time_in_force=sdk.Order.TimeInForce.TIME_IN_FORCE_UNSPECIFIED,
            reduce_only=False,
            good_til_block=block + s.good_til_blocks,
        )
        tx = await self.node.place_order(wallet=self.wallet, order=order)
        self.wallet.sequence += 1
        return tx
