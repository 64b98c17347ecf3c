"""
Broker import: pull deal history from a brokerage and turn it into trades.

Brokers report fills ("deals"), not trades: an entry deal ("in") and an exit
deal ("out") share a position id. Deals are paired into positions first and
positions are then mapped onto journal records.
"""
import logging
import time
from collections import defaultdict
from typing import Optional

from config.settings import settings
from swingjournal.errors import RemoteUnavailable, ValidationError
from swingjournal.models.profile import BrokerCredentials
from swingjournal.models.trade import Trade, calculate_pnl
from swingjournal.services.records import parse_records

logger = logging.getLogger("swingjournal.broker")


class BrokerClient:
    """Interface every brokerage client implements."""

    def __init__(self, creds: BrokerCredentials):
        self.creds = creds
        self.is_connected = False

    def authenticate(self) -> bool:
        raise NotImplementedError

    def get_trade_history(self, days: int = 30) -> list[dict]:
        raise NotImplementedError


class DemoBrokerClient(BrokerClient):
    """Offline stand-in that returns a fixed deal history."""

    LATENCY_SECONDS = 0.0

    SAMPLE_DEALS = [
        {"ticket": 1001, "position_id": 501, "symbol": "AAPL", "type": "buy", "entry": "in",
         "volume": 50, "price": 170.50, "profit": 0.0, "time": "2023-10-01 09:30:00",
         "comment": "Breakout"},
        {"ticket": 1002, "position_id": 501, "symbol": "AAPL", "type": "sell", "entry": "out",
         "volume": 50, "price": 178.20, "profit": 385.0, "time": "2023-10-15 15:45:00",
         "comment": "Imported from broker: Breakout above previous high."},
        {"ticket": 1003, "position_id": 502, "symbol": "GOOGL", "type": "buy", "entry": "in",
         "volume": 30, "price": 135.10, "profit": 0.0, "time": "2023-10-05 10:05:00",
         "comment": "Mean Reversion"},
        {"ticket": 1004, "position_id": 502, "symbol": "GOOGL", "type": "sell", "entry": "out",
         "volume": 30, "price": 133.90, "profit": -36.0, "time": "2023-10-20 14:20:00",
         "comment": "Imported from broker: Failed trade, stopped out."},
    ]

    def authenticate(self) -> bool:
        if not self.creds.api_key or not self.creds.api_secret:
            raise ValidationError("Broker API key and secret are required")
        logger.info("Connected to demo broker with key %s...", self.creds.api_key[:4])
        self.is_connected = True
        return True

    def get_trade_history(self, days: int = 30) -> list[dict]:
        if not self.is_connected:
            raise RemoteUnavailable("Not connected to broker")
        if self.LATENCY_SECONDS:
            time.sleep(self.LATENCY_SECONDS)
        return [dict(d) for d in self.SAMPLE_DEALS]


BROKER_CLIENTS = {
    "demo": DemoBrokerClient,
}


def get_broker_client(creds: BrokerCredentials, provider: Optional[str] = None) -> BrokerClient:
    provider = (provider or settings.BROKER_PROVIDER).lower()
    cls = BROKER_CLIENTS.get(provider)
    if cls is None:
        raise ValidationError(f"Unknown broker provider: {provider}")
    return cls(creds)


def pair_deals(deals: list[dict]) -> list[dict]:
    """Group deals by position id and pair the entry ("in") with the exit ("out")."""
    by_pos: dict[int, dict] = defaultdict(lambda: {"entry": None, "exit": None})
    for d in deals:
        pos_id = d.get("position_id")
        if not pos_id:
            continue
        if d.get("entry") == "in":
            by_pos[pos_id]["entry"] = d
        elif d.get("entry") == "out":
            by_pos[pos_id]["exit"] = d

    positions = []
    for pos_id, pair in sorted(by_pos.items()):
        entry_deal = pair["entry"]
        exit_deal = pair["exit"]
        if not entry_deal:
            logger.warning("Skipping orphan exit deal for position %s", pos_id)
            continue
        positions.append({
            "position_id": pos_id,
            "symbol": entry_deal.get("symbol"),
            "direction": entry_deal.get("type"),
            "volume": entry_deal.get("volume"),
            "entry_price": entry_deal.get("price"),
            "entry_time": entry_deal.get("time") or "",
            "exit_price": exit_deal.get("price") if exit_deal else None,
            "exit_time": exit_deal.get("time") if exit_deal else None,
            "profit": exit_deal.get("profit") if exit_deal else None,
            "closed": exit_deal is not None,
            "strategy": entry_deal.get("comment", ""),
            "comment": exit_deal.get("comment", "") if exit_deal else "",
        })

    # Newest first, like the ledger
    positions.sort(key=lambda p: p["entry_time"], reverse=True)
    return positions


def position_to_record(position: dict) -> dict:
    """Flat import record for one paired position; pnl is recomputed from prices."""
    record = {
        "id": f"broker-{position['position_id']}",
        "ticker": position.get("symbol"),
        "entry_date": (position.get("entry_time") or "")[:10],
        "entry_price": position.get("entry_price"),
        "shares": position.get("volume"),
        "strategy": position.get("strategy", ""),
        "notes": position.get("comment", ""),
        "status": "closed" if position.get("closed") else "open",
    }
    if position.get("closed"):
        entry_price = position.get("entry_price") or 0.0
        exit_price = position.get("exit_price")
        shares = position.get("volume") or 0.0
        record["exit_date"] = (position.get("exit_time") or "")[:10]
        record["exit_price"] = exit_price
        if exit_price is not None:
            record["pnl"], record["is_win"] = calculate_pnl(entry_price, exit_price, shares)
    return record


def parse_broker_positions(positions: list[dict]) -> list[Trade]:
    def records():
        for index, position in enumerate(positions, start=1):
            if position.get("direction") not in (None, "buy"):
                logger.warning("Skipping short position %s: only long trades are journaled",
                               position.get("position_id"))
                continue
            yield index, position_to_record(position)

    return parse_records(records(), id_prefix="broker-", source="broker")


def import_from_broker(creds: BrokerCredentials, provider: Optional[str] = None,
                       days: int = 365) -> list[Trade]:
    """Fetch, pair and map the broker's deal history. Does not touch the ledger."""
    client = get_broker_client(creds, provider)
    client.authenticate()
    try:
        deals = client.get_trade_history(days=days)
    except RemoteUnavailable:
        raise
    except Exception as e:
        raise RemoteUnavailable(f"Broker history fetch failed: {e}") from e
    trades = parse_broker_positions(pair_deals(deals))
    logger.info("Imported %d trades from broker (%d deals)", len(trades), len(deals))
    return trades
