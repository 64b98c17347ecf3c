"""
Trade ledger: the authoritative ordered collection of trades.

Newest trades sit at the head. Every mutation validates, persists the full
sequence, swaps it in memory and finally notifies subscribers.
"""
import logging
import threading
from typing import Callable, Iterable

from pydantic import ValidationError as ModelValidationError

from swingjournal.database import KeyValueStorage, TRADES_KEY
from swingjournal.errors import NotFoundError, ValidationError
from swingjournal.models.trade import Trade, TradeStatus, is_iso_date

logger = logging.getLogger("swingjournal.ledger")

LedgerListener = Callable[[list[Trade]], None]


def check_trade(trade: Trade) -> None:
    """Reject records that break the required-field or open/closed invariants."""
    if not trade.ticker.strip():
        raise ValidationError("Ticker is required")
    if not trade.entry_date.strip():
        raise ValidationError("Entry date is required")
    for name, value in (("Entry date", trade.entry_date), ("Exit date", trade.exit_date)):
        if value and not is_iso_date(value):
            raise ValidationError(f"{name} must be YYYY-MM-DD, got {value!r}")

    if trade.status == TradeStatus.CLOSED:
        missing = [
            name for name, value in (
                ("exitPrice", trade.exit_price),
                ("pnl", trade.pnl),
                ("isWin", trade.is_win),
            ) if value is None
        ]
        if missing:
            raise ValidationError(
                f"Closed trade {trade.id} is missing {', '.join(missing)}"
            )
    else:
        present = [
            name for name, value in (
                ("exitDate", trade.exit_date),
                ("exitPrice", trade.exit_price),
                ("pnl", trade.pnl),
                ("isWin", trade.is_win),
            ) if value is not None
        ]
        if present:
            raise ValidationError(
                f"Open trade {trade.id} must not carry {', '.join(present)}"
            )


class TradeLedger:
    def __init__(self, storage: KeyValueStorage, key: str = TRADES_KEY):
        self._storage = storage
        self._key = key
        self._lock = threading.RLock()
        self._listeners: list[LedgerListener] = []
        self._trades: list[Trade] = self._load()

    def _load(self) -> list[Trade]:
        raw = self._storage.load(self._key) or []
        trades = []
        for item in raw:
            try:
                trades.append(Trade.model_validate(item))
            except ModelValidationError as e:
                logger.warning("Dropping unreadable stored trade %s: %s", item.get("id"), e)
        logger.info("Loaded %d trades from storage", len(trades))
        return trades

    # ── Reads ──────────────────────────────────────────────

    @property
    def trades(self) -> list[Trade]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._trades]

    def get(self, trade_id: str) -> Trade:
        with self._lock:
            index = self._index_of(trade_id)
            return self._trades[index].model_copy(deep=True)

    def open_trades(self) -> list[Trade]:
        return [t for t in self.trades if t.status == TradeStatus.OPEN]

    def closed_trades(self) -> list[Trade]:
        return [t for t in self.trades if t.status == TradeStatus.CLOSED]

    def __len__(self) -> int:
        return len(self._trades)

    # ── Mutations ──────────────────────────────────────────

    def add(self, trade: Trade) -> Trade:
        check_trade(trade)
        with self._lock:
            if any(t.id == trade.id for t in self._trades):
                raise ValidationError(f"Trade {trade.id} already exists")
            self._commit([trade.model_copy(deep=True)] + self._trades)
        logger.info("Added %s trade %s (%s)", trade.status.value, trade.id, trade.ticker)
        return trade

    def update(self, trade: Trade) -> Trade:
        check_trade(trade)
        with self._lock:
            index = self._index_of(trade.id)
            existing = self._trades[index]
            if existing.status == TradeStatus.CLOSED and trade.status == TradeStatus.OPEN:
                raise ValidationError(f"Trade {trade.id} is closed and cannot be reopened")
            updated = list(self._trades)
            updated[index] = trade.model_copy(deep=True)
            self._commit(updated)
        logger.info("Updated trade %s (%s)", trade.id, trade.ticker)
        return trade

    def remove(self, trade_id: str) -> None:
        with self._lock:
            index = self._index_of(trade_id)
            self._commit(self._trades[:index] + self._trades[index + 1:])
        logger.info("Removed trade %s", trade_id)

    def replace_all(self, trades: Iterable[Trade]) -> int:
        """Swap the whole sequence. Nothing changes unless every record is valid."""
        incoming = [t.model_copy(deep=True) for t in trades]
        seen = set()
        for t in incoming:
            check_trade(t)
            if t.id in seen:
                raise ValidationError(f"Duplicate trade id {t.id} in import")
            seen.add(t.id)
        with self._lock:
            self._commit(incoming)
        logger.info("Replaced ledger with %d trades", len(incoming))
        return len(incoming)

    # ── Change notification ────────────────────────────────

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _commit(self, trades: list[Trade]) -> None:
        # A failed save leaves the in-memory sequence unchanged
        self._storage.save(self._key, [t.to_storage() for t in trades])
        self._trades = trades
        snapshot = self.trades
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Ledger listener failed: %s", e)

    def _index_of(self, trade_id: str) -> int:
        for i, t in enumerate(self._trades):
            if t.id == trade_id:
                return i
        raise NotFoundError(f"Trade {trade_id} not found")
