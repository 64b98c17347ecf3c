"""
Row-level import rules shared by the CSV, spreadsheet and broker importers.

Every importer first turns its source rows into flat records keyed by trade
field name, then hands them to `parse_records`. A record that cannot become a
trade is skipped with a warning; the rest of the import carries on.
"""
import logging
from typing import Any, Iterable, Optional

from pydantic import ValidationError as ModelValidationError

from swingjournal.errors import PartialRowError
from swingjournal.models.trade import Trade, TradeStatus, new_trade_id

logger = logging.getLogger("swingjournal.import")


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "").lstrip("$")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in ("true", "win", "yes", "1"):
        return True
    if text in ("false", "loss", "no", "0"):
        return False
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def record_to_trade(record: dict, row_number: int, id_prefix: str = "import-") -> Trade:
    """
    Build one trade from a flat record.

    Raises PartialRowError when ticker or entry date is missing or the values
    do not form a valid trade. A record only becomes a closed trade when its
    status says closed and both exit price and pnl are present.
    """
    ticker = _text(record.get("ticker")).upper()
    entry_date = _text(record.get("entry_date"))
    if not ticker or not entry_date:
        raise PartialRowError(row_number, "missing ticker or entry date")

    base = {
        "id": _text(record.get("id")) or new_trade_id(id_prefix),
        "ticker": ticker,
        "entry_date": entry_date,
        "entry_price": to_float(record.get("entry_price")) or 0.0,
        "shares": to_float(record.get("shares")) or 0.0,
        "strategy": _text(record.get("strategy")),
        "notes": "" if record.get("notes") is None else str(record.get("notes")),
    }

    status = _text(record.get("status")).lower()
    exit_price = to_float(record.get("exit_price"))
    pnl = to_float(record.get("pnl"))
    try:
        if status == TradeStatus.CLOSED.value and exit_price is not None and pnl is not None:
            is_win = to_bool(record.get("is_win"))
            return Trade(
                **base,
                status=TradeStatus.CLOSED,
                exit_date=_text(record.get("exit_date")) or None,
                exit_price=exit_price,
                pnl=pnl,
                is_win=pnl > 0 if is_win is None else is_win,
            )
        return Trade(**base, status=TradeStatus.OPEN)
    except ModelValidationError as e:
        raise PartialRowError(row_number, str(e)) from e


def parse_records(records: Iterable[tuple[int, dict]], id_prefix: str, source: str) -> list[Trade]:
    """Convert (row_number, record) pairs, skipping rows that fail.

    A row whose id repeats an earlier row is skipped; the first one wins.
    """
    trades = []
    seen_ids = set()
    skipped = 0
    for row_number, record in records:
        try:
            trade = record_to_trade(record, row_number, id_prefix)
            if trade.id in seen_ids:
                raise PartialRowError(row_number, f"duplicate trade id {trade.id}")
            seen_ids.add(trade.id)
            trades.append(trade)
        except PartialRowError as e:
            skipped += 1
            logger.warning("Skipping %s row: %s", source, e)
    logger.info("Parsed %d trades from %s (%d rows skipped)", len(trades), source, skipped)
    return trades
