"""
CSV export/import of the journal.

The exported file is one header row plus one row per trade in ledger order.
Fields containing the delimiter, a quote or a line break are quoted with
embedded quotes doubled, so notes survive a round trip unchanged.
"""
import csv
import io
import logging
from datetime import date
from typing import Optional

from swingjournal.errors import ValidationError
from swingjournal.models.trade import Trade
from swingjournal.services.records import parse_records

logger = logging.getLogger("swingjournal.csv")

HEADER = [
    "id", "ticker", "status", "entryDate", "entryPrice", "exitDate",
    "exitPrice", "shares", "strategy", "notes", "pnl", "isWin",
]

# CSV column -> trade field
_COLUMN_FIELDS = {
    "id": "id",
    "ticker": "ticker",
    "status": "status",
    "entryDate": "entry_date",
    "entryPrice": "entry_price",
    "exitDate": "exit_date",
    "exitPrice": "exit_price",
    "shares": "shares",
    "strategy": "strategy",
    "notes": "notes",
    "pnl": "pnl",
    "isWin": "is_win",
}


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def export_trades_csv(trades: list[Trade]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(HEADER)
    for t in trades:
        writer.writerow([
            _cell(t.id),
            _cell(t.ticker),
            _cell(t.status.value),
            _cell(t.entry_date),
            _cell(t.entry_price),
            _cell(t.exit_date),
            _cell(t.exit_price),
            _cell(t.shares),
            _cell(t.strategy),
            _cell(t.notes),
            _cell(t.pnl),
            _cell(t.is_win),
        ])
    logger.info("Exported %d trades to CSV", len(trades))
    return buf.getvalue()


def csv_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"swing-journal-export-{today.isoformat()}.csv"


def parse_trades_csv(text: str) -> list[Trade]:
    """Parse an exported CSV back into trades. Bad rows are skipped and logged."""
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff"), newline=""))
    columns = reader.fieldnames or []
    missing = [c for c in ("ticker", "entryDate") if c not in columns]
    if missing:
        raise ValidationError(f"CSV is missing required columns: {', '.join(missing)}")

    def records():
        for row_number, row in enumerate(reader, start=2):
            yield row_number, {
                field: row.get(column) for column, field in _COLUMN_FIELDS.items()
            }

    return parse_records(records(), id_prefix="csv-import-", source="CSV")
