"""
Google Sheets sync: push the ledger to a "Trades" + "Analysis" spreadsheet
and pull trades back from it.

Talks to the Sheets REST API v4 directly with a bearer token; obtaining the
token (OAuth) happens outside this app. The spreadsheet id is remembered in
local storage so later syncs overwrite the same document.
"""
import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from config.settings import settings
from swingjournal.database import SPREADSHEET_ID_KEY, KeyValueStorage
from swingjournal.errors import RemoteUnavailable, ValidationError
from swingjournal.models.trade import Trade, TradeStatus
from swingjournal.services.records import parse_records

logger = logging.getLogger("swingjournal.sheets")

BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
DEFAULT_TIMEOUT = 30
SPREADSHEET_TITLE = "Swing Trading Journal"

TRADE_HEADER = [
    "ID", "Ticker", "Entry Date", "Entry Price", "Shares", "Strategy", "Notes",
    "Status", "Exit Date", "Exit Price", "P/L", "Result",
]

# Trades sheet column -> trade field, by position
_SHEET_FIELDS = [
    "id", "ticker", "entry_date", "entry_price", "shares", "strategy", "notes",
    "status", "exit_date", "exit_price", "pnl", "is_win",
]


def col_letter(name: str) -> str:
    return chr(ord("A") + TRADE_HEADER.index(name))


def _cell(value: Any) -> Any:
    return "" if value is None else value


def trade_rows(trades: list[Trade]) -> list[list]:
    rows = []
    for t in trades:
        result = ""
        if t.status == TradeStatus.CLOSED:
            result = "Win" if t.is_win else "Loss"
        rows.append([
            t.id, t.ticker, t.entry_date, t.entry_price, t.shares, t.strategy, t.notes,
            t.status.value, _cell(t.exit_date), _cell(t.exit_price), _cell(t.pnl), result,
        ])
    return rows


def analysis_rows() -> list[list[str]]:
    """Metric rows whose formulas read the Trades sheet by column letter."""
    pnl = col_letter("P/L")
    status = col_letter("Status")
    result = col_letter("Result")
    return [
        ["Metric", "Value", "Description"],
        ["Total P/L", f"=SUM(Trades!{pnl}:{pnl})",
         "Sum of all profits and losses from closed trades."],
        ["Total Closed Trades", f'=COUNTIF(Trades!{status}:{status}, "closed")',
         "Total number of closed trades."],
        ["Winning Trades", f'=COUNTIF(Trades!{result}:{result}, "Win")',
         "Number of profitable trades."],
        ["Losing Trades", f'=COUNTIF(Trades!{result}:{result}, "Loss")',
         "Number of losing trades."],
        # B2..B4 are the Value cells of the rows above
        ["Win Rate", "=IFERROR(B4/B3, 0)",
         "Percentage of winning trades."],
        ["Average P/L per Trade", "=IFERROR(B2/B3, 0)",
         "The average outcome of a closed trade."],
        ["Average Win",
         f'=IFERROR(AVERAGEIF(Trades!{result}:{result}, "Win", Trades!{pnl}:{pnl}), 0)',
         "The average profit on winning trades."],
        ["Average Loss",
         f'=IFERROR(AVERAGEIF(Trades!{result}:{result}, "Loss", Trades!{pnl}:{pnl}), 0)',
         "The average loss on losing trades."],
        ["Profit Factor",
         f'=IFERROR(ABS(SUMIF(Trades!{pnl}:{pnl},">0"))/ABS(SUMIF(Trades!{pnl}:{pnl},"<0")), 0)',
         "Gross profit divided by gross loss. Higher is better."],
    ]


def parse_sheet_rows(rows: list) -> list[Trade]:
    """Turn Trades!A2:L values into trades. Malformed rows are skipped."""

    def records():
        for index, row in enumerate(rows):
            row_number = index + 2
            if not isinstance(row, list) or len(row) < 4:
                logger.warning("Skipping malformed row %d in Google Sheet", row_number)
                continue
            yield row_number, {
                field: (row[i] if i < len(row) else None)
                for i, field in enumerate(_SHEET_FIELDS)
            }

    return parse_records(records(), id_prefix="sheet-import-", source="Google Sheet")


class SheetsClient:
    """Thin wrapper over the Sheets REST endpoints used by the sync."""

    def __init__(self, access_token: str, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        if not access_token:
            raise ValidationError("Google Sheets access token is not configured")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        })

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RemoteUnavailable(f"Google Sheets request failed: {e}") from e
        if resp.status_code >= 400:
            try:
                message = resp.json().get("error", {}).get("message", resp.text)
            except ValueError:
                message = resp.text
            raise RemoteUnavailable(f"Google Sheets error (HTTP {resp.status_code}): {message}")
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteUnavailable("Google Sheets returned a non-JSON response") from e

    @staticmethod
    def _range_url(spreadsheet_id: str, a1_range: str) -> str:
        return f"{BASE_URL}/{spreadsheet_id}/values/{quote(a1_range, safe='!:')}"

    def create_spreadsheet(self, title: str = SPREADSHEET_TITLE) -> str:
        body = {
            "properties": {"title": title},
            "sheets": [
                {"properties": {"title": "Trades"}},
                {"properties": {"title": "Analysis"}},
            ],
        }
        data = self._request("POST", BASE_URL, json=body)
        spreadsheet_id = data.get("spreadsheetId")
        if not spreadsheet_id:
            raise RemoteUnavailable("Google Sheets did not return a spreadsheet id")
        return spreadsheet_id

    def get_spreadsheet(self, spreadsheet_id: str) -> dict:
        return self._request("GET", f"{BASE_URL}/{spreadsheet_id}",
                             params={"fields": "spreadsheetId"})

    def batch_update_values(self, spreadsheet_id: str, data: list[dict]) -> dict:
        body = {"valueInputOption": "USER_ENTERED", "data": data}
        return self._request("POST", f"{BASE_URL}/{spreadsheet_id}/values:batchUpdate", json=body)

    def clear_values(self, spreadsheet_id: str, a1_range: str) -> dict:
        return self._request("POST", self._range_url(spreadsheet_id, a1_range) + ":clear")

    def get_values(self, spreadsheet_id: str, a1_range: str) -> list:
        data = self._request("GET", self._range_url(spreadsheet_id, a1_range))
        return data.get("values", [])


class SheetSync:
    """Outbound/inbound spreadsheet sync bound to the remembered spreadsheet id."""

    def __init__(self, storage: KeyValueStorage, client: SheetsClient):
        self._storage = storage
        self._client = client

    @property
    def spreadsheet_id(self) -> Optional[str]:
        return self._storage.load(SPREADSHEET_ID_KEY)

    def _get_or_create_spreadsheet(self) -> str:
        spreadsheet_id = self.spreadsheet_id
        if spreadsheet_id:
            try:
                self._client.get_spreadsheet(spreadsheet_id)
                return spreadsheet_id
            except RemoteUnavailable as e:
                logger.warning("Could not access stored spreadsheet, creating a new one: %s", e)
                self._storage.delete(SPREADSHEET_ID_KEY)

        spreadsheet_id = self._client.create_spreadsheet()
        self._storage.save(SPREADSHEET_ID_KEY, spreadsheet_id)
        logger.info("Created spreadsheet %s", spreadsheet_id)
        return spreadsheet_id

    def sync_trades_to_sheet(self, trades: list[Trade]) -> str:
        """Overwrite the Trades and Analysis sheets. Returns the spreadsheet URL."""
        spreadsheet_id = self._get_or_create_spreadsheet()
        rows = trade_rows(trades)
        self._client.batch_update_values(spreadsheet_id, [
            {"range": "Trades!A1", "values": [TRADE_HEADER] + rows},
            {"range": "Analysis!A1", "values": analysis_rows()},
        ])
        # Clear stale rows left over from a longer previous sync
        last_col = col_letter(TRADE_HEADER[-1])
        self._client.clear_values(spreadsheet_id, f"Trades!A{len(rows) + 2}:{last_col}")
        logger.info("Synced %d trades to spreadsheet %s", len(rows), spreadsheet_id)
        return f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}"

    def fetch_trades_from_sheet(self) -> list[Trade]:
        spreadsheet_id = self.spreadsheet_id
        if not spreadsheet_id:
            raise ValidationError("No spreadsheet has been synced yet. Please sync to a sheet first.")
        last_col = col_letter(TRADE_HEADER[-1])
        rows = self._client.get_values(spreadsheet_id, f"Trades!A2:{last_col}")
        return parse_sheet_rows(rows)


def get_sheet_sync(storage: KeyValueStorage, access_token: Optional[str] = None) -> SheetSync:
    token = access_token if access_token is not None else settings.GOOGLE_SHEETS_ACCESS_TOKEN
    return SheetSync(storage, SheetsClient(token))
