import pytest
import requests

from swingjournal.database import SPREADSHEET_ID_KEY
from swingjournal.errors import RemoteUnavailable, ValidationError
from swingjournal.models.trade import TradeStatus
from swingjournal.services.sheets_service import (
    TRADE_HEADER,
    SheetsClient,
    SheetSync,
    analysis_rows,
    col_letter,
    parse_sheet_rows,
    trade_rows,
)

from conftest import FakeSheetsClient, make_closed, make_open


def test_trade_rows_layout():
    rows = trade_rows([make_closed("AAPL", id="c1", entry_price=100, exit_price=90), make_open("TSLA", id="o1")])
    assert len(TRADE_HEADER) == 12
    assert rows[0][0] == "c1"
    assert rows[0][7] == "closed"
    assert rows[0][11] == "Loss"
    assert rows[1][8:] == ["", "", "", ""]


def test_zero_pnl_is_written_not_blank():
    rows = trade_rows([make_closed(entry_price=100, exit_price=100)])
    assert rows[0][10] == 0


def test_analysis_formulas_reference_trade_columns():
    rows = analysis_rows()
    assert rows[0] == ["Metric", "Value", "Description"]
    metrics = {r[0]: r[1] for r in rows[1:]}
    assert metrics["Total P/L"] == "=SUM(Trades!K:K)"
    assert metrics["Total Closed Trades"] == '=COUNTIF(Trades!H:H, "closed")'
    assert metrics["Winning Trades"] == '=COUNTIF(Trades!L:L, "Win")'
    assert metrics["Win Rate"] == "=IFERROR(B4/B3, 0)"
    assert "Profit Factor" in metrics


def test_first_sync_creates_and_remembers_spreadsheet(storage):
    client = FakeSheetsClient()
    url = SheetSync(storage, client).sync_trades_to_sheet([make_open(), make_closed()])
    assert url == "https://docs.google.com/spreadsheets/d/new-sheet-1"
    assert storage.load(SPREADSHEET_ID_KEY) == "new-sheet-1"
    sheet_id, data = client.last_update
    assert data[0]["range"] == "Trades!A1"
    assert data[0]["values"][0] == TRADE_HEADER
    assert len(data[0]["values"]) == 3
    assert data[1]["range"] == "Analysis!A1"
    assert client.last_clear == ("new-sheet-1", "Trades!A4:L")


def test_sync_reuses_accessible_spreadsheet(storage):
    storage.save(SPREADSHEET_ID_KEY, "existing")
    client = FakeSheetsClient()
    SheetSync(storage, client).sync_trades_to_sheet([])
    assert client.created == 0
    assert client.last_clear == ("existing", "Trades!A2:L")


def test_inaccessible_spreadsheet_is_replaced(storage):
    storage.save(SPREADSHEET_ID_KEY, "deleted")
    client = FakeSheetsClient(accessible=False)
    url = SheetSync(storage, client).sync_trades_to_sheet([make_open()])
    assert url.endswith("/new-sheet-1")
    assert storage.load(SPREADSHEET_ID_KEY) == "new-sheet-1"


def test_sync_failure_raises(storage):
    client = FakeSheetsClient(fail_on="batch_update")
    with pytest.raises(RemoteUnavailable):
        SheetSync(storage, client).sync_trades_to_sheet([make_open()])


def test_fetch_requires_previous_sync(storage):
    with pytest.raises(ValidationError):
        SheetSync(storage, FakeSheetsClient()).fetch_trades_from_sheet()


def test_fetch_reads_trades_range(storage):
    storage.save(SPREADSHEET_ID_KEY, "sheet")
    client = FakeSheetsClient(values=[
        ["t1", "AAPL", "2024-01-02", "100", "10", "Breakout", "", "closed", "2024-01-09", "110", "100", "Win"],
    ])
    trades = SheetSync(storage, client).fetch_trades_from_sheet()
    assert client.last_get == ("sheet", "Trades!A2:L")
    assert trades[0].pnl == 100
    assert trades[0].is_win is True


def test_fetch_failure_raises(storage):
    storage.save(SPREADSHEET_ID_KEY, "sheet")
    with pytest.raises(RemoteUnavailable):
        SheetSync(storage, FakeSheetsClient(fail_on="get_values")).fetch_trades_from_sheet()


def test_parse_sheet_rows_tolerates_bad_rows():
    rows = [
        ["a", "AAPL", "2024-01-02", "100", "10", "", "", "open"],
        ["b", "", "2024-01-02", "100", "10", "", "", "open"],
        ["c", "MSFT"],
        "not a row",
        ["", "TSLA", "2024-01-03", "200", "5", "Swing", "note", "closed", "2024-01-08", "190", "-50", "Loss"],
    ]
    trades = parse_sheet_rows(rows)
    assert [t.ticker for t in trades] == ["AAPL", "TSLA"]
    tsla = trades[1]
    assert tsla.id.startswith("sheet-import-")
    assert tsla.status == TradeStatus.CLOSED
    assert tsla.pnl == -50
    assert tsla.is_win is False


def test_closed_row_without_exit_price_is_open():
    rows = [["x", "AAPL", "2024-01-02", "100", "10", "", "", "closed", "", "", "", ""]]
    assert parse_sheet_rows(rows)[0].status == TradeStatus.OPEN


def test_empty_sheet_is_empty_import():
    assert parse_sheet_rows([]) == []


def test_col_letter():
    assert col_letter("ID") == "A"
    assert col_letter("Result") == "L"


def test_client_requires_token():
    with pytest.raises(ValidationError):
        SheetsClient("")


class _Response:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = b"x" if payload is not None else b""

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _Session:
    def __init__(self, response=None, exc=None):
        self.headers = {}
        self.response = response
        self.exc = exc
        self.requests = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.exc:
            raise self.exc
        return self.response


def test_client_sends_bearer_token_and_parses_values():
    session = _Session(_Response(200, {"values": [["a"]]}))
    client = SheetsClient("tok", session=session)
    assert client.get_values("sid", "Trades!A2:L") == [["a"]]
    assert session.headers["Authorization"] == "Bearer tok"
    method, url, _ = session.requests[0]
    assert method == "GET"
    assert url.endswith("/sid/values/Trades!A2:L")


def test_client_http_error_becomes_remote_unavailable():
    session = _Session(_Response(403, {"error": {"message": "forbidden"}}))
    with pytest.raises(RemoteUnavailable, match="forbidden"):
        SheetsClient("tok", session=session).get_spreadsheet("sid")


def test_client_network_error_becomes_remote_unavailable():
    session = _Session(exc=requests.ConnectionError("offline"))
    with pytest.raises(RemoteUnavailable):
        SheetsClient("tok", session=session).create_spreadsheet()


def test_duplicate_sheet_id_skips_the_later_row(ledger):
    rows = [
        ["dup", "AAPL", "2024-01-02", "100", "10", "", "", "open"],
        ["dup", "MSFT", "2024-01-03", "50", "4", "", "", "open"],
        ["ok", "TSLA", "2024-01-04", "200", "5", "", "", "open"],
    ]
    trades = parse_sheet_rows(rows)
    assert [(t.id, t.ticker) for t in trades] == [("dup", "AAPL"), ("ok", "TSLA")]
    assert ledger.replace_all(trades) == 2


def test_sheet_row_with_bad_date_is_skipped():
    rows = [
        ["a", "AAPL", "banana", "100", "10", "", "", "open"],
        ["b", "MSFT", "2024-01-03", "50", "4", "", "", "closed", "01/09/2024", "55", "20", "Win"],
        ["c", "TSLA", "2024-01-04", "200", "5", "", "", "open"],
    ]
    assert [t.id for t in parse_sheet_rows(rows)] == ["c"]
