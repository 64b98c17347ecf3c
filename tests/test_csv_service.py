import csv
import io
from datetime import date

import pytest

from swingjournal.errors import ValidationError
from swingjournal.models.trade import TradeStatus
from swingjournal.services.csv_service import (
    HEADER,
    csv_filename,
    export_trades_csv,
    parse_trades_csv,
)

from conftest import make_closed, make_open


def test_header_and_rows():
    text = export_trades_csv([make_closed("AAPL", id="t1"), make_open("TSLA", id="t2")])
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == HEADER
    assert rows[1][:3] == ["t1", "AAPL", "closed"]
    assert rows[1][-1] == "true"
    # open trade: exitDate, exitPrice, pnl, isWin are empty
    assert rows[2][5] == "" and rows[2][6] == "" and rows[2][10] == "" and rows[2][11] == ""


def test_empty_ledger_exports_header_only():
    assert export_trades_csv([]).strip() == ",".join(HEADER)


def test_special_characters_are_quoted():
    trade = make_open(notes='He said "buy", then\nsold', strategy="a,b")
    text = export_trades_csv([trade])
    assert '"He said ""buy"", then\nsold"' in text
    assert '"a,b"' in text


def test_round_trip_preserves_notes():
    original = make_closed("AAPL", notes='comma, quote " and\nnewline', strategy="Pullback")
    parsed = parse_trades_csv(export_trades_csv([original]))
    assert len(parsed) == 1
    t = parsed[0]
    assert t.id == original.id
    assert t.notes == original.notes
    assert t.status == TradeStatus.CLOSED
    assert t.pnl == pytest.approx(original.pnl)
    assert t.is_win is True


def test_open_trade_round_trip():
    original = make_open("TSLA", entry_price=200, shares=5)
    t = parse_trades_csv(export_trades_csv([original]))[0]
    assert t.status == TradeStatus.OPEN
    assert t.exit_price is None and t.pnl is None


def test_bad_rows_are_skipped():
    text = (
        ",".join(HEADER) + "\n"
        "a,AAPL,open,2024-01-02,100,,,10,,,,\n"
        "b,,open,2024-01-02,100,,,10,,,,\n"
        "c,MSFT,closed,2024-01-03,50,2024-01-05,55,2,,,10,true\n"
    )
    trades = parse_trades_csv(text)
    assert [t.id for t in trades] == ["a", "c"]


def test_closed_row_without_pnl_imports_as_open():
    text = ",".join(HEADER) + "\nx,AAPL,closed,2024-01-02,100,2024-01-05,110,10,,,,\n"
    t = parse_trades_csv(text)[0]
    assert t.status == TradeStatus.OPEN


def test_missing_required_columns():
    with pytest.raises(ValidationError):
        parse_trades_csv("foo,bar\n1,2\n")


def test_filename():
    assert csv_filename(date(2024, 5, 7)) == "swing-journal-export-2024-05-07.csv"


def test_duplicate_id_row_is_skipped(ledger):
    text = (
        ",".join(HEADER) + "\n"
        "dup,AAPL,open,2024-01-02,100,,,10,,,,\n"
        "dup,MSFT,open,2024-01-03,50,,,4,,,,\n"
        "ok,TSLA,open,2024-01-04,200,,,5,,,,\n"
    )
    trades = parse_trades_csv(text)
    assert [(t.id, t.ticker) for t in trades] == [("dup", "AAPL"), ("ok", "TSLA")]
    assert ledger.replace_all(trades) == 2


def test_row_with_malformed_date_is_skipped():
    text = (
        ",".join(HEADER) + "\n"
        "a,AAPL,open,2024-13-40,100,,,10,,,,\n"
        "b,MSFT,open,2024-01-03,50,,,4,,,,\n"
    )
    assert [t.id for t in parse_trades_csv(text)] == ["b"]
