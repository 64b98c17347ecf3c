import pytest

from swingjournal.core.ledger import TradeLedger
from swingjournal.database import MemoryKeyValueStore
from swingjournal.errors import RemoteUnavailable
from swingjournal.models.trade import Trade, TradeStatus, calculate_pnl


@pytest.fixture
def storage():
    return MemoryKeyValueStore()


@pytest.fixture
def ledger(storage):
    return TradeLedger(storage)


def make_open(ticker="AAPL", entry_price=100.0, shares=10.0, entry_date="2024-01-02", **kw):
    return Trade(ticker=ticker, entry_date=entry_date, entry_price=entry_price,
                 shares=shares, **kw)


def make_closed(ticker="AAPL", entry_price=100.0, exit_price=110.0, shares=10.0,
                entry_date="2024-01-02", exit_date="2024-01-10", **kw):
    pnl, is_win = calculate_pnl(entry_price, exit_price, shares)
    return Trade(ticker=ticker, entry_date=entry_date, entry_price=entry_price,
                 shares=shares, status=TradeStatus.CLOSED, exit_date=exit_date,
                 exit_price=exit_price, pnl=pnl, is_win=is_win, **kw)


class FakeSheetsClient:
    """Records calls instead of talking to Google."""

    def __init__(self, accessible=True, values=None, fail_on=None):
        self.accessible = accessible
        self.values = values or []
        self.fail_on = fail_on
        self.calls = []
        self.created = 0

    def _maybe_fail(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise RemoteUnavailable(f"{name} failed")

    def create_spreadsheet(self):
        self._maybe_fail("create")
        self.created += 1
        return f"new-sheet-{self.created}"

    def get_spreadsheet(self, spreadsheet_id):
        self._maybe_fail("get")
        if not self.accessible:
            raise RemoteUnavailable("HTTP 404")
        return {"spreadsheetId": spreadsheet_id}

    def batch_update_values(self, spreadsheet_id, data):
        self._maybe_fail("batch_update")
        self.last_update = (spreadsheet_id, data)
        return {}

    def clear_values(self, spreadsheet_id, a1_range):
        self._maybe_fail("clear")
        self.last_clear = (spreadsheet_id, a1_range)
        return {}

    def get_values(self, spreadsheet_id, a1_range):
        self._maybe_fail("get_values")
        self.last_get = (spreadsheet_id, a1_range)
        return self.values
