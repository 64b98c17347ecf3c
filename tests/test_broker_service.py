import pytest

from swingjournal.errors import RemoteUnavailable, ValidationError
from swingjournal.models.profile import BrokerCredentials
from swingjournal.models.trade import TradeStatus
from swingjournal.services import broker_service
from swingjournal.services.broker_service import (
    DemoBrokerClient,
    get_broker_client,
    import_from_broker,
    pair_deals,
    parse_broker_positions,
)

CREDS = BrokerCredentials(api_key="demo-key", api_secret="demo-secret")


def deal(position_id, entry, price, time, symbol="AAPL", type_="buy", volume=10, comment=""):
    return {"position_id": position_id, "entry": entry, "price": price, "time": time,
            "symbol": symbol, "type": type_, "volume": volume, "comment": comment}


def test_pair_deals_matches_in_and_out():
    deals = [
        deal(1, "in", 100, "2024-01-02 10:00:00", comment="Breakout"),
        deal(1, "out", 110, "2024-01-09 15:00:00", type_="sell", comment="target hit"),
        deal(2, "in", 50, "2024-02-01 10:00:00", symbol="MSFT"),
        deal(3, "out", 70, "2024-02-03 10:00:00"),   # orphan exit
        {"entry": "in", "price": 1},                  # no position id
    ]
    positions = pair_deals(deals)
    assert [p["position_id"] for p in positions] == [2, 1]
    closed = positions[1]
    assert closed["closed"] is True
    assert closed["exit_price"] == 110
    assert closed["strategy"] == "Breakout"
    assert closed["comment"] == "target hit"
    assert positions[0]["closed"] is False


def test_positions_become_trades():
    positions = pair_deals([
        deal(1, "in", 100, "2024-01-02 10:00:00"),
        deal(1, "out", 95, "2024-01-05 10:00:00", type_="sell"),
        deal(2, "in", 50, "2024-02-01 10:00:00", symbol="MSFT"),
    ])
    trades = {t.ticker: t for t in parse_broker_positions(positions)}
    aapl = trades["AAPL"]
    assert aapl.id == "broker-1"
    assert aapl.status == TradeStatus.CLOSED
    assert aapl.entry_date == "2024-01-02"
    assert aapl.exit_date == "2024-01-05"
    assert aapl.pnl == pytest.approx(-50)
    assert aapl.is_win is False
    assert trades["MSFT"].status == TradeStatus.OPEN


def test_short_positions_are_skipped():
    positions = pair_deals([deal(1, "in", 100, "2024-01-02", type_="sell")])
    assert parse_broker_positions(positions) == []


def test_demo_import():
    trades = import_from_broker(CREDS, provider="demo")
    by_ticker = {t.ticker: t for t in trades}
    assert set(by_ticker) == {"AAPL", "GOOGL"}
    assert by_ticker["AAPL"].pnl == pytest.approx((178.20 - 170.50) * 50)
    assert by_ticker["AAPL"].is_win is True
    assert by_ticker["GOOGL"].is_win is False
    assert by_ticker["GOOGL"].strategy == "Mean Reversion"


def test_demo_requires_both_credentials():
    with pytest.raises(ValidationError):
        import_from_broker(BrokerCredentials(api_key="k", api_secret=""), provider="demo")


def test_history_requires_authentication():
    with pytest.raises(RemoteUnavailable):
        DemoBrokerClient(CREDS).get_trade_history()


def test_unknown_provider():
    with pytest.raises(ValidationError):
        get_broker_client(CREDS, "nope")


def test_fetch_failure_becomes_remote_unavailable(monkeypatch):
    def broken(self, days=30):
        raise ConnectionError("broker down")

    monkeypatch.setattr(broker_service.DemoBrokerClient, "get_trade_history", broken)
    with pytest.raises(RemoteUnavailable):
        import_from_broker(CREDS, provider="demo")
