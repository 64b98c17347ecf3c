from datetime import date

import pytest

from swingjournal.core.drafts import ExitDraft, ProfileDraft, TradeDraft
from swingjournal.core.stores import ProfileStore
from swingjournal.errors import ValidationError
from swingjournal.models.trade import Mindset, TradeStatus

from conftest import make_closed, make_open


def test_new_draft_defaults():
    draft = TradeDraft()
    assert draft.mode == "new"
    assert draft.values["entry_date"] == date.today().isoformat()
    assert draft.values["mindset"] == Mindset.NEUTRAL


def test_new_open_trade(ledger):
    draft = TradeDraft().update(ticker=" nvda ", entry_price="450.5", shares="10",
                                strategy="Breakout", mindset="Confident")
    trade = draft.commit(ledger)
    assert trade.ticker == "NVDA"
    assert trade.status == TradeStatus.OPEN
    assert trade.entry_price == 450.5
    assert trade.mindset == Mindset.CONFIDENT
    assert trade.stop_loss is None
    assert ledger.trades[0].id == trade.id


def test_blank_numbers_read_as_zero():
    draft = TradeDraft().set("entry_price", "").set("shares", "abc")
    assert draft.values["entry_price"] == 0
    assert draft.values["shares"] == 0


def test_new_trade_with_exit_fields_closes_immediately(ledger):
    trade = TradeDraft().update(
        ticker="AAPL", entry_date="2024-01-02", entry_price=100, shares=10,
        exit_date="2024-01-09", exit_price=110,
    ).commit(ledger)
    assert trade.status == TradeStatus.CLOSED
    assert trade.pnl == pytest.approx(100)
    assert trade.is_win is True


def test_new_trade_without_ticker_is_rejected(ledger):
    with pytest.raises(ValidationError):
        TradeDraft().update(entry_price=10, shares=1).commit(ledger)
    assert len(ledger) == 0


def test_negative_entry_price_is_rejected(ledger):
    with pytest.raises(ValidationError):
        TradeDraft().update(ticker="AAPL", entry_price=-1, shares=1).commit(ledger)


def test_unknown_field_is_rejected():
    with pytest.raises(ValidationError):
        TradeDraft().set("pnl", 5)


def test_closing_an_open_trade_through_edit(ledger):
    trade = ledger.add(make_open("AAPL", entry_price=100, shares=10))
    draft = TradeDraft(trade)
    assert draft.mode == "close"
    closed = draft.update(exit_date="2024-02-01", exit_price=90).commit(ledger)
    assert closed.id == trade.id
    assert closed.pnl == pytest.approx(-100)
    assert closed.is_win is False


def test_editing_closed_trade_keeps_frozen_pnl(ledger):
    trade = ledger.add(make_closed("AAPL", entry_price=100, exit_price=110, shares=10))
    draft = TradeDraft(trade)
    assert draft.mode == "edit"
    edited = draft.update(notes="lesson learned", strategy="Pullback").commit(ledger)
    assert edited.notes == "lesson learned"
    assert edited.pnl == pytest.approx(100)
    assert edited.is_win is True
    assert ledger.get(trade.id).pnl == pytest.approx(100)


@pytest.mark.parametrize("changes", [
    {"entry_price": 50},
    {"exit_price": 200, "shares": 3},
    {"shares": 11},
])
def test_closed_trade_prices_are_read_only(ledger, changes):
    trade = ledger.add(make_closed("AAPL", entry_price=100, exit_price=110, shares=10))
    with pytest.raises(ValidationError):
        TradeDraft(trade).update(**changes).commit(ledger)
    stored = ledger.get(trade.id)
    assert (stored.entry_price, stored.exit_price, stored.shares) == (100, 110, 10)
    assert stored.pnl == pytest.approx((stored.exit_price - stored.entry_price) * stored.shares)


def test_closed_trade_accepts_unchanged_prices(ledger):
    trade = ledger.add(make_closed("AAPL", entry_price=100, exit_price=110, shares=10))
    edited = TradeDraft(trade).update(entry_price="100", exit_price=110, shares=10,
                                      exit_date="2024-01-11").commit(ledger)
    assert edited.exit_date == "2024-01-11"
    assert edited.pnl == pytest.approx(100)


def test_new_trade_with_bad_date_is_rejected(ledger):
    with pytest.raises(ValidationError):
        TradeDraft().update(ticker="AAPL", entry_date="banana", entry_price=10, shares=1).commit(ledger)
    assert len(ledger) == 0


def test_exit_with_bad_date_is_rejected(ledger):
    trade = ledger.add(make_open())
    draft = ExitDraft(ledger.open_trades())
    draft.exit_date = "next tuesday"
    draft.set_exit_price(120)
    with pytest.raises(ValidationError):
        draft.commit(ledger)
    assert ledger.get(trade.id).is_open


def test_chart_image_is_kept(ledger):
    draft = TradeDraft().update(ticker="AAPL", entry_price=10, shares=1)
    draft.attach_chart("aGVsbG8=", "bull flag")
    trade = draft.commit(ledger)
    assert trade.chart_image.base64 == "aGVsbG8="
    assert ledger.trades[0].to_storage()["chartImage"]["analysis"] == "bull flag"


def test_cancelled_draft_cannot_commit(ledger):
    draft = TradeDraft().update(ticker="AAPL", entry_price=10, shares=1)
    draft.cancel()
    with pytest.raises(ValidationError):
        draft.commit(ledger)
    assert len(ledger) == 0


def test_draft_risk_reward():
    draft = TradeDraft().update(entry_price=100, shares=10, stop_loss=95, take_profit=110)
    assert draft.risk_reward()["ratio"] == pytest.approx(2)


def test_exit_draft_defaults_to_first_open_trade():
    a, b = make_open("AAPL"), make_open("MSFT")
    draft = ExitDraft([make_closed("OLD"), a, b])
    assert draft.selected_id == a.id
    assert draft.exit_date == date.today().isoformat()
    assert draft.exit_price == 0
    assert draft.preview() is None


def test_exit_preview_matches_commit(ledger):
    trade = ledger.add(make_open("AAPL", entry_price=100, shares=10))
    draft = ExitDraft(ledger.open_trades())
    draft.set_exit_price("112.5")
    preview = draft.preview()
    closed = draft.commit(ledger)
    assert preview["value"] == pytest.approx(closed.pnl)
    assert preview["is_win"] is closed.is_win
    assert ledger.get(trade.id).status == TradeStatus.CLOSED


@pytest.mark.parametrize("original,expected", [
    ("", "Exit Notes: took profit"),
    ("entry on pullback", "entry on pullback\n\nExit Notes: took profit"),
])
def test_exit_notes_are_appended(ledger, original, expected):
    ledger.add(make_open(notes=original))
    draft = ExitDraft(ledger.open_trades())
    draft.set_exit_price(120)
    draft.notes = "took profit"
    assert draft.commit(ledger).notes == expected


def test_exit_requires_price(ledger):
    ledger.add(make_open())
    draft = ExitDraft(ledger.open_trades())
    with pytest.raises(ValidationError):
        draft.commit(ledger)


def test_exit_select_rejects_closed_trade():
    closed = make_closed()
    draft = ExitDraft([closed, make_open()])
    with pytest.raises(ValidationError):
        draft.select(closed.id)


def test_profile_draft(storage):
    store = ProfileStore(storage)
    saved = ProfileDraft(store.get()).set(username="Ava", avatar="🚀").commit(store)
    assert saved.username == "Ava"
    assert ProfileStore(storage).get().avatar == "🚀"


def test_profile_draft_requires_username(storage):
    store = ProfileStore(storage)
    with pytest.raises(ValidationError):
        ProfileDraft(store.get()).set(username="  ").commit(store)
    assert store.get().username == "Trader"
