"""
Draft controllers: stage edits to one record before committing.

A draft never touches the ledger or a store until `commit()`; `cancel()`
simply drops the staged values. The exit flow's preview and its commit both
go through `calculate_pnl`, so the previewed figure is the stored figure.
"""
from datetime import date
from typing import Any, Optional

from pydantic import ValidationError as ModelValidationError

from swingjournal.core.analytics import risk_reward
from swingjournal.core.ledger import TradeLedger
from swingjournal.core.stores import ProfileStore
from swingjournal.errors import ValidationError
from swingjournal.models.profile import UserProfile
from swingjournal.models.trade import ChartImage, Mindset, Trade, TradeStatus, calculate_pnl

NUMERIC_FIELDS = {"entry_price", "exit_price", "shares", "stop_loss", "take_profit"}
EDITABLE_FIELDS = {
    "ticker", "entry_date", "entry_price", "shares", "strategy", "notes",
    "mindset", "stop_loss", "take_profit", "exit_date", "exit_price",
}
PNL_FIELDS = ("entry_price", "exit_price", "shares")


def _today() -> str:
    return date.today().isoformat()


def _to_number(value: Any) -> float:
    """Form semantics: blank or unparseable numbers read as 0."""
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class TradeDraft:
    """Staging area behind the "log / edit / close position" form."""

    def __init__(self, trade_to_edit: Optional[Trade] = None):
        self.original = trade_to_edit
        self.committed = False
        self.cancelled = False
        if trade_to_edit:
            self.values = {
                "ticker": trade_to_edit.ticker,
                "entry_date": trade_to_edit.entry_date,
                "entry_price": trade_to_edit.entry_price,
                "shares": trade_to_edit.shares,
                "strategy": trade_to_edit.strategy,
                "notes": trade_to_edit.notes,
                "mindset": trade_to_edit.mindset or Mindset.NEUTRAL,
                "stop_loss": trade_to_edit.stop_loss or 0.0,
                "take_profit": trade_to_edit.take_profit or 0.0,
                "exit_date": trade_to_edit.exit_date or "",
                "exit_price": trade_to_edit.exit_price or 0.0,
            }
            self.chart_image = trade_to_edit.chart_image
        else:
            self.values = {
                "ticker": "",
                "entry_date": _today(),
                "entry_price": 0.0,
                "shares": 0.0,
                "strategy": "",
                "notes": "",
                "mindset": Mindset.NEUTRAL,
                "stop_loss": 0.0,
                "take_profit": 0.0,
                "exit_date": "",
                "exit_price": 0.0,
            }
            self.chart_image = None

    @property
    def is_new(self) -> bool:
        return self.original is None

    @property
    def mode(self) -> str:
        if self.is_new:
            return "new"
        return "close" if self.original.is_open else "edit"

    def set(self, field: str, value: Any) -> "TradeDraft":
        if field not in EDITABLE_FIELDS:
            raise ValidationError(f"Unknown trade field: {field}")
        if field in NUMERIC_FIELDS:
            value = _to_number(value)
        elif field == "mindset":
            value = Mindset(value) if value else Mindset.NEUTRAL
        elif value is None:
            value = ""
        self.values[field] = value
        return self

    def update(self, **fields) -> "TradeDraft":
        for field, value in fields.items():
            self.set(field, value)
        return self

    def attach_chart(self, image_base64: str, analysis: str = "") -> None:
        self.chart_image = ChartImage(base64=image_base64, analysis=analysis or None)

    def risk_reward(self) -> Optional[dict]:
        v = self.values
        return risk_reward(v["entry_price"], v["shares"], v["stop_loss"], v["take_profit"])

    @property
    def is_closing(self) -> bool:
        return bool(self.values["exit_date"]) and self.values["exit_price"] > 0

    def build(self) -> Trade:
        """Turn the staged values into a Trade without touching the ledger."""
        v = self.values
        base = {
            "ticker": v["ticker"].strip().upper(),
            "entry_date": v["entry_date"],
            "entry_price": v["entry_price"],
            "shares": v["shares"],
            "strategy": v["strategy"],
            "notes": v["notes"],
            "mindset": v["mindset"],
            "stop_loss": v["stop_loss"] or None,
            "take_profit": v["take_profit"] or None,
            "chart_image": self.chart_image,
        }
        if not self.is_new:
            base["id"] = self.original.id

        if self.original is not None and not self.original.is_open:
            # pnl/isWin were frozen at close; the prices behind them are read-only
            original = self.original
            changed = [
                field for field in PNL_FIELDS
                if v[field] != (getattr(original, field) or 0.0)
            ]
            if changed:
                raise ValidationError(
                    f"Cannot change {', '.join(changed)} of closed trade {original.id}"
                )
            return Trade(
                **base,
                status=TradeStatus.CLOSED,
                exit_date=v["exit_date"] or original.exit_date,
                exit_price=original.exit_price,
                pnl=original.pnl,
                is_win=original.is_win,
            )

        if self.is_closing:
            pnl, is_win = calculate_pnl(v["entry_price"], v["exit_price"], v["shares"])
            return Trade(
                **base,
                status=TradeStatus.CLOSED,
                exit_date=v["exit_date"],
                exit_price=v["exit_price"],
                pnl=pnl,
                is_win=is_win,
            )
        return Trade(**base, status=TradeStatus.OPEN)

    def commit(self, ledger: TradeLedger) -> Trade:
        if self.cancelled or self.committed:
            raise ValidationError("Draft is no longer active")
        try:
            trade = self.build()
        except ModelValidationError as e:
            raise ValidationError(str(e)) from e
        if self.is_new:
            ledger.add(trade)
        else:
            ledger.update(trade)
        self.committed = True
        return trade

    def cancel(self) -> None:
        self.cancelled = True


class ExitDraft:
    """Staging area behind the "exit trade" form."""

    def __init__(self, open_trades: list[Trade], selected_id: Optional[str] = None):
        self.open_trades = [t for t in open_trades if t.is_open]
        self.selected_id = selected_id or (self.open_trades[0].id if self.open_trades else "")
        self.exit_date = _today()
        self.exit_price = 0.0
        self.notes = ""
        self.cancelled = False

    @property
    def selected_trade(self) -> Optional[Trade]:
        return next((t for t in self.open_trades if t.id == self.selected_id), None)

    def select(self, trade_id: str) -> None:
        if not any(t.id == trade_id for t in self.open_trades):
            raise ValidationError(f"Trade {trade_id} is not an open position")
        self.selected_id = trade_id

    def set_exit_price(self, value: Any) -> None:
        self.exit_price = _to_number(value)

    def preview(self) -> Optional[dict]:
        trade = self.selected_trade
        if trade is None or self.exit_price <= 0:
            return None
        pnl, is_win = calculate_pnl(trade.entry_price, self.exit_price, trade.shares)
        return {"value": pnl, "is_win": is_win}

    def build(self) -> Trade:
        trade = self.selected_trade
        if trade is None or not self.exit_date or self.exit_price <= 0:
            raise ValidationError("Select a trade and fill in all exit details")
        closed = trade.closed(self.exit_date, self.exit_price)
        exit_notes = f"Exit Notes: {self.notes}"
        closed.notes = f"{trade.notes}\n\n{exit_notes}" if trade.notes else exit_notes
        return closed

    def commit(self, ledger: TradeLedger) -> Trade:
        if self.cancelled:
            raise ValidationError("Draft is no longer active")
        trade = self.build()
        ledger.update(trade)
        return trade

    def cancel(self) -> None:
        self.cancelled = True


class ProfileDraft:
    def __init__(self, current: UserProfile):
        self.values = current.model_copy()

    def set(self, username: Optional[str] = None, avatar: Optional[str] = None) -> "ProfileDraft":
        if username is not None:
            self.values.username = username
        if avatar is not None:
            self.values.avatar = avatar
        return self

    def commit(self, store: ProfileStore) -> UserProfile:
        if not self.values.username.strip():
            raise ValidationError("Username is required")
        return store.save(self.values)
