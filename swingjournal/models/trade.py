from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime
from enum import Enum
import uuid

from swingjournal.errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class Mindset(str, Enum):
    DISCIPLINED = "Disciplined"
    FOMO = "FOMO"
    ANXIOUS = "Anxious"
    CONFIDENT = "Confident"
    NEUTRAL = "Neutral"


class ChartImage(BaseModel):
    base64: str
    analysis: Optional[str] = None


class Trade(BaseModel):
    # Stored as camelCase JSON (entryDate, isWin, chartImage, ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    ticker: str
    entry_date: str                      # YYYY-MM-DD
    entry_price: float = Field(ge=0)
    shares: float
    strategy: str = ""
    notes: str = ""
    status: TradeStatus = TradeStatus.OPEN
    # Planning
    mindset: Optional[Mindset] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    # Closing
    exit_date: Optional[str] = None
    exit_price: Optional[float] = None
    # Frozen at close time, never recomputed
    pnl: Optional[float] = None
    is_win: Optional[bool] = None
    chart_image: Optional[ChartImage] = None

    @field_validator("entry_date", "exit_date")
    @classmethod
    def _iso_date(cls, value: Optional[str]) -> Optional[str]:
        # Blank entry dates are reported by the ledger as a missing field
        if value and not is_iso_date(value):
            raise ValueError(f"{value!r} is not a YYYY-MM-DD date")
        return value

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def closed(self, exit_date: str, exit_price: float) -> "Trade":
        """Return a closed copy of this open trade with pnl/isWin computed now."""
        if not self.is_open:
            raise ValidationError(f"Trade {self.id} is already closed")
        pnl, is_win = calculate_pnl(self.entry_price, exit_price, self.shares)
        return self.model_copy(update={
            "status": TradeStatus.CLOSED,
            "exit_date": exit_date,
            "exit_price": exit_price,
            "pnl": pnl,
            "is_win": is_win,
        })


def calculate_pnl(entry_price: float, exit_price: float, shares: float) -> tuple[float, bool]:
    """The single P/L formula used by exit previews, commits and importers."""
    pnl = (exit_price - entry_price) * shares
    return pnl, pnl > 0


def is_iso_date(value: str) -> bool:
    try:
        return datetime.strptime(value, DATE_FORMAT).strftime(DATE_FORMAT) == value
    except ValueError:
        return False


def new_trade_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex}"
