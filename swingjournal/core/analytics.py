"""
Journal analytics: pure functions over a ledger snapshot.

Nothing is cached: every call recomputes from the full list of trades and the
current live-price map (ticker -> price, or None when unknown).
"""
from typing import Mapping, Optional

import numpy as np

from swingjournal.models.trade import Trade, TradeStatus

PriceMap = Mapping[str, Optional[float]]


def _closed(trades: list[Trade]) -> list[Trade]:
    return [t for t in trades if t.status == TradeStatus.CLOSED]


def total_realized_pnl(trades: list[Trade]) -> float:
    return float(sum(t.pnl or 0.0 for t in _closed(trades)))


def win_rate(trades: list[Trade]) -> float:
    closed = _closed(trades)
    if not closed:
        return 0.0
    wins = sum(1 for t in closed if t.is_win)
    return 100 * wins / len(closed)


def unrealized_pnl(trades: list[Trade], prices: PriceMap) -> float:
    total = 0.0
    for t in trades:
        if t.status != TradeStatus.OPEN:
            continue
        price = prices.get(t.ticker)
        if price is None:
            continue
        total += (price - t.entry_price) * t.shares
    return total


def position_unrealized_pnl(trade: Trade, prices: PriceMap) -> Optional[float]:
    """Unrealized P/L of one open trade, or None without a live price."""
    price = prices.get(trade.ticker)
    if trade.status != TradeStatus.OPEN or price is None:
        return None
    return (price - trade.entry_price) * trade.shares


def equity_curve(trades: list[Trade]) -> list[dict]:
    """Closed trades by entry date (ties keep ledger order) with running P/L."""
    ordered = sorted(_closed(trades), key=lambda t: t.entry_date)
    points = []
    cumulative = 0.0
    for i, t in enumerate(ordered, start=1):
        pnl = t.pnl or 0.0
        cumulative += pnl
        points.append({
            "name": f"Trade {i}",
            "trade_id": t.id,
            "ticker": t.ticker,
            "entry_date": t.entry_date,
            "pnl": pnl,
            "cumulative_pnl": cumulative,
        })
    return points


def _max_drawdown(cumulative: list[float]) -> float:
    """Largest peak-to-trough drop of the cumulative P/L, in currency units."""
    if not cumulative:
        return 0.0
    curve = np.array([0.0] + cumulative)
    peaks = np.maximum.accumulate(curve)
    return float(np.max(peaks - curve))


def performance_summary(trades: list[Trade], prices: PriceMap = None) -> dict:
    """Aggregate stats for the journal header and the stats endpoint."""
    prices = prices or {}
    closed = _closed(trades)
    open_count = len(trades) - len(closed)
    if not closed:
        return {
            "total_trades": len(trades),
            "open_trades": open_count,
            "closed_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "total_pnl": 0.0,
            "unrealized_pnl": unrealized_pnl(trades, prices),
            "avg_pnl": 0.0,
            "avg_win": 0.0,
            "avg_loss": 0.0,
            "best_trade": 0.0,
            "worst_trade": 0.0,
            "profit_factor": 0.0,
            "max_drawdown": 0.0,
        }

    pnls = [t.pnl or 0.0 for t in closed]
    wins = [t.pnl or 0.0 for t in closed if t.is_win]
    losses = [t.pnl or 0.0 for t in closed if not t.is_win]
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))
    curve = [p["cumulative_pnl"] for p in equity_curve(trades)]

    return {
        "total_trades": len(trades),
        "open_trades": open_count,
        "closed_trades": len(closed),
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "win_rate": win_rate(trades),
        "total_pnl": total_realized_pnl(trades),
        "unrealized_pnl": unrealized_pnl(trades, prices),
        "avg_pnl": float(np.mean(pnls)),
        "avg_win": float(np.mean(wins)) if wins else 0.0,
        "avg_loss": float(np.mean(losses)) if losses else 0.0,
        "best_trade": max(pnls),
        "worst_trade": min(pnls),
        "profit_factor": gross_profit / gross_loss if gross_loss else 0.0,
        "max_drawdown": _max_drawdown(curve),
    }


def risk_reward(
    entry_price: float,
    shares: float,
    stop_loss: Optional[float],
    take_profit: Optional[float],
) -> Optional[dict]:
    """
    Planned risk vs reward for a long position.

    Returns None while the plan is incomplete, and an `error` entry when the
    stop is not below the entry.
    """
    if not entry_price or not shares or not stop_loss or not take_profit:
        return None
    if stop_loss <= 0 or take_profit <= 0:
        return None
    if entry_price <= stop_loss:
        return {
            "profit": 0.0,
            "loss": 0.0,
            "ratio": 0.0,
            "error": "Stop loss must be below entry for a long trade.",
        }

    potential_loss = (entry_price - stop_loss) * shares
    potential_profit = (take_profit - entry_price) * shares
    if potential_loss <= 0 or potential_profit <= 0:
        return None
    return {
        "profit": potential_profit,
        "loss": potential_loss,
        "ratio": potential_profit / potential_loss,
    }
