from __future__ import annotations

"""Aggregate trading statistics from the closed-position ledger."""

from dataclasses import dataclass
from typing import Iterable

from .models import Position


@dataclass(slots=True)
class TradingStatistics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    ties: int
    win_rate: float
    total_pnl: float
    total_pnl_percent: float
    avg_win: float
    avg_loss: float
    largest_win: float
    largest_loss: float
    gross_profit: float
    gross_loss: float
    profit_factor: float
    initial_balance: float
    current_balance: float
    peak_balance: float
    max_drawdown: float
    max_drawdown_percent: float
    open_positions: int

    def to_dict(self) -> dict[str, float | int]:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "ties": self.ties,
            "win_rate": self.win_rate,
            "total_pnl": self.total_pnl,
            "total_pnl_percent": self.total_pnl_percent,
            "avg_win": self.avg_win,
            "avg_loss": self.avg_loss,
            "largest_win": self.largest_win,
            "largest_loss": self.largest_loss,
            "gross_profit": self.gross_profit,
            "gross_loss": self.gross_loss,
            "profit_factor": self.profit_factor,
            "initial_balance": self.initial_balance,
            "current_balance": self.current_balance,
            "peak_balance": self.peak_balance,
            "max_drawdown": self.max_drawdown,
            "max_drawdown_percent": self.max_drawdown_percent,
            "open_positions": self.open_positions,
        }


def compute_statistics(
    ledger: Iterable[Position],
    *,
    initial_balance: float,
    free_balance: float,
    reserved_margin: float = 0.0,
    open_positions: int = 0,
) -> TradingStatistics:
    """Summarise ``ledger`` (oldest close first).

    ``win_rate`` is a percent. Drawdown walks the cumulative balance curve
    built by adding each realized PnL to ``initial_balance`` in close order.
    """
    trades = 0
    wins = 0
    losses = 0
    ties = 0
    gross_profit = 0.0
    gross_loss = 0.0
    largest_win = 0.0
    largest_loss = 0.0
    balance = initial_balance
    peak = initial_balance
    max_drawdown = 0.0
    max_drawdown_percent = 0.0
    for position in ledger:
        pnl = position.realized_pnl or 0.0
        trades += 1
        if pnl > 0:
            wins += 1
            gross_profit += pnl
            largest_win = max(largest_win, pnl)
        elif pnl < 0:
            losses += 1
            gross_loss += abs(pnl)
            largest_loss = min(largest_loss, pnl)
        else:
            ties += 1
        balance += pnl
        if balance > peak:
            peak = balance
        drawdown = peak - balance
        if drawdown > max_drawdown:
            max_drawdown = drawdown
            max_drawdown_percent = drawdown / peak * 100.0 if peak > 0 else 0.0

    total_pnl = gross_profit - gross_loss
    if gross_loss:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = float("inf") if gross_profit else 0.0
    return TradingStatistics(
        total_trades=trades,
        winning_trades=wins,
        losing_trades=losses,
        ties=ties,
        win_rate=(wins / trades * 100.0) if trades else 0.0,
        total_pnl=total_pnl,
        total_pnl_percent=(total_pnl / initial_balance * 100.0) if initial_balance else 0.0,
        avg_win=(gross_profit / wins) if wins else 0.0,
        avg_loss=(gross_loss / losses) if losses else 0.0,
        largest_win=largest_win,
        largest_loss=largest_loss,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=profit_factor,
        initial_balance=initial_balance,
        current_balance=free_balance + reserved_margin,
        peak_balance=peak,
        max_drawdown=max_drawdown,
        max_drawdown_percent=max_drawdown_percent,
        open_positions=open_positions,
    )


__all__ = ["TradingStatistics", "compute_statistics"]
