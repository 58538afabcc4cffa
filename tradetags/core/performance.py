"""
Performance formulas for tagged trade records.

``calculate_tag_performance`` is the one place the win rate, average P&L and
profit factor formulas live; the tag index and the analytics engine both call it.
"""
import math
from datetime import date
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from tradetags.core.models import DetailedTagPerformance, TagPerformance, TradeRecord

# Finite stand-in for an infinite profit factor (wins with no losses)
PROFIT_FACTOR_CAP = 999.99


def profit_factor(total_wins: float, total_losses: float) -> float:
    """Gross profit over absolute gross loss, capped at PROFIT_FACTOR_CAP."""
    if total_losses == 0:
        return PROFIT_FACTOR_CAP if total_wins > 0 else 0.0
    return min(total_wins / total_losses, PROFIT_FACTOR_CAP)


def _closed_pnls(records: Iterable[TradeRecord]) -> List[float]:
    return [record.pnl or 0.0 for record in records if record.is_closed]


def calculate_tag_performance(tag: str, records: Iterable[TradeRecord]) -> TagPerformance:
    """
    Compute performance over the closed records among `records`.

    Parameters
    ----
    tag : str
        Normalized tag the records carry
    records : Iterable[TradeRecord]
        Records already filtered to those carrying the tag

    Returns
    ----
    TagPerformance
        Zeroed snapshot when there are no closed records
    """
    pnls = _closed_pnls(records)
    total_trades = len(pnls)
    if total_trades == 0:
        return TagPerformance(tag=tag)

    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    total_pnl = sum(pnls)

    return TagPerformance(
        tag=tag,
        total_trades=total_trades,
        win_rate=len(wins) / total_trades * 100,
        average_pnl=total_pnl / total_trades,
        total_pnl=total_pnl,
        profit_factor=profit_factor(sum(wins), abs(sum(losses))),
    )


def _streaks(pnls: List[float]) -> Tuple[int, int]:
    max_win = max_loss = current_win = current_loss = 0
    for pnl in pnls:
        if pnl > 0:
            current_win += 1
            current_loss = 0
            max_win = max(max_win, current_win)
        elif pnl < 0:
            current_loss += 1
            current_win = 0
            max_loss = max(max_loss, current_loss)
    return max_win, max_loss


def _sharpe_ratio(pnls: List[float]) -> float:
    if len(pnls) < 2:
        return 0.0
    mean = sum(pnls) / len(pnls)
    variance = sum((p - mean) ** 2 for p in pnls) / len(pnls)
    std_dev = math.sqrt(variance)
    return 0.0 if std_dev == 0 else mean / std_dev


def _max_drawdown(pnls: List[float]) -> float:
    peak = running = drawdown = 0.0
    for pnl in pnls:
        running += pnl
        peak = max(peak, running)
        drawdown = max(drawdown, peak - running)
    return drawdown


def _consistency(records: List[TradeRecord]) -> float:
    """Percentage of calendar months with positive total P&L."""
    monthly: Dict[str, float] = defaultdict(float)
    for record in records:
        if record.date is None:
            continue
        monthly[record.date.strftime("%Y-%m")] += record.pnl or 0.0
    if not monthly:
        return 0.0
    profitable = sum(1 for total in monthly.values() if total > 0)
    return profitable / len(monthly) * 100


def calculate_detailed_performance(tag: str, records: Iterable[TradeRecord]) -> DetailedTagPerformance:
    """Extended metrics (streaks, drawdown, Sharpe, consistency) over closed records."""
    records = list(records)
    basic = calculate_tag_performance(tag, records)
    if basic.total_trades == 0:
        return DetailedTagPerformance(tag=tag)

    # Chronological order for streaks and drawdown; undated records go last
    closed = sorted(
        (r for r in records if r.is_closed),
        key=lambda r: (r.date is None, r.date or date.min),
    )
    pnls = [r.pnl or 0.0 for r in closed]
    win_streak, loss_streak = _streaks(pnls)
    max_drawdown = _max_drawdown(pnls)

    return DetailedTagPerformance(
        tag=tag,
        total_trades=basic.total_trades,
        win_rate=basic.win_rate,
        average_pnl=basic.average_pnl,
        total_pnl=basic.total_pnl,
        profit_factor=basic.profit_factor,
        best_trade=max(pnls),
        worst_trade=min(pnls),
        win_streak=win_streak,
        loss_streak=loss_streak,
        sharpe_ratio=_sharpe_ratio(pnls),
        max_drawdown=max_drawdown,
        recovery_factor=0.0 if max_drawdown == 0 else basic.total_pnl / max_drawdown,
        consistency=_consistency(closed),
    )
