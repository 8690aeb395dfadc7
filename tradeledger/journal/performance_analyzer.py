"""
Performance Analyzer — trade outcomes reconstructed from account snapshots
==========================================================================

The ledger stores one account snapshot per cycle, never an explicit
"trade closed" event. Trades are inferred in one forward pass:

  - A position opens when a position key appears (or position_count rises).
  - A position closes when its key disappears (or position_count falls).
  - Everything closing in the same cycle is ONE joint trade.
  - A trade's P&L is the equity at the closing snapshot minus the equity at
    its baseline: the previous close, or the entry of the oldest position held
    going into this close when that is more recent. Over a holding episode
    (first entry to the next flat snapshot) the trade P&Ls sum to the
    episode's equity change, however the positions overlap.
  - Positions already open at the first scanned snapshot take that snapshot
    as their entry and are flagged entry_observed=False.

This is a bounded-accuracy approximation. Reports say so (best_effort=True)
and count the trades it affects.

Windowed analysis counts trades that CLOSE inside the last N records but scans
up to `performance_lookback_cycles` earlier records so that a long-running
position is attributed its full outcome instead of the in-window tail.
"""

from __future__ import annotations
import math
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

import numpy as np

from tradeledger.journal.decision_ledger import DecisionLedger
from tradeledger.journal.decision_models import DecisionRecord
from tradeledger.utils.config import get_settings
from tradeledger.utils.exceptions import InsufficientDataError
from tradeledger.utils.logger import get_logger, strategy_context

logger = get_logger(__name__)

RECENT_TRADES_LIMIT = 10


# ── Result models ────────────────────────────────────────────

@dataclass
class ClosedTrade:
    """One inferred round trip (possibly several positions closed jointly)."""
    entry_cycle: int
    close_cycle: int
    opened_at: datetime
    closed_at: datetime
    entry_equity: float
    exit_equity: float
    positions_closed: int = 1
    symbols: Tuple[str, ...] = ()
    entry_observed: bool = True
    baseline_cycle: Optional[int] = None

    @property
    def pnl(self) -> float:
        return self.exit_equity - self.entry_equity

    @property
    def pnl_pct(self) -> float:
        return (self.pnl / self.entry_equity * 100) if self.entry_equity > 0 else 0.0

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    @property
    def joint(self) -> bool:
        return self.positions_closed > 1

    @property
    def symbol_label(self) -> str:
        return "+".join(self.symbols)

    def to_dict(self) -> dict:
        return {
            "entry_cycle": self.entry_cycle,
            "close_cycle": self.close_cycle,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "duration_minutes": round((self.closed_at - self.opened_at).total_seconds() / 60, 1),
            "entry_equity": round(self.entry_equity, 4),
            "exit_equity": round(self.exit_equity, 4),
            "pnl": round(self.pnl, 4),
            "pnl_pct": round(self.pnl_pct, 4),
            "positions_closed": self.positions_closed,
            "symbols": list(self.symbols),
            "entry_observed": self.entry_observed,
            "baseline_cycle": self.baseline_cycle,
        }


@dataclass
class LedgerStatistics:
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    open_events: int = 0
    close_events: int = 0
    total_realized_pnl: float = 0.0
    win_count: int = 0
    loss_count: int = 0
    max_drawdown: float = 0.0
    max_drawdown_pct: float = 0.0
    current_streak: int = 0
    first_cycle: Optional[int] = None
    last_cycle: Optional[int] = None

    @property
    def win_rate(self) -> float:
        closed = self.win_count + self.loss_count
        return self.win_count / closed if closed else 0.0

    def to_dict(self) -> dict:
        return {
            "total_cycles": self.total_cycles,
            "successful_cycles": self.successful_cycles,
            "failed_cycles": self.failed_cycles,
            "open_events": self.open_events,
            "close_events": self.close_events,
            "total_realized_pnl": round(self.total_realized_pnl, 4),
            "win_count": self.win_count,
            "loss_count": self.loss_count,
            "win_rate": round(self.win_rate, 4),
            "max_drawdown": round(self.max_drawdown, 4),
            "max_drawdown_pct": round(self.max_drawdown_pct, 4),
            "current_streak": self.current_streak,
            "first_cycle": self.first_cycle,
            "last_cycle": self.last_cycle,
        }


@dataclass
class PerformanceReport:
    window: int
    cycles_analyzed: int = 0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_realized_pnl: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_pct: float = 0.0
    boundary_trades: int = 0
    joint_closes: int = 0
    recent_trades: List[ClosedTrade] = field(default_factory=list)
    symbol_stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    best_symbol: str = ""
    worst_symbol: str = ""
    best_effort: bool = True

    @property
    def win_rate(self) -> float:
        closed = self.winning_trades + self.losing_trades
        return self.winning_trades / closed if closed else 0.0

    def to_dict(self) -> dict:
        return {
            "window": self.window,
            "cycles_analyzed": self.cycles_analyzed,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": round(self.win_rate, 4),
            "total_realized_pnl": round(self.total_realized_pnl, 4),
            "avg_win": round(self.avg_win, 4),
            "avg_loss": round(self.avg_loss, 4),
            "profit_factor": round(self.profit_factor, 4) if math.isfinite(self.profit_factor) else None,
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "max_drawdown": round(self.max_drawdown, 4),
            "max_drawdown_pct": round(self.max_drawdown_pct, 4),
            "boundary_trades": self.boundary_trades,
            "joint_closes": self.joint_closes,
            "recent_trades": [t.to_dict() for t in self.recent_trades],
            "symbol_stats": self.symbol_stats,
            "best_symbol": self.best_symbol,
            "worst_symbol": self.worst_symbol,
            "best_effort": self.best_effort,
        }


@dataclass
class EquityPoint:
    timestamp: datetime
    cycle_number: int
    total_equity: float
    available_balance: float
    total_pnl: float
    total_pnl_pct: float
    position_count: int
    margin_used_pct: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "cycle_number": self.cycle_number,
            "total_equity": self.total_equity,
            "available_balance": self.available_balance,
            "total_pnl": self.total_pnl,
            "total_pnl_pct": self.total_pnl_pct,
            "position_count": self.position_count,
            "margin_used_pct": self.margin_used_pct,
        }


# ── Reconstruction ───────────────────────────────────────────

@dataclass
class _OpenPosition:
    entry_cycle: int
    opened_at: datetime
    entry_equity: float
    observed: bool
    key: Optional[str] = None


class _TradeReconstructor:
    """Single forward pass over snapshots; aggregates only what falls in the window.

    Memory stays bounded however long the scan: only the last few trades and
    at most `equity_history` equities are retained, everything else is a
    running total.
    """

    def __init__(self, count_from_cycle: Optional[int] = None, keep_history: bool = False,
                 equity_history: Optional[int] = None):
        self._count_from = count_from_cycle
        self._keep_history = keep_history
        self._prev: Optional[DecisionRecord] = None
        self._open: List[_OpenPosition] = []
        self._last_close: Optional[DecisionRecord] = None

        self.stats = LedgerStatistics()
        self.recent_trades: Deque[ClosedTrade] = deque(maxlen=RECENT_TRADES_LIMIT)
        self.equities: Deque[float] = deque(maxlen=equity_history)
        self.symbol_totals: Dict[str, List[float]] = defaultdict(lambda: [0, 0, 0.0])
        self.boundary_trades = 0
        self.joint_closes = 0
        self.gross_profit = 0.0
        self.gross_loss = 0.0
        self._peak: Optional[float] = None

    def feed_all(self, records: Iterable[DecisionRecord]) -> "_TradeReconstructor":
        for rec in records:
            self.feed(rec)
        return self

    def feed(self, rec: DecisionRecord) -> None:
        in_window = self._count_from is None or rec.cycle_number >= self._count_from
        if self._prev is None:
            self._seed(rec)
        else:
            held_before = list(self._open)
            opened, closed = self._transition(self._prev, rec)
            if in_window:
                self.stats.open_events += opened
                self.stats.close_events += len(closed)
                if closed:
                    self._record_trade(closed, held_before, rec)
            if closed:
                self._last_close = rec
        self._relabel(rec)
        if in_window:
            self._count_cycle(rec)
        self._prev = rec

    def _seed(self, rec: DecisionRecord) -> None:
        keys = rec.account_state.position_keys
        n = len(keys) if keys is not None else rec.position_count
        for _ in range(n):
            self._open.append(_OpenPosition(rec.cycle_number, rec.timestamp, rec.total_equity, observed=False))

    def _transition(self, prev: DecisionRecord, cur: DecisionRecord) -> Tuple[int, List[_OpenPosition]]:
        prev_keys = prev.account_state.position_keys
        cur_keys = cur.account_state.position_keys
        if prev_keys is not None and cur_keys is not None:
            held = set(cur_keys)
            closed = [p for p in self._open if p.key is None or p.key not in held]
            self._open = [p for p in self._open if p.key is not None and p.key in held]
            still_open = {p.key for p in self._open}
            new_keys = [k for k in cur_keys if k not in still_open]
            for k in new_keys:
                self._open.append(_OpenPosition(cur.cycle_number, cur.timestamp, cur.total_equity, True, k))
            return len(new_keys), closed

        delta = cur.position_count - len(self._open)
        if delta > 0:
            for _ in range(delta):
                self._open.append(_OpenPosition(cur.cycle_number, cur.timestamp, cur.total_equity, True))
            return delta, []
        if delta < 0:
            # LIFO: the most recently opened positions close first
            closed = self._open[delta:]
            del self._open[delta:]
            return 0, closed
        return 0, []

    def _relabel(self, rec: DecisionRecord) -> None:
        keys = rec.account_state.position_keys
        if keys is None:
            return
        held = {p.key for p in self._open if p.key is not None}
        free = sorted(k for k in keys if k not in held)
        for p in self._open:
            if p.key is None and free:
                p.key = free.pop(0)

    def _baseline(self, held_before: List[_OpenPosition]) -> Tuple[int, float]:
        # later of the previous close and the earliest entry still held;
        # trade P&Ls over one holding episode sum to its equity change
        earliest = min(held_before, key=lambda p: p.entry_cycle)
        last = self._last_close
        if last is not None and last.cycle_number > earliest.entry_cycle:
            return last.cycle_number, last.total_equity
        return earliest.entry_cycle, earliest.entry_equity

    def _record_trade(self, closed: List[_OpenPosition], held_before: List[_OpenPosition],
                      rec: DecisionRecord) -> None:
        entry = min(closed, key=lambda p: p.entry_cycle)
        baseline_cycle, baseline_equity = self._baseline(held_before)
        symbols = tuple(sorted(p.key for p in closed if p.key is not None))
        trade = ClosedTrade(
            entry_cycle=entry.entry_cycle,
            close_cycle=rec.cycle_number,
            opened_at=entry.opened_at,
            closed_at=rec.timestamp,
            entry_equity=baseline_equity,
            exit_equity=rec.total_equity,
            positions_closed=len(closed),
            symbols=symbols,
            entry_observed=all(p.observed for p in closed),
            baseline_cycle=baseline_cycle,
        )
        pnl = trade.pnl
        s = self.stats
        s.total_realized_pnl += pnl
        if trade.is_win:
            s.win_count += 1
            self.gross_profit += pnl
            s.current_streak = s.current_streak + 1 if s.current_streak > 0 else 1
        else:
            s.loss_count += 1
            self.gross_loss += abs(pnl)
            s.current_streak = s.current_streak - 1 if s.current_streak < 0 else -1
        if not trade.entry_observed:
            self.boundary_trades += 1
        if trade.joint:
            self.joint_closes += 1
        if self._keep_history:
            self.recent_trades.append(trade)
            if symbols:
                totals = self.symbol_totals[trade.symbol_label]
                totals[0] += 1
                totals[1] += 1 if trade.is_win else 0
                totals[2] += pnl

    def _count_cycle(self, rec: DecisionRecord) -> None:
        s = self.stats
        s.total_cycles += 1
        if rec.success:
            s.successful_cycles += 1
        else:
            s.failed_cycles += 1
        if s.first_cycle is None:
            s.first_cycle = rec.cycle_number
        s.last_cycle = rec.cycle_number

        equity = rec.total_equity
        if self._peak is None or equity > self._peak:
            self._peak = equity
        drawdown = self._peak - equity
        if drawdown > s.max_drawdown:
            s.max_drawdown = drawdown
        if self._peak > 0:
            s.max_drawdown_pct = max(s.max_drawdown_pct, drawdown / self._peak * 100)
        if self._keep_history:
            self.equities.append(equity)


# ── Analyzer ─────────────────────────────────────────────────

class PerformanceAnalyzer:
    """
    Derives trade-level and aggregate statistics from one strategy's ledger.
    Every call reads a snapshot pinned to the ledger's last cycle at call time.
    """

    def __init__(self, ledger: DecisionLedger, lookback_cycles: Optional[int] = None):
        settings = get_settings()
        self._ledger = ledger
        self._lookback = settings.performance_lookback_cycles if lookback_cycles is None else lookback_cycles
        self._max_equities = settings.max_read_limit + 1

    def statistics(self) -> LedgerStatistics:
        """Full-history aggregate, streamed so the ledger is never loaded whole."""
        count, _, last = self._ledger.bounds()
        if count == 0:
            return LedgerStatistics()
        recon = _TradeReconstructor().feed_all(self._ledger.iter_records(upto_cycle=last))
        return recon.stats

    def analyze_performance(self, window: int) -> PerformanceReport:
        """Trades closing within the most recent `window` records (best-effort at the boundary)."""
        window = max(1, window)
        report = PerformanceReport(window=window)
        count, first, last = self._ledger.bounds()
        if count == 0:
            return report

        if window >= count:
            window_start = scan_start = first
        else:
            window_start = self._ledger.cycle_at_offset_from_end(window, upto_cycle=last)
            scan_start = self._ledger.cycle_at_offset_from_end(min(window + self._lookback, count),
                                                               upto_cycle=last)
        recon = _TradeReconstructor(count_from_cycle=window_start, keep_history=True,
                                    equity_history=self._max_equities)
        recon.feed_all(self._ledger.iter_records(after_cycle=scan_start - 1, upto_cycle=last))

        stats = recon.stats
        report.cycles_analyzed = stats.total_cycles
        report.total_trades = stats.win_count + stats.loss_count
        report.winning_trades = stats.win_count
        report.losing_trades = stats.loss_count
        report.total_realized_pnl = stats.total_realized_pnl
        report.avg_win = recon.gross_profit / stats.win_count if stats.win_count else 0.0
        report.avg_loss = -recon.gross_loss / stats.loss_count if stats.loss_count else 0.0
        if recon.gross_loss > 0:
            report.profit_factor = recon.gross_profit / recon.gross_loss
        else:
            report.profit_factor = float("inf") if recon.gross_profit > 0 else 0.0
        report.sharpe_ratio = self._sharpe(list(recon.equities))
        report.max_drawdown = stats.max_drawdown
        report.max_drawdown_pct = stats.max_drawdown_pct
        report.boundary_trades = recon.boundary_trades
        report.joint_closes = recon.joint_closes
        report.recent_trades = list(recon.recent_trades)
        report.symbol_stats = self._symbol_stats(recon.symbol_totals)
        if report.symbol_stats:
            ranked = sorted(report.symbol_stats.items(), key=lambda kv: kv[1]["total_pnl"])
            report.worst_symbol = ranked[0][0]
            report.best_symbol = ranked[-1][0]

        with strategy_context(self._ledger.strategy_id):
            logger.debug("performance_analyzed", window=window, cycles=report.cycles_analyzed,
                         trades=report.total_trades, boundary_trades=report.boundary_trades)
        return report

    def equity_curve(self, limit: int, configured_capital: Optional[float] = None) -> List[EquityPoint]:
        """
        P&L-percentage series for the latest `limit` records.

        Capital baseline: the configured initial capital when positive, else the
        equity of the oldest selected record. Neither → InsufficientDataError.
        """
        records = self._ledger.latest(limit)
        capital = resolve_initial_capital(configured_capital, records, self._ledger.strategy_id)
        return [
            EquityPoint(
                timestamp=r.timestamp,
                cycle_number=r.cycle_number,
                total_equity=r.account_state.total_equity,
                available_balance=r.account_state.available_balance,
                total_pnl=r.account_state.total_pnl,
                total_pnl_pct=r.account_state.total_pnl / capital * 100,
                position_count=r.account_state.position_count,
                margin_used_pct=r.account_state.margin_used_pct,
            )
            for r in records
        ]

    @staticmethod
    def _sharpe(equities: List[float]) -> float:
        if len(equities) < 3:
            return 0.0
        arr = np.asarray(equities, dtype=float)
        prev = arr[:-1]
        mask = prev > 0
        if mask.sum() < 2:
            return 0.0
        returns = np.diff(arr)[mask] / prev[mask]
        std = returns.std(ddof=1)
        if not np.isfinite(std) or std == 0:
            return 0.0
        return float(returns.mean() / std)

    @staticmethod
    def _symbol_stats(totals: Dict[str, List[float]]) -> Dict[str, Dict[str, Any]]:
        result = {}
        for label, (trades, wins, pnl) in totals.items():
            result[label] = {
                "trades": int(trades),
                "wins": int(wins),
                "losses": int(trades - wins),
                "win_rate": round(wins / trades, 4),
                "total_pnl": round(pnl, 4),
                "avg_pnl": round(pnl / trades, 4),
            }
        return result


def resolve_initial_capital(configured_capital: Optional[float],
                            records: List[DecisionRecord],
                            strategy_id: str = "") -> float:
    if configured_capital is not None and configured_capital > 0:
        return configured_capital
    if records and records[0].account_state.total_equity > 0:
        return records[0].account_state.total_equity
    raise InsufficientDataError(
        "Cannot determine initial capital: no configured balance and no recorded equity",
        strategy_id,
    )
