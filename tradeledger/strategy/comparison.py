"""
Cross-strategy leaderboard.

Each strategy is summarised from its configuration, runtime status and the
newest ledger record. A strategy whose ledger cannot be read right now is
reported with available=False and the error text instead of failing the
whole comparison.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from tradeledger.journal.performance_analyzer import resolve_initial_capital
from tradeledger.strategy.models import Strategy
from tradeledger.strategy.registry import StrategyRegistry
from tradeledger.utils.exceptions import LedgerError
from tradeledger.utils.logger import get_logger, strategy_context

logger = get_logger(__name__)


@dataclass
class StrategySummary:
    trader_id: str
    trader_name: str
    ai_model: str
    total_equity: float = 0.0
    total_pnl: float = 0.0
    total_pnl_pct: float = 0.0
    position_count: int = 0
    margin_used_pct: float = 0.0
    last_cycle: int = 0
    is_running: bool = False
    rank: Optional[int] = None
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "trader_id": self.trader_id,
            "trader_name": self.trader_name,
            "ai_model": self.ai_model,
            "total_equity": self.total_equity,
            "total_pnl": self.total_pnl,
            "total_pnl_pct": round(self.total_pnl_pct, 4),
            "position_count": self.position_count,
            "margin_used_pct": self.margin_used_pct,
            "call_count": self.last_cycle,
            "is_running": self.is_running,
            "rank": self.rank,
            "available": self.available,
            "error": self.error,
        }


@dataclass
class ComparisonReport:
    strategies: list[StrategySummary] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def count(self) -> int:
        return len(self.strategies)

    def to_dict(self) -> dict:
        return {
            "traders": [s.to_dict() for s in self.strategies],
            "count": self.count,
            "generated_at": self.generated_at.isoformat(),
        }


class ComparisonAggregator:
    def __init__(self, registry: StrategyRegistry) -> None:
        self._registry = registry

    def compare(self) -> ComparisonReport:
        summaries = []
        for strategy in self._registry.all():
            with strategy_context(strategy.id):
                summaries.append(self._summarize(strategy))

        ranked = sorted((s for s in summaries if s.available), key=lambda s: s.total_pnl_pct, reverse=True)
        for position, summary in enumerate(ranked, start=1):
            summary.rank = position
        unavailable = [s for s in summaries if not s.available]
        return ComparisonReport(strategies=ranked + unavailable)

    def _summarize(self, strategy: Strategy) -> StrategySummary:
        summary = StrategySummary(
            trader_id=strategy.id,
            trader_name=strategy.name,
            ai_model=strategy.ai_model,
            is_running=strategy.is_running,
        )
        try:
            latest = strategy.ledger.latest(1)
            if not latest:
                summary.total_equity = strategy.initial_balance
                return summary
            record = latest[0]
            state = record.account_state
            capital = resolve_initial_capital(strategy.initial_balance, latest, strategy.id)
            summary.total_equity = state.total_equity
            summary.total_pnl = state.total_pnl
            summary.total_pnl_pct = state.total_pnl / capital * 100
            summary.position_count = state.position_count
            summary.margin_used_pct = state.margin_used_pct
            summary.last_cycle = record.cycle_number
        except LedgerError as e:
            logger.warning("comparison_strategy_unavailable", error=str(e))
            summary.error = str(e)
        return summary
