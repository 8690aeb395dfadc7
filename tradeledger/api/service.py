from __future__ import annotations

from typing import Any, Iterator, Optional

from tradeledger.strategy.comparison import ComparisonAggregator
from tradeledger.strategy.models import Strategy
from tradeledger.strategy.registry import StrategyRegistry
from tradeledger.utils.config import get_settings
from tradeledger.utils.logger import get_logger

logger = get_logger(__name__)


class LedgerService:
    """Read-side operations keyed by strategy id, as consumed by the HTTP layer.

    An empty or missing ``strategy_id`` means "the first registered strategy".
    Results are plain dicts/lists ready for JSON serialisation; typed
    ``LedgerError`` subclasses propagate to the caller unchanged.
    """

    def __init__(self, registry: StrategyRegistry) -> None:
        self._registry = registry
        self._comparison = ComparisonAggregator(registry)
        self._settings = get_settings()

    def _strategy(self, strategy_id: Optional[str]) -> Strategy:
        return self._registry.resolve(strategy_id)

    # ── Strategies ──

    def list_strategies(self) -> list[dict[str, str]]:
        return [s.summary() for s in self._registry.all()]

    def strategy_status(self, strategy_id: Optional[str] = None) -> dict[str, Any]:
        return self._strategy(strategy_id).status()

    def add_strategy(self, payload: dict[str, Any]) -> dict[str, Any]:
        strategy = self._registry.register(payload)
        return {
            "success": True,
            "message": f"Trader '{strategy.name}' added",
            "trader_id": strategy.id,
        }

    # ── Decisions ──

    def latest_decisions(self, strategy_id: Optional[str] = None,
                         limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Oldest first, suitable for charting."""
        n = limit if limit is not None else self._settings.max_read_limit
        return [r.to_dict() for r in self._strategy(strategy_id).ledger.latest(n)]

    def recent_decisions(self, strategy_id: Optional[str] = None,
                         limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Newest first, for list display."""
        n = limit if limit is not None else self._settings.recent_decisions_limit
        records = self._strategy(strategy_id).ledger.latest(n)
        records.reverse()
        return [r.to_dict() for r in records]

    def export_decisions(self, strategy_id: Optional[str] = None) -> Iterator[dict[str, Any]]:
        """Stream the full history as of the call, oldest first, one dict per record."""
        ledger = self._strategy(strategy_id).ledger
        _, _, last = ledger.bounds()
        if last is None:
            return iter(())
        return (r.to_dict() for r in ledger.all(upto_cycle=last))

    def ledger_stats(self, strategy_id: Optional[str] = None) -> dict[str, Any]:
        return self._strategy(strategy_id).ledger.get_db_stats()

    # ── Analytics ──

    def statistics(self, strategy_id: Optional[str] = None) -> dict[str, Any]:
        return self._strategy(strategy_id).analyzer.statistics().to_dict()

    def equity_history(self, strategy_id: Optional[str] = None,
                       limit: Optional[int] = None) -> list[dict[str, Any]]:
        strategy = self._strategy(strategy_id)
        n = limit if limit is not None else self._settings.max_read_limit
        points = strategy.analyzer.equity_curve(n, configured_capital=strategy.initial_balance)
        return [p.to_dict() for p in points]

    def performance(self, strategy_id: Optional[str] = None,
                    window: Optional[int] = None) -> dict[str, Any]:
        strategy = self._strategy(strategy_id)
        w = window if window is not None else self._settings.default_performance_window
        return strategy.analyzer.analyze_performance(w).to_dict()

    def competition(self) -> dict[str, Any]:
        report = self._comparison.compare()
        logger.debug("comparison_built", strategies=report.count)
        return report.to_dict()
