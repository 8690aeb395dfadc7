"""
Decision Journal
================

  decision_models.py      — DecisionRecord, AccountState, DecisionPayload
  decision_ledger.py      — SQLite-backed append-only ledger, one per strategy
  performance_analyzer.py — trades inferred from snapshots, statistics, equity curve
"""

from tradeledger.journal.decision_models import (
    AccountState,
    DecisionPayload,
    DecisionRecord,
)
from tradeledger.journal.decision_ledger import DecisionLedger
from tradeledger.journal.performance_analyzer import (
    ClosedTrade,
    EquityPoint,
    LedgerStatistics,
    PerformanceAnalyzer,
    PerformanceReport,
    resolve_initial_capital,
)

__all__ = [
    # Models
    "AccountState", "DecisionPayload", "DecisionRecord",
    "ClosedTrade", "EquityPoint", "LedgerStatistics", "PerformanceReport",
    # Engines
    "DecisionLedger", "PerformanceAnalyzer", "resolve_initial_capital",
]
