"""Tests for the serving-layer operations keyed by strategy id."""

import pytest

from tests.conftest import build_record, strategy_payload
from tradeledger.api.service import LedgerService
from tradeledger.utils.exceptions import (
    DuplicateIDError,
    NoStrategiesError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def service(registry):
    alpha = registry.register(strategy_payload("alpha"))
    registry.register(strategy_payload("beta", ai_model="qwen"))
    for cycle, (eq, pos) in enumerate([(1000, 0), (1000, 1), (1040, 1), (1030, 0),
                                       (1030, 0), (1050, 0), (1060, 0)], start=1):
        alpha.ledger.append(build_record(cycle, equity=eq, positions=pos))
    return LedgerService(registry)


class TestDecisions:

    def test_latest_decisions_ascending(self, service):
        records = service.latest_decisions("alpha", limit=3)
        assert [r["cycle_number"] for r in records] == [5, 6, 7]

    def test_recent_decisions_newest_first(self, service):
        records = service.recent_decisions("alpha")
        assert [r["cycle_number"] for r in records] == [7, 6, 5, 4, 3]

    def test_default_strategy_used_without_id(self, service):
        assert len(service.latest_decisions()) == 7

    def test_export_streams_history_as_of_call(self, service, registry):
        exported = service.export_decisions("alpha")
        registry.lookup("alpha").ledger.append(build_record(8, equity=1070))
        assert [r["cycle_number"] for r in exported] == [1, 2, 3, 4, 5, 6, 7]
        assert list(service.export_decisions("beta")) == []

    def test_ledger_stats(self, service):
        stats = service.ledger_stats("alpha")
        assert stats["records"] == 7
        assert (stats["first_cycle"], stats["last_cycle"], stats["next_cycle"]) == (1, 7, 8)
        assert stats["strategy_id"] == "alpha"

    def test_unknown_strategy(self, service):
        with pytest.raises(NotFoundError):
            service.latest_decisions("ghost")


class TestAnalytics:

    def test_statistics(self, service):
        stats = service.statistics("alpha")
        assert stats["total_cycles"] == 7
        assert stats["win_count"] == 1
        assert stats["total_realized_pnl"] == pytest.approx(30.0)

    def test_equity_history_uses_configured_capital(self, service):
        history = service.equity_history("alpha")
        assert history[-1]["total_pnl_pct"] == pytest.approx(6.0)
        assert history[0]["cycle_number"] == 1

    def test_performance_default_window(self, service):
        report = service.performance("alpha")
        assert report["window"] == 100
        assert report["total_trades"] == 1

    def test_competition(self, service):
        data = service.competition()
        assert data["count"] == 2
        assert data["traders"][0]["trader_id"] == "alpha"

    def test_status_and_listing(self, service, registry):
        registry.lookup("alpha").mark_running()
        status = service.strategy_status("alpha")
        assert status["is_running"] is True
        assert status["call_count"] == 7
        assert status["initial_balance"] == 1000.0
        assert service.list_strategies()[1] == {
            "trader_id": "beta", "trader_name": "beta trader", "ai_model": "qwen",
        }


class TestAddStrategy:

    def test_add_strategy(self, service, registry):
        result = service.add_strategy(strategy_payload("gamma"))
        assert result["success"] is True
        assert result["trader_id"] == "gamma"
        assert registry.count() == 3

    def test_add_duplicate(self, service):
        with pytest.raises(DuplicateIDError):
            service.add_strategy(strategy_payload("alpha"))

    def test_add_invalid(self, service):
        with pytest.raises(ValidationError):
            service.add_strategy(strategy_payload("delta", initial_balance=-1))


def test_empty_registry_has_no_default(registry):
    with pytest.raises(NoStrategiesError):
        LedgerService(registry).statistics()
