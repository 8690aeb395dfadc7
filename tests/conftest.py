"""
Shared fixtures for ledger, analyzer and registry tests.

Every test runs inside its own temporary working directory with freshly
loaded settings, so ledgers, config files and env overrides never leak.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

import pytest

from tradeledger.journal.decision_ledger import DecisionLedger
from tradeledger.journal.decision_models import AccountState, DecisionPayload, DecisionRecord
from tradeledger.strategy.config_file import StrategyConfigFile
from tradeledger.strategy.registry import StrategyRegistry
from tradeledger.utils.config import reload_settings

BASE_TIME = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)
CYCLE_MINUTES = 3


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    reload_settings()
    yield
    reload_settings()


def build_record(
    cycle: int,
    equity: float = 1000.0,
    positions: int = 0,
    keys: Optional[Sequence[str]] = None,
    capital: float = 1000.0,
    success: bool = True,
    payload: bytes = b'{"action":"hold"}',
) -> DecisionRecord:
    if keys is not None:
        positions = len(keys)
    return DecisionRecord(
        cycle_number=cycle,
        timestamp=BASE_TIME + timedelta(minutes=CYCLE_MINUTES * cycle),
        account_state=AccountState(
            total_equity=equity,
            available_balance=equity * 0.8,
            total_pnl=equity - capital,
            position_count=positions,
            margin_used_pct=10.0 * positions,
            position_keys=tuple(keys) if keys is not None else None,
        ),
        decision_payload=DecisionPayload(format="application/json", data=payload),
        success=success,
        error_message="" if success else "exchange timeout",
    )


@pytest.fixture
def make_record() -> Callable[..., DecisionRecord]:
    return build_record


@pytest.fixture
def ledger(tmp_path):
    led = DecisionLedger(str(tmp_path / "ledgers" / "alpha.db"), strategy_id="alpha")
    yield led
    led.close()


@pytest.fixture
def fill_ledger():
    """Append one record per (equity, positions) pair, cycles numbered from 1."""
    def _fill(led: DecisionLedger, rows, capital: float = 1000.0):
        for i, row in enumerate(rows, start=1):
            equity, positions = row[0], row[1]
            keys = row[2] if len(row) > 2 else None
            led.append(build_record(i, equity=equity, positions=positions, keys=keys, capital=capital))
    return _fill


def strategy_payload(strategy_id: str, **overrides) -> dict:
    payload = {
        "id": strategy_id,
        "name": f"{strategy_id} trader",
        "ai_model": "deepseek",
        "exchange": "hyperliquid",
        "initial_balance": 1000.0,
        "scan_interval_minutes": 3,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def registry(tmp_path):
    reg = StrategyRegistry(
        ledger_dir=str(tmp_path / "ledgers"),
        config_file=StrategyConfigFile(str(tmp_path / "config.json")),
    )
    yield reg
    reg.close()
