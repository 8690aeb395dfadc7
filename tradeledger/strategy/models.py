from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from tradeledger.journal.decision_ledger import DecisionLedger
from tradeledger.journal.performance_analyzer import PerformanceAnalyzer
from tradeledger.utils.logger import get_logger

logger = get_logger(__name__)


class StrategyConfig(BaseModel):
    """Operator-supplied configuration of one trading strategy."""

    id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.\-]+$", description="Unique, immutable strategy identifier")
    name: str = Field(min_length=1, description="Display name")
    enabled: bool = True
    ai_model: str = Field(default="deepseek", description="Model or strategy label")
    exchange: str = Field(default="hyperliquid", description="Exchange label")
    initial_balance: float = Field(gt=0, description="Initial capital")
    scan_interval_minutes: int = Field(default=3, ge=1, description="Minutes between decision cycles")
    btc_eth_leverage: int = Field(default=5, ge=1, le=50)
    altcoin_leverage: int = Field(default=5, ge=1, le=20)

    model_config = {"extra": "ignore", "frozen": True}

    @field_validator("name")
    @classmethod
    def _strip_non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class Strategy:
    """A registered trading configuration and the ledger its loop appends to."""

    def __init__(self, config: StrategyConfig, ledger: DecisionLedger) -> None:
        self._config = config
        self._ledger = ledger
        self._analyzer = PerformanceAnalyzer(ledger)
        self.is_running = False
        self._started_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def ai_model(self) -> str:
        return self._config.ai_model

    @property
    def initial_balance(self) -> float:
        return self._config.initial_balance

    @property
    def config(self) -> StrategyConfig:
        return self._config

    @property
    def ledger(self) -> DecisionLedger:
        return self._ledger

    @property
    def analyzer(self) -> PerformanceAnalyzer:
        return self._analyzer

    # ─── Lifecycle hooks for the trading loop ─────────────────

    def mark_running(self) -> None:
        self.is_running = True
        self._started_at = datetime.now(timezone.utc)
        logger.info("strategy_started", strategy=self.id)

    def mark_stopped(self) -> None:
        self.is_running = False
        logger.info("strategy_stopped", strategy=self.id)

    def status(self) -> dict[str, Any]:
        runtime = 0.0
        if self.is_running and self._started_at:
            runtime = (datetime.now(timezone.utc) - self._started_at).total_seconds() / 60
        return {
            "trader_id": self.id,
            "trader_name": self.name,
            "ai_model": self.ai_model,
            "exchange": self._config.exchange,
            "enabled": self._config.enabled,
            "is_running": self.is_running,
            "start_time": self._started_at.isoformat() if self._started_at else None,
            "runtime_minutes": round(runtime, 1),
            "call_count": self._ledger.last_cycle_number() or 0,
            "initial_balance": self.initial_balance,
            "scan_interval_minutes": self._config.scan_interval_minutes,
        }

    def summary(self) -> dict[str, str]:
        return {"trader_id": self.id, "trader_name": self.name, "ai_model": self.ai_model}
