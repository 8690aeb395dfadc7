from __future__ import annotations

import os
import threading
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from tradeledger.journal.decision_ledger import DecisionLedger
from tradeledger.strategy.config_file import StrategyConfigFile
from tradeledger.strategy.models import Strategy, StrategyConfig
from tradeledger.utils.config import get_settings
from tradeledger.utils.exceptions import (
    DuplicateIDError,
    NoStrategiesError,
    NotFoundError,
    ValidationError,
)
from tradeledger.utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)


class StrategyRegistry:
    """Running strategies keyed by id, in registration order.

    Constructed once at process start and passed to whatever needs lookup;
    ``close()`` tears the ledgers down at shutdown. Reads take an immutable
    snapshot; registrations swap in a new one under the writer lock, so the
    uniqueness check and the insert are a single atomic step.
    """

    def __init__(self, ledger_dir: Optional[str] = None,
                 config_file: Optional[StrategyConfigFile] = None) -> None:
        self._ledger_dir = ledger_dir or get_settings().ledger_dir
        self._config_file = config_file
        self._lock = threading.Lock()
        self._by_id: dict[str, Strategy] = {}
        self._ordered: tuple[Strategy, ...] = ()

    # ─── Reads ────────────────────────────────────────────────

    def lookup(self, strategy_id: str) -> Strategy:
        strategy = self._by_id.get(strategy_id)
        if strategy is None:
            raise NotFoundError(strategy_id)
        return strategy

    def default(self) -> Strategy:
        ordered = self._ordered
        if not ordered:
            raise NoStrategiesError()
        return ordered[0]

    def resolve(self, strategy_id: Optional[str] = None) -> Strategy:
        """Look up ``strategy_id``, or fall back to the first registered strategy."""
        if strategy_id:
            return self.lookup(strategy_id)
        return self.default()

    def all(self) -> tuple[Strategy, ...]:
        return self._ordered

    def ids(self) -> list[str]:
        return [s.id for s in self._ordered]

    def count(self) -> int:
        return len(self._ordered)

    def __contains__(self, strategy_id: object) -> bool:
        return strategy_id in self._by_id

    def __len__(self) -> int:
        return len(self._ordered)

    # ─── Registration ─────────────────────────────────────────

    def register(self, config: Union[StrategyConfig, dict[str, Any]]) -> Strategy:
        return self._register(config, persist=True)

    def load(self, config_file: Optional[StrategyConfigFile] = None) -> int:
        """Register every config stored in the file without writing it back."""
        source = config_file or self._config_file
        if source is None:
            return 0
        configs = source.load()
        for cfg in configs:
            self._register(cfg, persist=False)
        return len(configs)

    def _register(self, config: Union[StrategyConfig, dict[str, Any]], persist: bool) -> Strategy:
        with self._lock:
            raw_id = config.id if isinstance(config, StrategyConfig) else str(config.get("id", "")).strip()
            if raw_id and raw_id in self._by_id:
                logger.warning("strategy_duplicate_rejected", strategy=raw_id)
                raise DuplicateIDError(raw_id)

            cfg = self._validate(config)
            ledger = DecisionLedger(self._ledger_path(cfg.id), strategy_id=cfg.id)
            if persist and self._config_file is not None:
                try:
                    self._config_file.append(cfg)
                except Exception:
                    ledger.close()
                    raise

            strategy = Strategy(cfg, ledger)
            by_id = dict(self._by_id)
            by_id[cfg.id] = strategy
            self._by_id = by_id
            self._ordered = self._ordered + (strategy,)

        logger.info("strategy_registered", strategy=cfg.id, name=cfg.name,
                    config=sanitize_log_data(cfg.model_dump()))
        return strategy

    @staticmethod
    def _validate(config: Union[StrategyConfig, dict[str, Any]]) -> StrategyConfig:
        if isinstance(config, StrategyConfig):
            return config
        try:
            return StrategyConfig.model_validate(config)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid strategy config: {problems}",
                                  str(config.get("id", "")) or None) from e

    def _ledger_path(self, strategy_id: str) -> str:
        return os.path.join(self._ledger_dir, f"{strategy_id}.db")

    # ─── Shutdown ─────────────────────────────────────────────

    def close(self) -> None:
        for strategy in self._ordered:
            strategy.ledger.close()
        logger.info("registry_closed", strategies=len(self._ordered))
