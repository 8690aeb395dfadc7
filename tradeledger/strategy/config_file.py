from __future__ import annotations

import json
import os
import threading
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tradeledger.strategy.models import StrategyConfig
from tradeledger.utils.exceptions import StorageError, ValidationError
from tradeledger.utils.logger import get_logger

logger = get_logger(__name__)


class StrategyConfigFile:
    """JSON file of registered strategy configs: {"traders": [...]}. Other top-level keys are preserved."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    def _read_raw(self) -> dict[str, Any]:
        if not os.path.exists(self._path):
            return {"traders": []}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read strategy config file {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Strategy config file {self._path} must hold a JSON object")
        data.setdefault("traders", [])
        return data

    def load(self) -> list[StrategyConfig]:
        configs = []
        for raw in self._read_raw()["traders"]:
            try:
                configs.append(StrategyConfig.model_validate(raw))
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid strategy config in {self._path}: {e}",
                                      raw.get("id") if isinstance(raw, dict) else None) from e
        logger.info("strategy_configs_loaded", path=self._path, count=len(configs))
        return configs

    def append(self, config: StrategyConfig) -> None:
        """Add one config and atomically rewrite the file."""
        with self._lock:
            data = self._read_raw()
            data["traders"].append(config.model_dump())
            tmp_path = f"{self._path}.tmp"
            try:
                os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self._path)
            except OSError as e:
                raise StorageError(f"Cannot write strategy config file {self._path}: {e}", config.id) from e
        logger.info("strategy_config_saved", path=self._path, strategy=config.id)
