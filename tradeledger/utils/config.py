from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ledger_dir: str = Field(default="data/ledgers", description="Directory holding one SQLite ledger per strategy")
    strategies_file: str = Field(default="config.json", description="Registered strategy configurations")

    max_read_limit: int = Field(default=10000, description="Upper bound on records returned by one read")
    recent_decisions_limit: int = Field(default=5, description="Records shown in the newest-first decision list")
    default_performance_window: int = Field(default=100, description="Cycles analysed by the performance report")
    performance_lookback_cycles: int = Field(
        default=2000, description="Extra cycles scanned before a window to find position entries"
    )
    scan_batch_size: int = Field(default=500, description="Rows fetched per round-trip when streaming a ledger")

    sqlite_timeout: float = Field(default=10.0, description="Seconds to wait on a locked ledger database")
    sqlite_synchronous: str = Field(default="FULL", description="SQLite synchronous pragma for ledger writes")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/ledger.log", description="Log file path")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
