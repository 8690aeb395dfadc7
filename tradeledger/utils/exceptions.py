from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    ORDERING = "ordering"
    NOT_FOUND = "not_found"
    CONFIG = "config"
    DATA = "data"
    STORAGE = "storage"


class LedgerError(Exception):
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.STORAGE,
        strategy_id: Optional[str] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.strategy_id = strategy_id
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}] {self.message}"]
        if self.strategy_id:
            parts.append(f"Strategy: {self.strategy_id}")
        return " | ".join(parts)


class OrderingError(LedgerError):
    def __init__(self, message: str, strategy_id: Optional[str] = None,
                 last_cycle: Optional[int] = None, attempted_cycle: Optional[int] = None) -> None:
        self.last_cycle = last_cycle
        self.attempted_cycle = attempted_cycle
        super().__init__(message, ErrorCategory.ORDERING, strategy_id)


class StorageError(LedgerError):
    def __init__(self, message: str, strategy_id: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.STORAGE, strategy_id)


class NotFoundError(LedgerError):
    def __init__(self, strategy_id: str) -> None:
        super().__init__(f"Strategy '{strategy_id}' is not registered", ErrorCategory.NOT_FOUND, strategy_id)


class NoStrategiesError(LedgerError):
    def __init__(self, message: str = "No strategies are registered") -> None:
        super().__init__(message, ErrorCategory.NOT_FOUND)


class DuplicateIDError(LedgerError):
    def __init__(self, strategy_id: str) -> None:
        super().__init__(f"Strategy ID '{strategy_id}' already exists", ErrorCategory.CONFIG, strategy_id)


class ValidationError(LedgerError):
    def __init__(self, message: str, strategy_id: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.CONFIG, strategy_id)


class InsufficientDataError(LedgerError):
    def __init__(self, message: str, strategy_id: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.DATA, strategy_id)
