"""
Decision Record Models
======================

One DecisionRecord per (strategy, cycle): the account snapshot taken when the
cycle completed plus the strategy's opaque decision output.

All models are frozen dataclasses with to_dict()/from_dict() for SQLite JSON
storage. Timestamps are ISO-8601 strings with microseconds and UTC offset so
that they sort and round-trip exactly.
"""

from __future__ import annotations
import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


def _to_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class AccountState:
    """Account snapshot at the end of a cycle."""
    total_equity: float = 0.0        # wallet + unrealized P&L
    available_balance: float = 0.0
    total_pnl: float = 0.0           # equity minus the strategy's initial capital
    position_count: int = 0
    margin_used_pct: float = 0.0
    # Position identities ("BTCUSDT_long"), None when the producer doesn't report them
    position_keys: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if self.position_count < 0:
            raise ValueError("position_count cannot be negative")
        if self.position_keys is not None:
            object.__setattr__(self, "position_keys", tuple(self.position_keys))

    def to_dict(self) -> dict:
        return {
            "total_equity": self.total_equity,
            "available_balance": self.available_balance,
            "total_pnl": self.total_pnl,
            "position_count": self.position_count,
            "margin_used_pct": self.margin_used_pct,
            "position_keys": list(self.position_keys) if self.position_keys is not None else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "AccountState":
        d2 = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        if d2.get("position_keys") is not None:
            d2["position_keys"] = tuple(d2["position_keys"])
        return cls(**d2)


@dataclass(frozen=True)
class DecisionPayload:
    """Opaque strategy output: a format tag plus raw bytes, never interpreted."""
    format: str = "application/json"
    data: bytes = b""

    def __post_init__(self):
        if isinstance(self.data, str):
            object.__setattr__(self, "data", self.data.encode("utf-8"))

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "data": base64.b64encode(self.data).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DecisionPayload":
        return cls(format=d.get("format", ""), data=base64.b64decode(d.get("data", "")))


@dataclass(frozen=True)
class DecisionRecord:
    """Immutable snapshot of one strategy cycle."""
    cycle_number: int
    timestamp: datetime
    account_state: AccountState = field(default_factory=AccountState)
    decision_payload: DecisionPayload = field(default_factory=DecisionPayload)
    success: bool = True
    error_message: str = ""

    def __post_init__(self):
        if self.cycle_number < 1:
            raise ValueError("cycle_number must be >= 1")
        object.__setattr__(self, "timestamp", _to_utc(self.timestamp))

    @property
    def total_equity(self) -> float:
        return self.account_state.total_equity

    @property
    def position_count(self) -> int:
        return self.account_state.position_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_number": self.cycle_number,
            "timestamp": self.timestamp.isoformat(),
            "account_state": self.account_state.to_dict(),
            "decision_payload": self.decision_payload.to_dict(),
            "success": self.success,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DecisionRecord":
        if not isinstance(d, dict):
            raise ValueError(f"decision record must be an object, got {type(d).__name__}")
        for section in ("account_state", "decision_payload"):
            if not isinstance(d.get(section, {}), dict):
                raise ValueError(f"{section} must be an object")
        return cls(
            cycle_number=int(d["cycle_number"]),
            timestamp=datetime.fromisoformat(d["timestamp"]),
            account_state=AccountState.from_dict(d.get("account_state", {})),
            decision_payload=DecisionPayload.from_dict(d.get("decision_payload", {})),
            success=bool(d.get("success", True)),
            error_message=d.get("error_message", ""),
        )
