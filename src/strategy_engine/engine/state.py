"""Mutable per-strategy engine state."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from strategy_engine.engine.history import HistoryStore
from strategy_engine.engine.ledger import PositionLedger

VALUE_HISTORY_LIMIT = 1000


@dataclass(slots=True)
class EngineState:
    """Everything one strategy instance mutates between evaluations."""

    history: HistoryStore
    ledger: PositionLedger = field(default_factory=PositionLedger)
    started_at: datetime | None = None
    last_rebalance_at: datetime | None = None
    last_signal_at: dict[tuple[str, str], datetime] = field(default_factory=dict)
    value_history: list[tuple[datetime, float]] = field(default_factory=list)
    scratch: dict[str, Any] = field(default_factory=dict)

    def record_value(self, timestamp: datetime, value: float) -> None:
        self.value_history.append((timestamp, value))
        if len(self.value_history) > VALUE_HISTORY_LIMIT:
            del self.value_history[: len(self.value_history) - VALUE_HISTORY_LIMIT]

    def snapshot(self) -> EngineState:
        """Deep copy suitable for replaying from this point."""
        return copy.deepcopy(self)
