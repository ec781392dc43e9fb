"""Per-symbol observation history with chunked pruning."""

from __future__ import annotations

import pandas as pd  # type: ignore[import-untyped]

from strategy_engine.types import MarketObservation

DEFAULT_MAX_WINDOW = 1000
DEFAULT_PRUNE_CHUNK = 200


class HistoryStore:
    """Bounded, append-only observation history keyed by symbol.

    Pruning runs in chunks: a symbol may hold up to ``max_window + prune_chunk``
    observations before it is cut back to the newest ``max_window``.
    """

    def __init__(
        self,
        max_window: int = DEFAULT_MAX_WINDOW,
        prune_chunk: int = DEFAULT_PRUNE_CHUNK,
    ) -> None:
        if max_window <= 0:
            raise ValueError("max_window_must_be_positive")
        if prune_chunk < 0:
            raise ValueError("prune_chunk_must_be_non_negative")
        self.max_window = max_window
        self.prune_chunk = prune_chunk
        self._series: dict[str, list[MarketObservation]] = {}

    def record(self, observation: MarketObservation) -> None:
        series = self._series.setdefault(observation.symbol, [])
        series.append(observation)
        if len(series) > self.max_window + self.prune_chunk:
            del series[: len(series) - self.max_window]

    def window(self, symbol: str, n: int) -> list[MarketObservation]:
        """Return the last ``n`` observations, fewer when history is short."""
        if n <= 0:
            return []
        return list(self._series.get(symbol, ())[-n:])

    def latest(self, symbol: str) -> MarketObservation | None:
        series = self._series.get(symbol)
        if not series:
            return None
        return series[-1]

    def prices(self, symbol: str, n: int, minimum: int = 0) -> list[float] | None:
        """Closing prices of the last ``n`` observations, or None below ``minimum``."""
        if self.count(symbol) < minimum:
            return None
        return [observation.price for observation in self.window(symbol, n)]

    def volumes(self, symbol: str, n: int, minimum: int = 0) -> list[float] | None:
        if self.count(symbol) < minimum:
            return None
        return [observation.volume for observation in self.window(symbol, n)]

    def symbols(self) -> list[str]:
        return sorted(self._series)

    def count(self, symbol: str) -> int:
        return len(self._series.get(symbol, ()))

    def __len__(self) -> int:
        return sum(len(series) for series in self._series.values())

    def as_frame(self, symbol: str, n: int | None = None) -> pd.DataFrame:
        """Observation history of one symbol as a timestamp-indexed frame."""
        series = self._series.get(symbol, [])
        if n is not None:
            series = series[-n:] if n > 0 else []
        frame = pd.DataFrame(
            [observation.as_row() for observation in series],
            columns=[
                "symbol",
                "timestamp",
                "price",
                "volume",
                "change_24h",
                "change_1h",
                "high_24h",
                "low_24h",
            ],
        )
        frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
        return frame.set_index("timestamp")
