"""Position ledger: open positions, closed trades and realized P&L."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, Literal, Mapping

from strategy_engine.types import POSITION_EPSILON, Action

StakingStatus = Literal["ACTIVE", "UNLOCKING", "UNLOCKED"]
CompoundFrequency = Literal["DAILY", "WEEKLY", "MONTHLY"]

_YEAR_SECONDS = 365 * 24 * 3600.0


@dataclass(slots=True)
class Position:
    """Open long position marked to the latest observed price."""

    symbol: str
    quantity: float
    average_price: float
    current_price: float
    opened_at: datetime
    updated_at: datetime

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.average_price

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def unrealized_pnl(self) -> float:
        return (self.current_price - self.average_price) * self.quantity

    @property
    def unrealized_pnl_pct(self) -> float:
        if self.average_price <= 0:
            return 0.0
        return (self.current_price - self.average_price) / self.average_price * 100.0

    def mark(self, price: float, now: datetime) -> None:
        self.current_price = price
        self.updated_at = now

    def as_row(self) -> dict[str, object]:
        return {
            "symbol": self.symbol,
            "quantity": self.quantity,
            "average_price": self.average_price,
            "current_price": self.current_price,
            "market_value": self.market_value,
            "unrealized_pnl": self.unrealized_pnl,
            "unrealized_pnl_pct": self.unrealized_pnl_pct,
            "opened_at": self.opened_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class PurchaseRecord:
    timestamp: datetime
    price: float
    quantity: float
    amount: float


@dataclass(slots=True)
class DCAPosition(Position):
    """Accumulated position with its scheduled purchase log."""

    purchases: list[PurchaseRecord] = field(default_factory=list)
    last_purchase_at: datetime | None = None


@dataclass(slots=True)
class StakingPosition(Position):
    """Stake held on one platform."""

    platform: str = ""
    apy: float = 0.0
    lock_period_days: int = 0
    unlock_at: datetime | None = None
    status: StakingStatus = "ACTIVE"
    compound_frequency: CompoundFrequency = "WEEKLY"
    last_compound_at: datetime | None = None

    def rewards_accrued(self, now: datetime) -> float:
        """Simple-interest rewards earned since the last compounding."""
        since = self.last_compound_at or self.opened_at
        elapsed = (now - since).total_seconds()
        return self.cost_basis * self.apy / 100.0 * elapsed / _YEAR_SECONDS

    def as_row(self) -> dict[str, object]:
        row = Position.as_row(self)
        row.update(
            {
                "platform": self.platform,
                "apy": self.apy,
                "lock_period_days": self.lock_period_days,
                "unlock_at": self.unlock_at.isoformat() if self.unlock_at else None,
                "status": self.status,
                "accrued_rewards": self.rewards_accrued(self.updated_at),
            }
        )
        return row


@dataclass(slots=True)
class ChannelPosition(Position):
    """Mean-reversion entry with its protective price levels."""

    stop_loss_price: float = 0.0
    take_profit_price: float | None = None
    entry_signal: str = ""


@dataclass(slots=True)
class ClosedTrade:
    """Realized exit of a (possibly partial) position."""

    symbol: str
    quantity: float
    entry_price: float
    exit_price: float
    opened_at: datetime
    closed_at: datetime

    @property
    def realized_pnl(self) -> float:
        return (self.exit_price - self.entry_price) * self.quantity

    @property
    def return_pct(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (self.exit_price - self.entry_price) / self.entry_price * 100.0

    @property
    def duration_hours(self) -> float:
        return (self.closed_at - self.opened_at).total_seconds() / 3600.0


PositionFactory = Callable[[str, float, float, datetime], Position]


def default_position(symbol: str, quantity: float, price: float, now: datetime) -> Position:
    return Position(
        symbol=symbol,
        quantity=quantity,
        average_price=price,
        current_price=price,
        opened_at=now,
        updated_at=now,
    )


class PositionLedger:
    """Open positions keyed by symbol plus the closed-trade log."""

    def __init__(self) -> None:
        self._positions: dict[str, Position] = {}
        self.closed_trades: list[ClosedTrade] = []
        self.realized_pnl = 0.0
        self.trade_count = 0

    def get(self, symbol: str) -> Position | None:
        return self._positions.get(symbol)

    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._positions

    def __iter__(self) -> Iterator[Position]:
        return iter(list(self._positions.values()))

    def __len__(self) -> int:
        return len(self._positions)

    @property
    def unrealized_pnl(self) -> float:
        return sum(position.unrealized_pnl for position in self._positions.values())

    @property
    def market_value(self) -> float:
        return sum(position.market_value for position in self._positions.values())

    @property
    def invested(self) -> float:
        return sum(position.cost_basis for position in self._positions.values())

    def mark_to_market(self, prices: Mapping[str, float], now: datetime) -> None:
        for symbol, position in self._positions.items():
            price = prices.get(symbol)
            if price is not None and price > 0:
                position.mark(price, now)

    def apply(
        self,
        symbol: str,
        action: Action,
        quantity: float,
        price: float,
        now: datetime,
        factory: PositionFactory = default_position,
    ) -> float:
        """Apply a fill and return the realized P&L it produced."""
        if action == "HOLD":
            return 0.0
        if quantity <= 0:
            raise ValueError("trade_quantity_non_positive")
        if price <= 0:
            raise ValueError("trade_price_non_positive")

        position = self._positions.get(symbol)
        if action == "BUY":
            self.trade_count += 1
            if position is None:
                self._positions[symbol] = factory(symbol, quantity, price, now)
                return 0.0
            total_quantity = position.quantity + quantity
            position.average_price = (position.cost_basis + quantity * price) / total_quantity
            position.quantity = total_quantity
            position.mark(price, now)
            return 0.0

        if position is None:
            return 0.0
        self.trade_count += 1
        sold = min(quantity, position.quantity)
        if position.quantity - sold <= POSITION_EPSILON:
            sold = position.quantity
        trade = ClosedTrade(
            symbol=symbol,
            quantity=sold,
            entry_price=position.average_price,
            exit_price=price,
            opened_at=position.opened_at,
            closed_at=now,
        )
        self.closed_trades.append(trade)
        self.realized_pnl += trade.realized_pnl
        position.quantity -= sold
        position.mark(price, now)
        if position.quantity <= POSITION_EPSILON:
            del self._positions[symbol]
        return trade.realized_pnl
