"""Domain objects the exchange client hands back to the rest of the bot."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        """+1 for long, -1 for short – Gate.io encodes side in the size sign."""
        return 1 if self is Direction.LONG else -1

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        aliases = {"BUY": "LONG", "SELL": "SHORT"}
        return cls(aliases.get(text, text))


class LeverageResult(str, Enum):
    SET = "SET"
    ALREADY_SET = "ALREADY_SET"


@dataclass(frozen=True)
class SymbolInfo:
    symbol: str
    contract: str
    min_quantity: Decimal
    max_quantity: Decimal
    price_precision: int
    quantity_is_fractional: bool
    delisting: bool = False


@dataclass(frozen=True)
class Position:
    symbol: str
    contract: str
    direction: Direction
    size: Decimal
    entry_price: Decimal
    mark_price: Decimal
    unrealised_pnl: Decimal
    leverage: Decimal
    mode: str = "single"


@dataclass(frozen=True)
class Trade:
    trade_id: str
    symbol: str
    contract: str
    order_id: str
    size: Decimal
    price: Decimal
    role: str
    create_time: float
    text: str = ""


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    filled_quantity: Decimal = Decimal("0")
    fill_price: Optional[Decimal] = None
    price: Optional[Decimal] = None
    text: str = ""


@dataclass(frozen=True)
class PositionRequest:
    """Sized order plus bracket prices for one trade decision. Not persisted."""

    symbol: str
    direction: Direction
    entry_price: Decimal
    quantity: Decimal
    take_profit_price: Decimal
    stop_loss_price: Decimal
    required_margin: Decimal
    leverage: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in data.items()}
