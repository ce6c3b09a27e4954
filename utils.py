"""Utility helpers: rounding, symbol translation, signal parsing, logging setup."""
from __future__ import annotations

import asyncio
import logging
import sys
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Optional, Tuple

from models import Direction

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"

SETTLE_CURRENCY = "USDT"


# ---------------------------------------------------------------------
# Decimal rounding
# ---------------------------------------------------------------------

def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Exchange numbers arrive as strings; parse without going through float."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_price(price: Decimal, precision: int) -> Decimal:
    """Round half away from zero to ``precision`` decimal places."""
    return price.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


def quantity_step(fractional: bool, decimals: int = 6) -> Decimal:
    return Decimal(1).scaleb(-decimals) if fractional else Decimal(1)


def round_qty(qty: Decimal, step: Decimal) -> Decimal:
    """Floor to a multiple of ``step`` – never size up past what was budgeted."""
    multiples = (qty / step).to_integral_value(rounding=ROUND_DOWN)
    return (multiples * step).quantize(step)


def precision_from_tick(tick: Decimal) -> int:
    """'0.01' -> 2, '0.5' -> 1, '10' -> 0."""
    exponent = tick.normalize().as_tuple().exponent
    return max(0, -int(exponent))


def format_size(qty: Decimal, fractional: bool) -> Any:
    """Order size as the exchange wants it (int contracts, or a decimal string)."""
    if not fractional:
        return int(qty)
    return format(qty.normalize(), "f")


# ---------------------------------------------------------------------
# Symbol translation (BTCUSDT <-> BTC_USDT)
# ---------------------------------------------------------------------

def to_contract(symbol: str) -> str:
    """Canonical symbol to Gate.io contract name."""
    s = symbol.strip().upper()
    if not s:
        return ""
    if "_" in s:
        return s
    if s.endswith(SETTLE_CURRENCY) and len(s) > len(SETTLE_CURRENCY):
        return f"{s[:-len(SETTLE_CURRENCY)]}_{SETTLE_CURRENCY}"
    return s


def from_contract(contract: str) -> str:
    """Gate.io contract name back to canonical symbol."""
    if not contract:
        return ""
    suffix = f"_{SETTLE_CURRENCY}"
    if contract.endswith(suffix):
        return contract[: -len(suffix)] + SETTLE_CURRENCY
    return contract


# ---------------------------------------------------------------------
# Signal parsing
# ---------------------------------------------------------------------

def parse_signal(signal: str) -> Tuple[str, Direction]:
    """Extract (symbol, direction) from ``ADAUSDT_LONG`` / ``TAOUSDT_SHORT``."""
    s = signal.strip().upper()
    if s.endswith("_LONG"):
        return s[:-5], Direction.LONG
    if s.endswith("_SHORT"):
        return s[:-6], Direction.SHORT
    raise ValueError(f"Invalid signal format: {signal}")


# ---------------------------------------------------------------------
# Logging / script helpers
# ---------------------------------------------------------------------

def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, mode="a"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def run(coro) -> int:
    try:
        return asyncio.run(coro) or 0
    except KeyboardInterrupt:
        return 0
