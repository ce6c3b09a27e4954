"""Risk module – balance/price/risk budget to a sized order plus TP/SL prices.

Pure computation: no I/O, only audit logging of the intermediate values.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Tuple

from config import RiskConfig
from errors import InsufficientBalanceError, InvalidInputError
from models import Direction, PositionRequest, SymbolInfo
from utils import quantity_step, round_price, round_qty, to_decimal

_LOGGER = logging.getLogger(__name__)

SAFETY_FACTOR = Decimal("0.99")  # 1 % kept back for fees/slippage
FRACTIONAL_DECIMALS = 6
_HUNDRED = Decimal(100)


def _positive(value: Any, name: str) -> Decimal:
    try:
        dec = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError(f"Invalid {name}: {value!r}") from None
    if not dec.is_finite() or dec <= 0:
        raise InvalidInputError(f"Invalid {name}: {value!r}")
    return dec


def _direction(value: Any) -> Direction:
    try:
        return Direction.parse(value)
    except ValueError:
        raise InvalidInputError(f"Invalid direction: {value!r}. Must be LONG or SHORT") from None


def bracket_prices(
    entry_price: Decimal,
    direction: Direction,
    risk: RiskConfig,
    price_precision: int,
) -> Tuple[Decimal, Decimal, Decimal]:
    """Return (rounded_entry, take_profit, stop_loss).

    Stop-loss always sits on the losing side of ``direction``, take-profit on
    the winning side. If rounding to the price precision collapses a bracket
    onto the entry price it is pushed out by one price step.
    """
    tp_pct = Decimal(str(risk.take_profit_percent)) / _HUNDRED
    sl_pct = Decimal(str(risk.stop_loss_percent)) / _HUNDRED
    sign = direction.sign

    take_profit = entry_price * (1 + sign * tp_pct)
    stop_loss = entry_price * (1 - sign * sl_pct)

    step = Decimal(1).scaleb(-price_precision)
    entry = round_price(entry_price, price_precision)
    take_profit = round_price(take_profit, price_precision)
    stop_loss = round_price(stop_loss, price_precision)

    if (take_profit - entry) * sign <= 0:
        take_profit = entry + sign * step
    if (entry - stop_loss) * sign <= 0:
        stop_loss = entry - sign * step
    if take_profit <= 0:
        raise InvalidInputError(
            f"Take-profit {take_profit} is not a valid price at precision {price_precision}"
        )
    if stop_loss <= 0:
        raise InvalidInputError(
            f"Stop-loss {stop_loss} is not a valid price at precision {price_precision}"
        )
    return entry, take_profit, stop_loss


def fit_margin(
    quantity: Decimal,
    entry_price: Decimal,
    leverage: Decimal,
    usable_balance: Decimal,
    step: Decimal,
    min_qty: Decimal,
) -> Tuple[Decimal, Decimal]:
    """Step ``quantity`` down until its margin fits ``usable_balance``.

    Returns (quantity, required_margin). Raises ``InsufficientBalanceError``
    when even ``min_qty`` does not fit.
    """
    required_margin = quantity * entry_price / leverage
    while required_margin > usable_balance and quantity - step >= min_qty:
        _LOGGER.warning(
            "[RISK] Margin %.6f > usable %.6f, reducing size %s -> %s",
            required_margin, usable_balance, quantity, quantity - step,
        )
        quantity -= step
        required_margin = quantity * entry_price / leverage
    if required_margin > usable_balance:
        raise InsufficientBalanceError(
            f"Insufficient balance even with minimum size. Required: {required_margin:.6f} USDT, "
            f"usable: {usable_balance:.6f} USDT"
        )
    return quantity, required_margin


def calculate_position(
    balance: Any,
    entry_price: Any,
    direction: Any,
    symbol_info: SymbolInfo,
    risk: RiskConfig,
) -> PositionRequest:
    """Size one trade.

    usable = balance * 0.99; margin budget = usable * risk%; notional = budget * leverage;
    quantity = notional / price floored to the contract step and clamped to the
    contract limits. Raises ``InsufficientBalanceError`` when the exchange
    minimum cannot be met, ``InvalidInputError`` on bad inputs.
    """
    balance = _positive(balance, "balance")
    entry_price = _positive(entry_price, "entry price")
    direction = _direction(direction)
    leverage = Decimal(risk.leverage)

    usable_balance = balance * SAFETY_FACTOR
    margin_limit = usable_balance * Decimal(str(risk.percentage)) / _HUNDRED
    notional = margin_limit * leverage
    _LOGGER.info(
        "[RISK] Balance: %s USDT, usable (99%%): %.6f, margin budget (%s%%): %.6f, notional @%sx: %.6f",
        balance, usable_balance, risk.percentage, margin_limit, risk.leverage, notional,
    )

    step = quantity_step(symbol_info.quantity_is_fractional, FRACTIONAL_DECIMALS)
    raw_quantity = notional / entry_price
    quantity = round_qty(raw_quantity, step)
    min_qty = symbol_info.min_quantity
    max_qty = symbol_info.max_quantity

    if quantity < min_qty:
        raise InsufficientBalanceError(
            f"{symbol_info.symbol}: quantity {quantity} (raw {raw_quantity:.8f}) is below the "
            f"exchange minimum {min_qty} at balance {balance} and price {entry_price}"
        )
    if quantity > max_qty:
        _LOGGER.warning("[RISK] Quantity %s > maximum %s – using maximum", quantity, max_qty)
        quantity = max_qty

    quantity, required_margin = fit_margin(quantity, entry_price, leverage, usable_balance, step, min_qty)

    entry, take_profit, stop_loss = bracket_prices(
        entry_price, direction, risk, symbol_info.price_precision
    )

    request = PositionRequest(
        symbol=symbol_info.symbol,
        direction=direction,
        entry_price=entry,
        quantity=quantity,
        take_profit_price=take_profit,
        stop_loss_price=stop_loss,
        required_margin=required_margin,
        leverage=risk.leverage,
    )
    _LOGGER.info(
        "[RISK] ✅ Final position: %s %s contracts @ %s, margin %.6f USDT (%.2f%%), TP %s, SL %s",
        direction.value, quantity, entry, required_margin,
        required_margin / balance * _HUNDRED, take_profit, stop_loss,
    )
    return request

