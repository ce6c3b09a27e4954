"""Order flow: size a trade, set leverage, enter at market, attach TP and SL.

One trade runs as a sequential state machine::

    IDLE -> LEVERAGE_SET -> ENTRY_PLACED -> TP_SET -> SL_SET -> COMPLETE
                        \\-------------- FAILED(stage, reason) ----------/

Trades on the same symbol are serialised by a per-symbol lock; different
symbols may run concurrently. Once the entry has filled, nothing here ever
closes the position – a protective leg that cannot be placed is escalated
through the notifier instead.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from config import RiskConfig, TradingConfig, TradingHours
from errors import (
    ExchangeRejectionError,
    NetworkError,
    NotFoundError,
    TradingBotError,
)
from gateio_client import GateIOClient, order_tag
from models import Direction, OrderResult, PositionRequest, SymbolInfo
from notifier import TelegramNotifier
from risk import bracket_prices, calculate_position
from utils import to_contract, to_decimal

_LOGGER = logging.getLogger(__name__)


class TradeState(str, Enum):
    IDLE = "IDLE"
    LEVERAGE_SET = "LEVERAGE_SET"
    ENTRY_PLACED = "ENTRY_PLACED"
    TP_SET = "TP_SET"
    SL_SET = "SL_SET"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class Stage:
    MARKET_DATA = "market_data"
    SIZING = "sizing"
    LEVERAGE = "leverage"
    ENTRY = "entry"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


@dataclass
class TradeOutcome:
    symbol: str
    direction: Direction
    state: TradeState = TradeState.IDLE
    failed_stage: Optional[str] = None
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    request: Optional[PositionRequest] = None
    entry: Optional[OrderResult] = None
    take_profit: Optional[OrderResult] = None
    stop_loss: Optional[OrderResult] = None
    dry_run: bool = False
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.state is TradeState.COMPLETE or (self.dry_run and self.state is not TradeState.FAILED)

    @property
    def position_open(self) -> bool:
        return self.entry is not None and self.entry.filled_quantity > 0

    def to_dict(self) -> Dict[str, Any]:
        def order(o: Optional[OrderResult]) -> Optional[Dict[str, Any]]:
            if o is None:
                return None
            return {
                "order_id": o.order_id,
                "filled_quantity": str(o.filled_quantity),
                "fill_price": str(o.fill_price) if o.fill_price is not None else None,
                "price": str(o.price) if o.price is not None else None,
            }

        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "state": self.state.value,
            "failed_stage": self.failed_stage,
            "reason": self.reason,
            "error_kind": self.error_kind,
            "dry_run": self.dry_run,
            "skipped": self.skipped,
            "request": self.request.to_dict() if self.request else None,
            "entry": order(self.entry),
            "take_profit": order(self.take_profit),
            "stop_loss": order(self.stop_loss),
        }


class OrderOrchestrator:
    """Runs one trade attempt per call to ``open_position``."""

    def __init__(
        self,
        client: GateIOClient,
        risk: RiskConfig,
        notifier: Optional[TelegramNotifier] = None,
        protective_attempts: int = 3,
        retry_delay: float = 1.0,
        dry_run: bool = False,
    ):
        self._client = client
        self._risk = risk
        self._notifier = notifier
        self._attempts = max(1, protective_attempts)
        self._retry_delay = retry_delay
        self._dry_run = dry_run
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, symbol: str) -> asyncio.Lock:
        return self._locks[symbol.upper()]

    async def open_position(
        self,
        symbol: str,
        direction: Any,
        precheck: Optional[Callable[[str], Awaitable[Optional[str]]]] = None,
    ) -> TradeOutcome:
        """Run one trade attempt under the symbol's lock.

        ``precheck`` runs inside the lock and may return a reason to skip.
        """
        direction = Direction.parse(direction)
        symbol = symbol.upper()
        async with self.lock_for(symbol):
            if precheck is not None:
                try:
                    reason = await precheck(symbol)
                except TradingBotError as e:
                    reason = f"pre-trade check failed: {e}"
                if reason:
                    _LOGGER.info("Skipping %s %s – %s", direction.value, symbol, reason)
                    return TradeOutcome(symbol=symbol, direction=direction, skipped=True, reason=reason)
            return await self._run(symbol, direction)

    # ---------------------------------------------------------------------
    # Pipeline
    # ---------------------------------------------------------------------
    async def _run(self, symbol: str, direction: Direction) -> TradeOutcome:
        outcome = TradeOutcome(symbol=symbol, direction=direction, dry_run=self._dry_run)
        _LOGGER.info("Opening position for %s %s", direction.value, symbol)

        try:
            info = await self._client.get_symbol_info(symbol)
            if info.delisting:
                raise NotFoundError(f"{symbol} is being delisted")
            balance = await self._client.get_balance()
            price = await self._client.get_current_price(symbol)
        except TradingBotError as e:
            return await self._fail(outcome, Stage.MARKET_DATA, e)

        try:
            request = calculate_position(balance, price, direction, info, self._risk)
        except TradingBotError as e:
            return await self._fail(outcome, Stage.SIZING, e)
        outcome.request = request

        if self._dry_run:
            _LOGGER.info("🧪 DRY RUN – would open %s", request.to_dict())
            return outcome

        try:
            await self._client.set_leverage(symbol, request.leverage)
        except TradingBotError as e:
            return await self._fail(outcome, Stage.LEVERAGE, e)
        outcome.state = TradeState.LEVERAGE_SET

        try:
            entry = await self._client.open_market_order(
                symbol, direction, request.quantity, fractional=info.quantity_is_fractional
            )
        except NetworkError as e:
            # the order may have reached the exchange
            return await self._fail(
                outcome, Stage.ENTRY, e, alert="Entry outcome unknown – check positions for " + symbol
            )
        except TradingBotError as e:
            return await self._fail(outcome, Stage.ENTRY, e)
        if entry.filled_quantity <= 0:
            return await self._fail(
                outcome, Stage.ENTRY, TradingBotError(f"IOC entry {entry.order_id} did not fill")
            )
        outcome.entry = entry
        outcome.state = TradeState.ENTRY_PLACED

        try:
            return await self._protect(outcome, request, info)
        except Exception as e:
            # position is open; escalate anything
            _LOGGER.exception("Unexpected error after %s entry %s", symbol, entry.order_id)
            if outcome.state in (TradeState.COMPLETE, TradeState.FAILED):
                return outcome
            stage = Stage.STOP_LOSS if outcome.state is TradeState.TP_SET else Stage.TAKE_PROFIT
            return await self._fail(
                outcome,
                stage,
                TradingBotError(f"unexpected {type(e).__name__}: {e}"),
                alert="Position open – unexpected error",
            )

    async def _protect(self, outcome: TradeOutcome, request: PositionRequest, info: SymbolInfo) -> TradeOutcome:
        """Attach TP then SL to the filled entry in ``outcome``."""
        symbol = outcome.symbol
        direction = outcome.direction
        entry = outcome.entry
        fill_price = entry.fill_price or request.entry_price
        quantity = entry.filled_quantity
        try:
            _, tp_price, sl_price = bracket_prices(fill_price, direction, self._risk, info.price_precision)
        except TradingBotError as e:
            return await self._fail(outcome, Stage.TAKE_PROFIT, e, alert="Position open without TP/SL")
        _LOGGER.info(
            "Entry %s filled %s @ %s – brackets TP %s / SL %s",
            entry.order_id, quantity, fill_price, tp_price, sl_price,
        )

        tp_tag = order_tag("tp")
        try:
            outcome.take_profit = await self._place_protective(
                Stage.TAKE_PROFIT,
                lambda: self._client.set_take_profit(
                    symbol, direction, tp_price, quantity,
                    fractional=info.quantity_is_fractional, text=tp_tag,
                ),
                lambda: self._find_take_profit(symbol, tp_tag, tp_price),
            )
        except TradingBotError as e:
            return await self._fail(outcome, Stage.TAKE_PROFIT, e, alert="Position open without take-profit")
        outcome.state = TradeState.TP_SET

        try:
            outcome.stop_loss = await self._place_protective(
                Stage.STOP_LOSS,
                lambda: self._client.set_stop_loss(
                    symbol, direction, sl_price, quantity, fractional=info.quantity_is_fractional
                ),
                lambda: self._find_stop_loss(symbol, sl_price),
            )
        except TradingBotError as e:
            return await self._fail(outcome, Stage.STOP_LOSS, e, alert="Position open without stop-loss")
        outcome.state = TradeState.SL_SET

        outcome.state = TradeState.COMPLETE
        _LOGGER.info(
            "✅ Position opened: %s %s qty=%s entry=%s tp=%s sl=%s",
            direction.value, symbol, quantity, fill_price, tp_price, sl_price,
        )
        await self._notify(
            "Position opened",
            f"{direction.value} {symbol}",
            "success",
            quantity=quantity,
            entry=fill_price,
            take_profit=tp_price,
            stop_loss=sl_price,
            margin=f"{request.required_margin:.4f}",
        )
        return outcome

    async def _place_protective(
        self,
        stage: str,
        place: Callable[[], Awaitable[OrderResult]],
        find_existing: Callable[[], Awaitable[Optional[OrderResult]]],
    ) -> OrderResult:
        """Bounded attempts; after a network error look for the order before re-sending."""
        attempt = 1
        while True:
            try:
                return await place()
            except NetworkError as e:
                error: TradingBotError = e
                _LOGGER.warning("%s attempt %d/%d: %s", stage, attempt, self._attempts, e)
                existing = await self._lookup(stage, find_existing)
                if existing is not None:
                    _LOGGER.info("%s order %s already on the book", stage, existing.order_id)
                    return existing
            except ExchangeRejectionError as e:
                error = e
                _LOGGER.warning("%s attempt %d/%d rejected: %s", stage, attempt, self._attempts, e)
            if attempt >= self._attempts:
                raise error.with_stage(stage)
            attempt += 1
            await asyncio.sleep(self._retry_delay)

    async def _lookup(
        self, stage: str, find_existing: Callable[[], Awaitable[Optional[OrderResult]]]
    ) -> Optional[OrderResult]:
        try:
            return await find_existing()
        except TradingBotError as e:
            _LOGGER.warning("%s lookup failed: %s", stage, e)
            return None

    async def _find_take_profit(self, symbol: str, tag: str, price: Decimal) -> Optional[OrderResult]:
        for order in await self._client.list_open_orders(symbol):
            if order.get("text") == tag:
                return OrderResult(order_id=str(order.get("id", "")), price=price, text=tag)
        return None

    async def _find_stop_loss(self, symbol: str, price: Decimal) -> Optional[OrderResult]:
        contract = to_contract(symbol)
        for order in await self._client.list_open_price_orders(symbol):
            trigger = order.get("trigger") or {}
            initial = order.get("initial") or {}
            if initial.get("contract") == contract and to_decimal(trigger.get("price")) == price:
                return OrderResult(order_id=str(order.get("id", "")), price=price)
        return None

    # ---------------------------------------------------------------------
    # Failure reporting
    # ---------------------------------------------------------------------
    async def _fail(
        self,
        outcome: TradeOutcome,
        stage: str,
        error: TradingBotError,
        alert: Optional[str] = None,
    ) -> TradeOutcome:
        error.with_stage(stage)
        previous = outcome.state
        outcome.state = TradeState.FAILED
        outcome.failed_stage = stage
        outcome.reason = error.message
        outcome.error_kind = error.kind
        context = {
            "symbol": outcome.symbol,
            "direction": outcome.direction.value,
            "previous_state": previous.value,
            "request": outcome.request.to_dict() if outcome.request else None,
            "entry_order": outcome.entry.order_id if outcome.entry else None,
        }
        if alert is None:
            _LOGGER.error("❌ Trade failed at %s (%s): %s | %s", stage, error.kind, error, context)
            return outcome

        _LOGGER.critical("🚨 %s: %s (%s) | %s", alert, error, error.kind, context)
        await self._notify(
            alert,
            f"{outcome.direction.value} {outcome.symbol} failed at {stage}: {error.message}",
            "critical",
            entry_order=context["entry_order"],
            quantity=outcome.entry.filled_quantity if outcome.entry else None,
        )
        return outcome

    async def _notify(self, title: str, message: str, level: str = "info", **data: Any) -> None:
        if self._notifier is None:
            return
        await self._notifier.alert(title, message, level, **data)


# ---------------------------------------------------------------------
# Pre-trade gate
# ---------------------------------------------------------------------

class TradeGate:
    """Checks that decide whether a signal may become a trade at all.

    Trades that passed ``check`` but have not finished yet hold a slot
    (``reserve``/``release``) so concurrent signals on different symbols
    cannot overrun the daily limit.
    """

    def __init__(
        self,
        trading: TradingConfig,
        hours: TradingHours,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._trading = trading
        self._hours = hours
        self._clock = clock
        self.daily_trades = 0
        self.in_flight = 0

    def reset_daily(self) -> None:
        _LOGGER.info("Daily trade counter reset (was %d)", self.daily_trades)
        self.daily_trades = 0

    def record_trade(self) -> None:
        self.daily_trades += 1

    def reserve(self) -> None:
        self.in_flight += 1

    def release(self) -> None:
        self.in_flight = max(0, self.in_flight - 1)

    def symbol_reason(self, symbol: str) -> Optional[str]:
        if symbol not in self._trading.allowed_symbols:
            return f"{symbol} is not in ALLOWED_SYMBOLS"
        return None

    def _daily_limit_reason(self) -> Optional[str]:
        if self.daily_trades + self.in_flight >= self._trading.max_daily_trades:
            return f"daily trade limit {self._trading.max_daily_trades} reached"
        return None

    async def check(self, client: GateIOClient, symbol: str) -> Optional[str]:
        """Return the reason to skip, or ``None`` when the trade may proceed."""
        reason = self.symbol_reason(symbol)
        if reason:
            return reason
        hour = self._clock().hour
        if not self._hours.is_open(hour):
            return f"outside trading hours ({self._hours.start_hour}-{self._hours.end_hour} UTC, now {hour})"
        reason = self._daily_limit_reason()
        if reason:
            return reason
        positions = await client.get_open_positions()
        if any(p.symbol == symbol for p in positions):
            return f"{symbol} already has an open position"
        if len(positions) >= self._trading.max_open_positions:
            return f"open positions cap {self._trading.max_open_positions} reached"
        # another symbol may have reserved a slot while positions were fetched
        return self._daily_limit_reason()


async def process_signal(
    symbol: str,
    direction: Any,
    client: GateIOClient,
    gate: TradeGate,
    orchestrator: OrderOrchestrator,
) -> TradeOutcome:
    """Gate, then run one trade – the per-signal entry point."""
    symbol = symbol.upper()
    direction = Direction.parse(direction)
    _LOGGER.info("Evaluating signal: %s %s", direction.value, symbol)

    # before the orchestrator creates a lock for the symbol
    reason = gate.symbol_reason(symbol)
    if reason:
        _LOGGER.info("Skipping %s %s – %s", direction.value, symbol, reason)
        return TradeOutcome(symbol=symbol, direction=direction, skipped=True, reason=reason)

    reserved = False

    async def precheck(sym: str) -> Optional[str]:
        nonlocal reserved
        reason = await gate.check(client, sym)
        if reason is None:
            gate.reserve()
            reserved = True
        return reason

    try:
        outcome = await orchestrator.open_position(symbol, direction, precheck=precheck)
    finally:
        if reserved:
            gate.release()

    if outcome.position_open:
        gate.record_trade()
    return outcome
