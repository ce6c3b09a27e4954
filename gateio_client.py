"""Minimal async Gate.io USDT-futures REST client – only the endpoints the execution bot needs.

Private calls are signed per the APIv4 scheme in ``signing``. The query string and
JSON body are rendered once, signed, and sent as exactly those bytes.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import aiohttp
from aiohttp import ClientSession, ClientTimeout
from yarl import URL

from config import DEFAULT_BASE_URL, Settings
from errors import (
    ExchangeRejectionError,
    InvalidInputError,
    NetworkError,
    NotFoundError,
)
from models import Direction, LeverageResult, OrderResult, Position, SymbolInfo, Trade
from signing import build_query_string, canonical_body, redact, signature_headers
from utils import format_size, from_contract, precision_from_tick, to_contract, to_decimal

_LOGGER = logging.getLogger(__name__)

_NOT_FOUND_LABELS = frozenset({"CONTRACT_NOT_FOUND", "POSITION_NOT_FOUND", "ORDER_NOT_FOUND"})
_LEVERAGE_UNCHANGED_LABELS = frozenset({"LEVERAGE_NOT_MODIFIED", "SAME_LEVERAGE"})

# Gate.io price-triggered order rules
TRIGGER_RULE_GTE = 1
TRIGGER_RULE_LTE = 2
TRIGGER_PRICE_MARK = 1


def order_tag(stage: str) -> str:
    """Client order tag; Gate.io requires custom ``text`` to start with ``t-``."""
    return f"t-{stage}-{int(time.time() * 1000)}"


class GateIOClient:
    """Tiny subset of the Gate.io futures HTTP endpoints (async)."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = DEFAULT_BASE_URL,
        settle: str = "usdt",
        dual_mode: bool = False,
        size_decimal: bool = False,
        timeout: float = 8.0,
        session: Optional[ClientSession] = None,
    ):
        if not api_key or not api_secret:
            raise ValueError("API keys missing – set GATEIO_API_KEY & GATEIO_API_SECRET env vars")
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url.rstrip("/")
        self._prefix = urlparse(self._base_url).path.rstrip("/")
        self._settle = settle
        self.dual_mode = dual_mode
        self.size_decimal = size_decimal
        self._timeout = ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[ClientSession] = None) -> "GateIOClient":
        return cls(
            settings.credentials.key,
            settings.credentials.secret,
            base_url=settings.base_url,
            dual_mode=settings.dual_mode,
            size_decimal=settings.size_decimal,
            timeout=settings.http_timeout,
            session=session,
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------
    def _futures(self, suffix: str = "") -> str:
        return f"/futures/{self._settle}{suffix}"

    async def _request(
        self,
        method: str,
        path: str,
        signed: bool = False,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        if self._session is None:
            raise RuntimeError("Session not started – use `async with GateIOClient(...)`")
        method = method.upper()
        query = build_query_string(params)
        payload = canonical_body(body)
        resource_path = f"{self._prefix}{path}"
        url = f"{self._base_url}{path}" + (f"?{query}" if query else "")

        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.size_decimal:
            headers["X-Gate-Size-Decimal"] = "1"
        if signed:
            headers.update(
                signature_headers(self._api_key, self._api_secret, method, resource_path, query, payload)
            )

        _LOGGER.debug(
            "→ %s %s query=%s body=%s key=%s",
            method, resource_path, query or "-", payload or "-", redact(self._api_key) if signed else "-",
        )
        try:
            async with self._session.request(
                method,
                URL(url, encoded=True),
                data=payload.encode() if payload else None,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                try:
                    text = await resp.text()
                except UnicodeDecodeError as e:
                    raise ExchangeRejectionError(
                        f"{method} {resource_path} returned an undecodable body", status=status
                    ) from e
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{method} {resource_path} timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} {resource_path} failed: {e}") from e
        _LOGGER.debug("← %s %s %s", status, method, resource_path)

        data = _parse_json(text)
        if status >= 400:
            raise _rejection(status, data, text, f"{method} {resource_path}")
        if not isinstance(data, (dict, list)):
            raise ExchangeRejectionError(
                f"{method} {resource_path} returned a non-JSON body: {text[:200]!r}", status=status
            )
        return data

    # ---------------------------------------------------------------------
    # Public endpoints
    # ---------------------------------------------------------------------
    async def get_symbol_info(self, symbol: str) -> SymbolInfo:
        contract = to_contract(symbol)
        data = await self._request("GET", self._futures(f"/contracts/{contract}"))
        if not data:
            raise NotFoundError(f"Contract {contract} not found")
        tick = to_decimal(data.get("order_price_round"), "0.01")
        info = SymbolInfo(
            symbol=from_contract(data.get("name") or contract),
            contract=data.get("name") or contract,
            min_quantity=to_decimal(data.get("order_size_min"), "1"),
            max_quantity=to_decimal(data.get("order_size_max"), "1000000"),
            price_precision=precision_from_tick(tick),
            quantity_is_fractional=self.size_decimal and bool(data.get("enable_decimal")),
            delisting=bool(data.get("in_delisting")),
        )
        _LOGGER.info(
            "[GATEIO] %s: min=%s max=%s tick=%s fractional=%s",
            contract, info.min_quantity, info.max_quantity, tick, info.quantity_is_fractional,
        )
        return info

    async def get_current_price(self, symbol: str) -> Decimal:
        contract = to_contract(symbol)
        data = await self._request("GET", self._futures("/tickers"), params={"contract": contract})
        if not data:
            raise NotFoundError(f"Ticker for {contract} not found")
        price = to_decimal(data[0].get("last"))
        if price <= 0:
            raise NotFoundError(f"Ticker for {contract} has no last price")
        _LOGGER.info("[GATEIO] Current price for %s: %s", symbol, price)
        return price

    # ---------------------------------------------------------------------
    # Account
    # ---------------------------------------------------------------------
    async def connect(self) -> bool:
        """Check the credentials by reading the futures account."""
        await self._request("GET", self._futures("/accounts"), signed=True)
        _LOGGER.info("[GATEIO] ✅ Connected (key %s, dual_mode=%s)", redact(self._api_key), self.dual_mode)
        return True

    async def get_balance(self) -> Decimal:
        account = await self._request("GET", self._futures("/accounts"), signed=True)
        available = to_decimal((account or {}).get("available"))
        _LOGGER.info("[GATEIO] USDT balance: %s USDT", available)
        return available

    async def set_leverage(self, symbol: str, leverage: int) -> LeverageResult:
        contract = to_contract(symbol)
        if self.dual_mode:
            path = self._futures(f"/dual_comp/positions/{contract}/leverage")
        else:
            path = self._futures(f"/positions/{contract}/leverage")
        _LOGGER.info("[GATEIO] Setting leverage %dx for %s", leverage, symbol)
        try:
            await self._request("POST", path, signed=True, params={"leverage": str(leverage)})
        except ExchangeRejectionError as e:
            if _leverage_unchanged(e):
                _LOGGER.info("[GATEIO] ✅ Leverage already %dx for %s", leverage, symbol)
                return LeverageResult.ALREADY_SET
            raise
        _LOGGER.info("[GATEIO] ✅ Leverage %dx set for %s", leverage, symbol)
        return LeverageResult.SET

    # ---------------------------------------------------------------------
    # Orders
    # ---------------------------------------------------------------------
    def _size(self, quantity: Decimal, fractional: bool, sign: int) -> Any:
        quantity = abs(to_decimal(quantity))
        if quantity <= 0:
            raise InvalidInputError(f"Order quantity must be positive, got {quantity}")
        if not fractional and quantity != quantity.to_integral_value():
            raise InvalidInputError(f"Contract only accepts whole sizes, got {quantity}")
        signed_qty = quantity if sign > 0 else -quantity
        return format_size(signed_qty, fractional)

    async def open_market_order(
        self,
        symbol: str,
        direction: Direction,
        quantity: Decimal,
        fractional: bool = False,
        text: Optional[str] = None,
    ) -> OrderResult:
        """Immediate-or-cancel market entry; size sign encodes the side."""
        body = {
            "contract": to_contract(symbol),
            "size": self._size(quantity, fractional, direction.sign),
            "price": "0",
            "tif": "ioc",
            "text": text or order_tag("entry"),
        }
        _LOGGER.info("[GATEIO] Opening %s market order: %s %s", direction.value, quantity, symbol)
        data = await self._request("POST", self._futures("/orders"), signed=True, body=body)
        size = abs(to_decimal(data.get("size")))
        left = abs(to_decimal(data.get("left")))
        fill_price = to_decimal(data.get("fill_price"))
        result = OrderResult(
            order_id=str(data.get("id", "")),
            filled_quantity=size - left,
            fill_price=fill_price if fill_price > 0 else None,
            text=data.get("text", body["text"]),
        )
        _LOGGER.info(
            "[GATEIO] ✅ Market order %s: filled %s @ %s",
            result.order_id, result.filled_quantity, result.fill_price,
        )
        return result

    async def set_take_profit(
        self,
        symbol: str,
        direction: Direction,
        price: Decimal,
        quantity: Decimal,
        fractional: bool = False,
        text: Optional[str] = None,
    ) -> OrderResult:
        """Reduce-only GTC limit on the closing side of a ``direction`` position."""
        body = {
            "contract": to_contract(symbol),
            "size": self._size(quantity, fractional, -direction.sign),
            "price": str(price),
            "tif": "gtc",
            "reduce_only": True,
            "text": text or order_tag("tp"),
        }
        _LOGGER.info("[GATEIO] Setting take-profit limit @ %s for %s", price, symbol)
        data = await self._request("POST", self._futures("/orders"), signed=True, body=body)
        result = OrderResult(order_id=str(data.get("id", "")), price=to_decimal(price), text=body["text"])
        _LOGGER.info("[GATEIO] ✅ Take-profit order set: %s", result.order_id)
        return result

    async def set_stop_loss(
        self,
        symbol: str,
        direction: Direction,
        price: Decimal,
        quantity: Decimal,
        fractional: bool = False,
    ) -> OrderResult:
        """Reduce-only market close triggered by the mark price crossing ``price``."""
        rule = TRIGGER_RULE_LTE if direction is Direction.LONG else TRIGGER_RULE_GTE
        body = {
            "initial": {
                "contract": to_contract(symbol),
                "size": self._size(quantity, fractional, -direction.sign),
                "price": "0",
                "tif": "ioc",
                "reduce_only": True,
            },
            "trigger": {
                "strategy_type": 0,
                "price_type": TRIGGER_PRICE_MARK,
                "price": str(price),
                "rule": rule,
                "expiration": 0,
            },
        }
        _LOGGER.info("[GATEIO] Setting stop-loss trigger @ %s (rule %d) for %s", price, rule, symbol)
        data = await self._request("POST", self._futures("/price_orders"), signed=True, body=body)
        result = OrderResult(order_id=str(data.get("id", "")), price=to_decimal(price))
        _LOGGER.info("[GATEIO] ✅ Stop-loss trigger order set: %s", result.order_id)
        return result

    async def list_open_orders(self, symbol: str) -> List[Dict[str, Any]]:
        params = {"contract": to_contract(symbol), "status": "open"}
        return await self._request("GET", self._futures("/orders"), signed=True, params=params) or []

    async def list_open_price_orders(self, symbol: str) -> List[Dict[str, Any]]:
        params = {"contract": to_contract(symbol), "status": "open"}
        return await self._request("GET", self._futures("/price_orders"), signed=True, params=params) or []

    # ---------------------------------------------------------------------
    # Positions / history
    # ---------------------------------------------------------------------
    async def get_open_positions(self, symbol: Optional[str] = None) -> List[Position]:
        data = await self._request("GET", self._futures("/positions"), signed=True, params={"holding": "true"})
        contract = to_contract(symbol) if symbol else None
        positions = []
        for raw in data or []:
            size = to_decimal(raw.get("size"))
            if size == 0:
                continue
            if contract and raw.get("contract") != contract:
                continue
            positions.append(
                Position(
                    symbol=from_contract(raw.get("contract", "")),
                    contract=raw.get("contract", ""),
                    direction=Direction.LONG if size > 0 else Direction.SHORT,
                    size=abs(size),
                    entry_price=to_decimal(raw.get("entry_price")),
                    mark_price=to_decimal(raw.get("mark_price")),
                    unrealised_pnl=to_decimal(raw.get("unrealised_pnl")),
                    leverage=to_decimal(raw.get("leverage"), "1"),
                    mode=raw.get("mode") or "single",
                )
            )
        return positions

    async def get_trade_history(self, symbol: Optional[str] = None, limit: int = 50) -> List[Trade]:
        params: Dict[str, Any] = {"limit": limit}
        if symbol:
            params["contract"] = to_contract(symbol)
        data = await self._request("GET", self._futures("/my_trades"), signed=True, params=params)
        return [
            Trade(
                trade_id=str(t.get("id", "")),
                symbol=from_contract(t.get("contract", "")),
                contract=t.get("contract", ""),
                order_id=str(t.get("order_id", "")),
                size=abs(to_decimal(t.get("size"))),
                price=to_decimal(t.get("price")),
                role=t.get("role", ""),
                create_time=float(t.get("create_time") or 0),
                text=t.get("text", ""),
            )
            for t in data or []
        ]


def _parse_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _rejection(status: int, data: Any, text: str, where: str) -> Exception:
    label = ""
    message = text
    if isinstance(data, dict):
        label = str(data.get("label") or "")
        message = str(data.get("message") or data.get("detail") or text)
    if status == 404 or label in _NOT_FOUND_LABELS:
        return NotFoundError(f"{where}: {label or status} {message}")
    _LOGGER.warning("[GATEIO] %s rejected: HTTP %s %s %s", where, status, label, message)
    return ExchangeRejectionError(message, status=status, label=label)


def _leverage_unchanged(error: ExchangeRejectionError) -> bool:
    if error.label in _LEVERAGE_UNCHANGED_LABELS:
        return True
    # some gateways only put it in the message
    text = error.message.lower()
    return "leverage not modified" in text or "same leverage" in text
