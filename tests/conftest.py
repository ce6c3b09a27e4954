"""
Shared fixtures for the execution bot tests.

Provides:
- Risk / trading configuration objects
- SymbolInfo samples (whole-contract and fractional)
- FakeSession: in-memory stand-in for aiohttp.ClientSession
"""

import json
from decimal import Decimal

import pytest

from config import RiskConfig, TradingConfig, TradingHours
from models import SymbolInfo


class FakeResponse:
    def __init__(self, status, payload):
        self.status = status
        if isinstance(payload, (dict, list)):
            self._text = json.dumps(payload)
        else:
            self._text = payload or ""

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Routes (METHOD, path) to a queue of (status, payload) or exceptions."""

    def __init__(self):
        self.routes = {}
        self.calls = []
        self.closed = False

    def add(self, method, path, payload, status=200):
        self.routes.setdefault((method, path), []).append((status, payload))
        return self

    def fail(self, method, path, exc):
        self.routes.setdefault((method, path), []).append(exc)
        return self

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "path": url.path,
                "query": url.raw_query_string,
                "data": data,
                "headers": headers or {},
            }
        )
        queue = self.routes.get((method, url.path))
        if not queue:
            raise AssertionError(f"unexpected request {method} {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        status, payload = item
        return FakeResponse(status, payload)

    def post(self, url, json=None, timeout=None):
        self.calls.append({"method": "POST", "url": url, "json": json})
        queue = self.routes.get(("POST", url))
        if not queue:
            raise AssertionError(f"unexpected POST {url}")
        item = queue[0]
        if isinstance(item, Exception):
            raise item
        status, payload = item
        return FakeResponse(status, payload)

    async def close(self):
        self.closed = True

    @property
    def last(self):
        return self.calls[-1]

    def last_body(self):
        data = self.calls[-1]["data"]
        return json.loads(data.decode()) if data else None


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def risk_config():
    return RiskConfig(percentage=3, leverage=20, take_profit_percent=0.5, stop_loss_percent=0.3)


@pytest.fixture
def trading_config():
    return TradingConfig(
        allowed_symbols=("ADAUSDT", "TAOUSDT", "UNIUSDT"),
        max_daily_trades=2,
        max_open_positions=2,
        protective_order_attempts=3,
        protective_retry_delay=0,
    )


@pytest.fixture
def trading_hours():
    return TradingHours(enabled=False)


@pytest.fixture
def fractional_info():
    return SymbolInfo(
        symbol="ADAUSDT",
        contract="ADA_USDT",
        min_quantity=Decimal("0.000001"),
        max_quantity=Decimal("1000000"),
        price_precision=4,
        quantity_is_fractional=True,
    )


@pytest.fixture
def whole_info():
    return SymbolInfo(
        symbol="BTCUSDT",
        contract="BTC_USDT",
        min_quantity=Decimal("1"),
        max_quantity=Decimal("1000000"),
        price_precision=1,
        quantity_is_fractional=False,
    )
