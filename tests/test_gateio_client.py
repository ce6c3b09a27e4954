"""
Unit tests for the Gate.io futures client.

Tests cover:
- Response normalisation (contracts, tickers, accounts, positions, trades)
- Signed request headers and byte-identical bodies
- Idempotent leverage handling
- Order payloads for entry, take-profit and stop-loss
- Error mapping (404 / labels / network failures / empty or non-JSON bodies)
"""

import asyncio
from decimal import Decimal

import aiohttp
import pytest

from errors import ExchangeRejectionError, InvalidInputError, NetworkError, NotFoundError
from gateio_client import GateIOClient, TRIGGER_RULE_GTE, TRIGGER_RULE_LTE
from models import Direction, LeverageResult
from signing import sign

PREFIX = "/api/v4/futures/usdt"

CONTRACT = {
    "name": "ADA_USDT",
    "order_size_min": "1",
    "order_size_max": "1000000",
    "order_price_round": "0.0001",
    "enable_decimal": True,
    "in_delisting": False,
}


def make_client(session, **kwargs):
    return GateIOClient("my-api-key", "my-secret", session=session, **kwargs)


class TestMarketData:
    @pytest.mark.asyncio
    async def test_symbol_info(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/contracts/ADA_USDT", CONTRACT)
        info = await make_client(fake_session).get_symbol_info("ADAUSDT")

        assert info.symbol == "ADAUSDT"
        assert info.contract == "ADA_USDT"
        assert info.min_quantity == Decimal("1")
        assert info.price_precision == 4
        assert info.quantity_is_fractional is False
        assert "KEY" not in fake_session.last["headers"]

    @pytest.mark.asyncio
    async def test_symbol_info_fractional_when_opted_in(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/contracts/ADA_USDT", CONTRACT)
        info = await make_client(fake_session, size_decimal=True).get_symbol_info("ADAUSDT")

        assert info.quantity_is_fractional is True
        assert fake_session.last["headers"]["X-Gate-Size-Decimal"] == "1"

    @pytest.mark.asyncio
    async def test_unknown_contract(self, fake_session):
        fake_session.add(
            "GET", f"{PREFIX}/contracts/FOO_USDT",
            {"label": "CONTRACT_NOT_FOUND", "message": "contract not found"}, status=400,
        )
        with pytest.raises(NotFoundError):
            await make_client(fake_session).get_symbol_info("FOOUSDT")

    @pytest.mark.asyncio
    async def test_current_price(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/tickers", [{"contract": "ADA_USDT", "last": "0.3517"}])
        price = await make_client(fake_session).get_current_price("ADAUSDT")

        assert price == Decimal("0.3517")
        assert fake_session.last["query"] == "contract=ADA_USDT"

    @pytest.mark.asyncio
    async def test_missing_ticker(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/tickers", [])
        with pytest.raises(NotFoundError):
            await make_client(fake_session).get_current_price("ADAUSDT")


class TestSignedRequests:
    @pytest.mark.asyncio
    async def test_balance_is_signed(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/accounts", {"available": "1000.5", "total": "1200"})
        balance = await make_client(fake_session).get_balance()

        assert balance == Decimal("1000.5")
        headers = fake_session.last["headers"]
        assert headers["KEY"] == "my-api-key"
        expected = sign("GET", f"{PREFIX}/accounts", "", "", int(headers["Timestamp"]), "my-secret")
        assert headers["SIGN"] == expected

    @pytest.mark.asyncio
    async def test_signed_body_is_sent_body(self, fake_session):
        fake_session.add("POST", f"{PREFIX}/orders", {"id": 1, "size": 3, "left": 0, "fill_price": "0.35"})
        await make_client(fake_session).open_market_order("ADAUSDT", Direction.LONG, Decimal("3"))

        call = fake_session.last
        body = call["data"].decode()
        expected = sign("POST", f"{PREFIX}/orders", "", body, int(call["headers"]["Timestamp"]), "my-secret")
        assert call["headers"]["SIGN"] == expected
        assert " " not in body


class TestLeverage:
    @pytest.mark.asyncio
    async def test_set(self, fake_session):
        fake_session.add("POST", f"{PREFIX}/positions/ADA_USDT/leverage", {"leverage": "20"})
        result = await make_client(fake_session).set_leverage("ADAUSDT", 20)

        assert result is LeverageResult.SET
        assert fake_session.last["query"] == "leverage=20"

    @pytest.mark.asyncio
    async def test_second_call_is_noop(self, fake_session):
        path = f"{PREFIX}/positions/ADA_USDT/leverage"
        fake_session.add("POST", path, {"leverage": "20"})
        fake_session.add("POST", path, {"label": "LEVERAGE_NOT_MODIFIED", "message": "leverage not modified"}, 400)
        client = make_client(fake_session)

        assert await client.set_leverage("ADAUSDT", 20) is LeverageResult.SET
        assert await client.set_leverage("ADAUSDT", 20) is LeverageResult.ALREADY_SET

    @pytest.mark.asyncio
    async def test_other_rejection_raises(self, fake_session):
        fake_session.add(
            "POST", f"{PREFIX}/positions/ADA_USDT/leverage",
            {"label": "INVALID_PARAM_VALUE", "message": "leverage too high"}, 400,
        )
        with pytest.raises(ExchangeRejectionError) as exc:
            await make_client(fake_session).set_leverage("ADAUSDT", 200)
        assert exc.value.label == "INVALID_PARAM_VALUE"
        assert exc.value.status == 400

    @pytest.mark.asyncio
    async def test_dual_mode_path(self, fake_session):
        fake_session.add("POST", f"{PREFIX}/dual_comp/positions/ADA_USDT/leverage", [])
        result = await make_client(fake_session, dual_mode=True).set_leverage("ADAUSDT", 10)
        assert result is LeverageResult.SET


class TestOrders:
    @pytest.mark.asyncio
    async def test_short_market_order(self, fake_session):
        fake_session.add(
            "POST", f"{PREFIX}/orders",
            {"id": 42, "size": -17, "left": -2, "fill_price": "33.29", "text": "t-entry-1"},
        )
        result = await make_client(fake_session).open_market_order("ADAUSDT", Direction.SHORT, Decimal("17"))

        body = fake_session.last_body()
        assert body["size"] == -17
        assert body["tif"] == "ioc"
        assert body["price"] == "0"
        assert body["text"].startswith("t-")
        assert result.order_id == "42"
        assert result.filled_quantity == Decimal("15")
        assert result.fill_price == Decimal("33.29")

    @pytest.mark.asyncio
    async def test_fractional_size_is_string(self, fake_session):
        fake_session.add("POST", f"{PREFIX}/orders", {"id": 1, "size": "1.5", "left": "0"})
        client = make_client(fake_session, size_decimal=True)
        await client.open_market_order("ADAUSDT", Direction.LONG, Decimal("1.5"), fractional=True)

        assert fake_session.last_body()["size"] == "1.5"

    @pytest.mark.asyncio
    async def test_whole_contract_rejects_fraction(self, fake_session):
        with pytest.raises(InvalidInputError):
            await make_client(fake_session).open_market_order("ADAUSDT", Direction.LONG, Decimal("1.5"))
        assert fake_session.calls == []

    @pytest.mark.asyncio
    async def test_take_profit_closes_long(self, fake_session):
        fake_session.add("POST", f"{PREFIX}/orders", {"id": 7})
        result = await make_client(fake_session).set_take_profit(
            "ADAUSDT", Direction.LONG, Decimal("0.3535"), Decimal("10"), text="t-tp-1"
        )

        body = fake_session.last_body()
        assert body["size"] == -10
        assert body["reduce_only"] is True
        assert body["tif"] == "gtc"
        assert body["price"] == "0.3535"
        assert result.order_id == "7"
        assert result.text == "t-tp-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("direction, size, rule", [
        (Direction.LONG, -10, TRIGGER_RULE_LTE),
        (Direction.SHORT, 10, TRIGGER_RULE_GTE),
    ])
    async def test_stop_loss_trigger(self, fake_session, direction, size, rule):
        fake_session.add("POST", f"{PREFIX}/price_orders", {"id": 99})
        result = await make_client(fake_session).set_stop_loss(
            "ADAUSDT", direction, Decimal("0.35"), Decimal("10")
        )

        body = fake_session.last_body()
        assert body["initial"]["size"] == size
        assert body["initial"]["reduce_only"] is True
        assert body["trigger"]["rule"] == rule
        assert body["trigger"]["price_type"] == 1
        assert body["trigger"]["price"] == "0.35"
        assert result.order_id == "99"


class TestPositionsAndHistory:
    @pytest.mark.asyncio
    async def test_zero_size_positions_filtered(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/positions", [
            {"contract": "ADA_USDT", "size": 10, "entry_price": "0.35", "mark_price": "0.36",
             "unrealised_pnl": "0.1", "leverage": "20", "mode": "single"},
            {"contract": "TAO_USDT", "size": 0},
            {"contract": "UNI_USDT", "size": -4, "entry_price": "7.1"},
        ])
        positions = await make_client(fake_session).get_open_positions()

        assert [p.symbol for p in positions] == ["ADAUSDT", "UNIUSDT"]
        assert positions[0].direction is Direction.LONG
        assert positions[1].direction is Direction.SHORT
        assert positions[1].size == Decimal("4")

    @pytest.mark.asyncio
    async def test_positions_for_one_symbol(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/positions", [
            {"contract": "ADA_USDT", "size": 10},
            {"contract": "UNI_USDT", "size": -4},
        ])
        positions = await make_client(fake_session).get_open_positions("UNIUSDT")
        assert [p.contract for p in positions] == ["UNI_USDT"]

    @pytest.mark.asyncio
    async def test_trade_history(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/my_trades", [
            {"id": 5, "contract": "ADA_USDT", "order_id": "42", "size": -3, "price": "0.35",
             "role": "taker", "create_time": 1700000000.5, "text": "t-entry-1"},
        ])
        trades = await make_client(fake_session).get_trade_history("ADAUSDT", limit=10)

        assert fake_session.last["query"] == "contract=ADA_USDT&limit=10"
        assert trades[0].symbol == "ADAUSDT"
        assert trades[0].size == Decimal("3")
        assert trades[0].role == "taker"


class TestFailures:
    @pytest.mark.asyncio
    async def test_connection_error(self, fake_session):
        fake_session.fail("GET", f"{PREFIX}/accounts", aiohttp.ClientConnectionError("reset"))
        with pytest.raises(NetworkError):
            await make_client(fake_session).get_balance()

    @pytest.mark.asyncio
    async def test_timeout(self, fake_session):
        fake_session.fail("GET", f"{PREFIX}/accounts", asyncio.TimeoutError())
        with pytest.raises(NetworkError):
            await make_client(fake_session).get_balance()

    @pytest.mark.asyncio
    async def test_server_error_keeps_label(self, fake_session):
        fake_session.add("POST", f"{PREFIX}/orders", {"label": "INSUFFICIENT_AVAILABLE", "message": "no margin"}, 400)
        with pytest.raises(ExchangeRejectionError) as exc:
            await make_client(fake_session).open_market_order("ADAUSDT", Direction.LONG, Decimal("1"))
        assert exc.value.label == "INSUFFICIENT_AVAILABLE"
        assert exc.value.kind == "exchange_rejection"

    @pytest.mark.asyncio
    async def test_empty_success_body_is_rejected(self, fake_session):
        fake_session.add("POST", f"{PREFIX}/orders", "", 201)
        with pytest.raises(ExchangeRejectionError) as exc:
            await make_client(fake_session).set_take_profit(
                "ADAUSDT", Direction.LONG, Decimal("0.36"), Decimal("3")
            )
        assert exc.value.status == 201

    @pytest.mark.asyncio
    async def test_non_json_success_body_is_rejected(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/accounts", "<html>maintenance</html>")
        with pytest.raises(ExchangeRejectionError, match="non-JSON"):
            await make_client(fake_session).get_balance()

    @pytest.mark.asyncio
    async def test_non_json_error_body_keeps_text(self, fake_session):
        fake_session.add("GET", f"{PREFIX}/accounts", "Bad Gateway", 502)
        with pytest.raises(ExchangeRejectionError) as exc:
            await make_client(fake_session).get_balance()
        assert exc.value.status == 502
        assert "Bad Gateway" in exc.value.message

    @pytest.mark.asyncio
    async def test_not_started(self):
        client = GateIOClient("k", "s")
        with pytest.raises(RuntimeError):
            await client.get_balance()

    def test_missing_keys(self):
        with pytest.raises(ValueError):
            GateIOClient("", "secret")
