"""Execution bot service – FastAPI for health & signals, APScheduler for the daily reset."""
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
import uvicorn

from config import load_settings
from gateio_client import GateIOClient
from notifier import TelegramNotifier
from order_flow import OrderOrchestrator, TradeGate, process_signal
from utils import parse_signal

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

_LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Gate.io Futures Execution Bot")

scheduler = AsyncIOScheduler(timezone="UTC")


class SignalIn(BaseModel):
    signal: Optional[str] = None
    symbol: Optional[str] = None
    direction: Optional[str] = None

    def resolve(self):
        if self.signal:
            return parse_signal(self.signal)
        if self.symbol and self.direction:
            return self.symbol.upper(), self.direction
        raise ValueError("Provide either 'signal' (e.g. ADAUSDT_LONG) or 'symbol' + 'direction'")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/signal")
async def signal(payload: SignalIn, request: Request):
    state = request.app.state
    try:
        symbol, direction = payload.resolve()
        outcome = await process_signal(symbol, direction, state.client, state.gate, state.orchestrator)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return outcome.to_dict()


@app.on_event("startup")
async def startup_event():
    settings = load_settings()
    client = GateIOClient.from_settings(settings)
    await client.start()
    notifier = TelegramNotifier.from_config(settings.telegram)
    if not notifier.enabled:
        _LOGGER.warning("Telegram not configured – alerts go to the log only")

    gate = TradeGate(settings.trading, settings.trading_hours)
    app.state.settings = settings
    app.state.client = client
    app.state.notifier = notifier
    app.state.gate = gate
    app.state.orchestrator = OrderOrchestrator(
        client,
        settings.risk,
        notifier=notifier,
        protective_attempts=settings.trading.protective_order_attempts,
        retry_delay=settings.trading.protective_retry_delay,
        dry_run=settings.trading.dry_run,
    )

    scheduler.add_job(gate.reset_daily, "cron", hour=0, minute=0, id="reset_daily_trades")
    scheduler.start()
    _LOGGER.info(
        "🚀 Ready – mode=%s leverage=%dx risk=%s%% symbols=%s dry_run=%s",
        settings.position_mode, settings.risk.leverage, settings.risk.percentage,
        ",".join(settings.trading.allowed_symbols), settings.trading.dry_run,
    )


@app.on_event("shutdown")
async def shutdown_event():
    scheduler.shutdown(wait=False)
    await app.state.client.close()
    await app.state.notifier.close()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=9000, reload=False)
