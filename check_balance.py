#!/usr/bin/env python3
"""Print the available USDT futures balance."""
import logging

from config import load_settings
from errors import TradingBotError
from gateio_client import GateIOClient
from utils import run, setup_logging

logger = logging.getLogger(__name__)


async def check_balance() -> int:
    logger.info("Checking Gate.io balance...")
    try:
        settings = load_settings()
        async with GateIOClient.from_settings(settings) as client:
            await client.connect()
            balance = await client.get_balance()
    except TradingBotError as e:
        logger.error(f"Error: {e}")
        return 1

    print("\n" + "=" * 50)
    print(f"💰 Gate.io USDT Balance: {balance:.2f} USDT")
    print("=" * 50 + "\n")
    return 0


if __name__ == "__main__":
    setup_logging()
    raise SystemExit(run(check_balance()))
