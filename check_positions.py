#!/usr/bin/env python3
"""Print open futures positions."""
import logging
from typing import List

from config import load_settings
from errors import TradingBotError
from gateio_client import GateIOClient
from models import Position
from utils import run, setup_logging

logger = logging.getLogger(__name__)


def format_positions(positions: List[Position]) -> str:
    lines = ["", "=" * 50]
    if not positions:
        lines.append("📊 No open positions on Gate.io")
    else:
        lines.append(f"📊 Open Positions on Gate.io: {len(positions)}")
        lines.append("")
        for index, pos in enumerate(positions, 1):
            pnl_sign = "+" if pos.unrealised_pnl >= 0 else "-"
            lines.extend([
                f"Position {index}:",
                f"  Symbol: {pos.symbol}",
                f"  Contract: {pos.contract}",
                f"  Side: {pos.direction.value}",
                f"  Size: {pos.size}",
                f"  Entry Price: ${pos.entry_price:.4f}",
                f"  Mark Price: ${pos.mark_price:.4f}",
                f"  Unrealised P&L: {pnl_sign}${abs(pos.unrealised_pnl):.2f}",
                f"  Leverage: {pos.leverage}x",
                f"  Mode: {pos.mode}",
                "",
            ])
    lines.append("=" * 50)
    lines.append("")
    return "\n".join(lines)


async def check_positions() -> int:
    logger.info("Checking open positions...")
    try:
        settings = load_settings()
        async with GateIOClient.from_settings(settings) as client:
            await client.connect()
            positions = await client.get_open_positions()
    except TradingBotError as e:
        logger.error(f"Error: {e}")
        return 1

    print(format_positions(positions))
    return 0


if __name__ == "__main__":
    setup_logging()
    raise SystemExit(run(check_positions()))
