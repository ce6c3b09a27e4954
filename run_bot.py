#!/usr/bin/env python3
"""Robust bot runner with file logging and process management."""
import asyncio
import logging
import signal
import sys
from pathlib import Path

from errors import ConfigError
from utils import setup_logging

# Setup logging to file AND console
LOG_FILE = Path(__file__).parent / "bot.log"
setup_logging(logging.INFO, LOG_FILE)

logger = logging.getLogger(__name__)

PORT = 9010


async def main():
    """Run the service until it stops or a signal arrives."""
    logger.info("🚀 Starting Gate.io Futures Execution Bot")
    logger.info(f"📄 Logging to: {LOG_FILE.absolute()}")

    # Import here to ensure logging is setup first
    from config import load_settings
    from main import app
    import uvicorn

    # fail fast before the server binds
    load_settings()

    config = uvicorn.Config(app, host="0.0.0.0", port=PORT, log_config=None)
    server = uvicorn.Server(config)

    def request_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        server.should_exit = True

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)

    try:
        logger.info(f"🌐 Starting FastAPI server on port {PORT}...")
        await server.serve()
    except Exception as e:
        logger.exception(f"💥 Server crashed: {e}")
        return 1
    finally:
        logger.info("🛑 Bot shutdown complete")

    return 0


if __name__ == "__main__":
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except ConfigError as e:
        logger.error(f"❌ Configuration error: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("👋 Bot stopped by user")
        sys.exit(0)
