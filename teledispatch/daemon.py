"""Process entry point: run the bot in polling or webhook mode."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import uvicorn

from teledispatch.builtin import register_builtin
from teledispatch.config import AppConfig, load_config
from teledispatch.engine import Engine
from teledispatch.logging_config import setup_logging
from teledispatch.webhook import create_app

logger = logging.getLogger(__name__)


async def run_polling(engine: Engine, shutdown_event: asyncio.Event | None = None) -> None:
    """Start the engine, wait for a shutdown signal, stop it."""
    shutdown_event = shutdown_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    try:
        await engine.start()
        await shutdown_event.wait()
        logger.info("Received shutdown signal...")
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        try:
            await engine.stop()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error during engine stop: %s", e)


def run(config: AppConfig) -> None:
    engine = Engine(config)
    register_builtin(engine)
    if config.telegram.use_webhook:
        logger.info("Serving webhook on port %d", config.app_port)
        uvicorn.run(create_app(engine), host="0.0.0.0", port=config.app_port, log_config=None)
    else:
        asyncio.run(run_polling(engine))


def main() -> None:
    """Main entry point."""
    config = load_config()
    setup_logging(level=config.logging.level, dir_path=config.logging.dir_path)
    try:
        run(config)
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("Unexpected error: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
