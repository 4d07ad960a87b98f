"""Main entry point for chatrouter.

Initializes logging in two phases (defaults then config-driven),
builds the transport, bot service and router, starts routing, and
polls for updates with graceful shutdown on SIGTERM/SIGINT.

Key functions:
    main: Async entry point.
    run: Synchronous wrapper that calls asyncio.run(main()).
"""

import asyncio
import signal
import sys

import structlog

from . import __version__
from .exceptions import ConfigurationError
from .logging_config import setup_logging


async def main():
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("chatrouter")

    logger.info("chatrouter_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .bot_service import BotService
    from .config import get_config
    from .router import Router
    from .transport import TelegramTransport

    config = get_config()
    config.validate()

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    if not config.telegram_bot_token:
        raise ConfigurationError(
            "Telegram bot token is not configured",
            setting_name="telegram.bot_token",
        )

    transport = TelegramTransport(
        token=config.telegram_bot_token,
        api_url=config.telegram_api_url,
        poll_timeout=config.poll_timeout,
        marker=config.command_marker,
    )
    bot_service = BotService(transport, config=config)
    router = Router(bot_service, config=config)
    router.start_routing()

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    try:
        poll_task = asyncio.create_task(bot_service.start_polling())
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        # Polling ends on its own only when the token is rejected
        await asyncio.wait({poll_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

        for task in (poll_task, shutdown_task):
            task.cancel()
        await asyncio.gather(poll_task, shutdown_task, return_exceptions=True)

    except Exception as e:
        logger.error("bot_error", error=str(e))
        raise
    finally:
        await router.stop()
        await bot_service.stop()
        logger.info("chatrouter_stopped")


def run():
    """Synchronous entry point for the ``chatrouter`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except ConfigurationError as e:
        print(f"chatrouter: {e.message}", file=sys.stderr)
        sys.exit(78)


if __name__ == "__main__":
    run()
