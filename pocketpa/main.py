"""PocketPA — Main entry point."""

import asyncio
import logging
import os
import signal
from typing import Optional

from .ai.openai import OpenAIProvider
from .bot.app import PocketApp
from .config import PocketSettings, load_settings
from .transport.bridge import BridgeTransport

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("pocketpa")


def setup_logging(settings: PocketSettings, debug: bool = False):
    """Console + optional file logging, configured once per process."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]   # stderr (console)
    if settings.log_file:
        log_file = os.path.expanduser(settings.log_file)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    level = logging.DEBUG if debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=_log_format, handlers=handlers)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_app(settings: PocketSettings) -> PocketApp:
    transport = BridgeTransport(
        settings.bridge_url,
        token=settings.bridge_token,
        poll_interval=settings.bridge_poll_interval,
        request_timeout=settings.external_call_timeout,
    )
    ai = OpenAIProvider(
        api_key=settings.openai_api_key,
        chat_model=settings.chat_model,
        transcription_model=settings.transcription_model,
        base_url=settings.openai_base_url,
        system_prompt=settings.system_prompt,
    )
    return PocketApp(settings, transport, ai)


async def run(settings: Optional[PocketSettings] = None):
    """Main run loop."""
    settings = settings or load_settings()
    app = build_app(settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows
            pass

    try:
        await app.start()
        logger.info(f"{settings.bot_name} is running. Press Ctrl+C to stop.")
        await stop_event.wait()
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
    finally:
        await app.stop()


def main():
    """Entry point."""
    settings = load_settings()
    setup_logging(settings)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
