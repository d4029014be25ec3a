# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import argparse
import asyncio
import logging
import signal

# Always use relative imports (run via run.py or python -m stream_relay.main)
from .api.server import start_unified_server
from .config import Config
from .relay.registry import SessionRegistry


LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def setup_logging(config, override_level=None):
    """Route all relay loggers to stderr at the configured level.

    ``--log-level`` wins over ``log.level``; unknown names fall back to info.
    """
    name = (override_level or config.get("log.level", "info")).lower()
    level = LOG_LEVELS.get(name, logging.INFO)

    logging.basicConfig(
        level=level,
        format="[%(levelname)s] [%(name)s] %(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    # One access line per /health poll is noise unless debugging
    logging.getLogger("aiohttp.access").setLevel(max(level, logging.WARNING))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="stream-relay", description="WebSocket to RTMP stream relay")
    parser.add_argument("--host", default=None, help="Interface to bind (default: server.host / $HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: server.port / $PORT)")
    parser.add_argument("--config", default=None, help="YAML, TOML or JSON file merged over the defaults")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=sorted(LOG_LEVELS),
        type=str.lower,
        help="Log level, overrides log.level",
    )
    return parser.parse_args(argv)


def install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows: SIGINT still arrives as KeyboardInterrupt
            pass


def resolve_bind(args, config) -> tuple[str, int]:
    """Listening address: command line first, then configuration."""
    host = args.host if args.host is not None else config.get("server.host")
    port = args.port if args.port is not None else int(config.get("server.port"))
    return host, port


async def main(argv=None, stop_event: asyncio.Event | None = None):
    """Serve relay sessions until SIGINT/SIGTERM (or ``stop_event``), then close them all."""
    args = parse_args(argv)

    config = Config()
    config.load(args.config)
    setup_logging(config, override_level=args.log_level)
    log = logging.getLogger("main")

    host, port = resolve_bind(args, config)
    log.debug(f"effective config: {config.get()}")

    if stop_event is None:
        stop_event = asyncio.Event()
        install_stop_handlers(stop_event)

    registry = SessionRegistry()
    runner = await start_unified_server(host, port, registry)

    try:
        await stop_event.wait()
        log.info("stop signal received")
    finally:
        # Sessions get their "ended" notice while the listener is still up
        closed = await registry.shutdown("server shutdown")
        log.info(f"closed {closed} session(s), stopping listener")
        await runner.cleanup()


def run():
    """Console script entry point."""
    try:
        import uvloop  # type: ignore[import-not-found]
    except ImportError:
        uvloop = None

    try:
        if uvloop is not None:
            uvloop.run(main())
        else:
            asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger("main").info("interrupted")


if __name__ == "__main__":
    run()
