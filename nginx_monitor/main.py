"""Command line entry point for the NGINX Plus health/license monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys

import httpx
import structlog

from nginx_monitor.config import ConfigError, MonitorConfig, load_config
from nginx_monitor.nginx_client import NginxPlusFetcher
from nginx_monitor.poller import PollLoop
from nginx_monitor.sinks import FanoutSink, LogSink, Sink, TelegramConfig, TelegramSink


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # Telegram tokens are part of request URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_sink(config: MonitorConfig, client: httpx.AsyncClient) -> Sink:
    sinks: list[Sink] = [LogSink()]
    if config.telegram.enabled:
        sinks.append(
            TelegramSink(
                client,
                TelegramConfig(bot_token=str(config.telegram.bot_token), chat_id=str(config.telegram.chat_id)),
                target=config.target_address,
            )
        )
    else:
        logger.info("Telegram not configured; alerts go to the log only")
    return FanoutSink(sinks)


async def run_monitor(config: MonitorConfig, *, once: bool = False) -> int:
    async with httpx.AsyncClient() as client:
        fetcher = NginxPlusFetcher.from_config(config, client=client)
        poll = PollLoop(config, fetcher, build_sink(config, client))

        if once:
            await poll.run_once()
            return 1 if poll.tracker.findings else 0

        def request_stop() -> None:
            logger.info("Shutdown requested")
            poll.stop()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, request_stop)
            except (NotImplementedError, RuntimeError):
                pass
        await poll.run()
        return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="NGINX Plus upstream health and license monitor")
    parser.add_argument(
        "--config",
        default=os.getenv("NGINX_MONITOR_CONFIG", "config/monitor.yaml"),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Run one poll cycle and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    configure_logging(args.log_level or config.log_level)
    return asyncio.run(run_monitor(config, once=bool(args.once)))


if __name__ == "__main__":
    raise SystemExit(main())
