"""Command line interface: skyclaim [--config PATH] [--once] [--log-level LEVEL]"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from dataclasses import replace
from pathlib import Path

from loguru import logger

from skyclaim import __version__
from skyclaim.app import Runtime
from skyclaim.config import Config, load_config
from skyclaim.core.exceptions import ConfigurationError
from skyclaim.display import console
from skyclaim.logging import setup_logging, teardown_logging

BANNER = f"skyclaim {__version__} - multi-account capacity provisioner"


async def _serve(config: Config, path: Path, *, once: bool) -> None:
    shutdown = asyncio.Event()

    def on_signal() -> None:
        logger.warning("Shutdown signal received")
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, on_signal)

    runtime = Runtime(config, path)
    if once:
        await runtime.run_once(shutdown)
    else:
        await runtime.run(shutdown)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="skyclaim",
        description="Keep retrying instance launches across cloud accounts until capacity frees up.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to skyclaim.toml")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured console log level",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    console.print(f"[bold cyan]{BANNER}[/bold cyan]")

    try:
        config, path = load_config(args.config)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(1)

    log_config = config.logging
    if args.log_level:
        log_config = replace(log_config, level=args.log_level)

    logger.remove()
    handler_ids = setup_logging(log_config)
    try:
        logger.info("Loaded configuration from {path}", path=str(path))
        config.log_config()
        if not config.enabled_accounts():
            logger.warning("No enabled accounts configured. Nothing to do.")
            return
        asyncio.run(_serve(config, path, once=args.once))
    finally:
        teardown_logging(handler_ids)
