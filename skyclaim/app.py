"""Long-running runtime: the cycle timer, live config reload and digests.

The runtime owns exactly one mutable reference, the current ``Graph``
(config + scheduler + workers + notifier). A reload builds a complete new
graph and swaps the reference; a cycle already in flight keeps the graph
it captured when it started.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeAlias

from loguru import logger

from skyclaim.config import Config, NotificationConfig, load_config
from skyclaim.core.exceptions import ConfigurationError
from skyclaim.display import print_stats
from skyclaim.notify import Notifier
from skyclaim.scheduler import ProvisionedSet, Scheduler, wait_for_shutdown
from skyclaim.stats import Stats
from skyclaim.types import AccountSpec, AlertSink, ComputeApi
from skyclaim.worker import AccountWorker, ApiFactory

NotifierFactory: TypeAlias = Callable[[NotificationConfig], AlertSink]

RELOAD_POLL_SECONDS = 5.0

_log = logger.bind(account="SYSTEM")


def oci_api_factory(spec: AccountSpec) -> ComputeApi:
    from skyclaim.providers.oci import OCIComputeApi

    return OCIComputeApi.for_account(spec)


@dataclass(frozen=True, slots=True)
class Graph:
    config: Config
    scheduler: Scheduler
    alerts: AlertSink


class Runtime:
    """Drives cycles on a timer until the shutdown event is set."""

    def __init__(
        self,
        config: Config,
        path: Path | None = None,
        *,
        stats: Stats | None = None,
        api_factory: ApiFactory = oci_api_factory,
        notifier_factory: NotifierFactory = Notifier,
        poll_interval: float = RELOAD_POLL_SECONDS,
    ) -> None:
        self.path = path
        self.stats = stats or Stats()
        self.provisioned = ProvisionedSet()
        self._api_factory = api_factory
        self._notifier_factory = notifier_factory
        self._poll_interval = poll_interval
        self._mtime = self._stat_mtime()
        self._graph = self.build_graph(config)

    @property
    def graph(self) -> Graph:
        return self._graph

    def build_graph(self, config: Config) -> Graph:
        alerts = self._notifier_factory(config.notifications)
        workers = [
            AccountWorker(
                spec,
                self.stats,
                api_factory=self._api_factory,
                alerts=alerts,
                timeouts=config.timeouts,
            )
            for spec in config.enabled_accounts()
        ]
        scheduler = Scheduler(
            workers,
            self.stats,
            self.provisioned,
            account_delay=config.scheduler.account_delay_seconds,
        )
        return Graph(config=config, scheduler=scheduler, alerts=alerts)

    # ─── Reload ──────────────────────────────────────────────────────

    def apply(self, config: Config) -> None:
        old = self._graph
        self._graph = self.build_graph(config)
        _log.success("Configuration applied successfully!")

        old_interval = old.config.scheduler.cycle_interval_seconds
        new_interval = config.scheduler.cycle_interval_seconds
        if new_interval != old_interval:
            _log.info("Updating schedule: {old:g}s -> {new:g}s", old=old_interval, new=new_interval)
        config.log_config()

    def reload(self) -> bool:
        """Reload from ``path``. A config that fails validation is ignored."""
        if self.path is None:
            return False
        try:
            config, _ = load_config(self.path)
        except ConfigurationError as e:
            _log.error("Reload failed, keeping current configuration: {err}", err=e)
            return False
        self.apply(config)
        return True

    def _stat_mtime(self) -> float | None:
        if self.path is None:
            return None
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def config_changed(self) -> bool:
        mtime = self._stat_mtime()
        if mtime is None or mtime == self._mtime:
            return False
        self._mtime = mtime
        return True

    async def _watch_config(self, shutdown: asyncio.Event) -> None:
        while not await wait_for_shutdown(shutdown, self._poll_interval):
            if self.config_changed():
                _log.info("Config change detected. Reloading...")
                self.reload()

    # ─── Digest ──────────────────────────────────────────────────────

    async def send_digest(self) -> None:
        try:
            await self._graph.alerts.send_digest(self.stats.snapshot())
        except Exception as e:
            _log.error("Failed to send digest: {err}", err=e)

    async def _digest_loop(self, shutdown: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        while not await wait_for_shutdown(shutdown, self._poll_interval):
            interval = self._graph.config.notifications.digest_interval
            if interval is None:
                last = loop.time()
                continue
            if loop.time() - last >= interval.total_seconds():
                last = loop.time()
                _log.info("Sending digest...")
                await self.send_digest()

    # ─── Cycles ──────────────────────────────────────────────────────

    async def run_once(self, shutdown: asyncio.Event) -> None:
        """Run one cycle on the current graph; shutdown cancels it mid-flight."""
        graph = self._graph
        cycle = asyncio.create_task(graph.scheduler.run_cycle(shutdown))
        stop = asyncio.create_task(shutdown.wait())
        try:
            await asyncio.wait({cycle, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()

        if not cycle.done():
            cycle.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cycle
            return

        cycle.result()
        print_stats(
            self.stats.snapshot(),
            provisioned=len(self.provisioned),
            accounts=len(graph.scheduler.workers),
        )

    async def run(self, shutdown: asyncio.Event) -> None:
        """Run cycles until ``shutdown`` is set: first one immediately."""
        background = [
            asyncio.create_task(self._watch_config(shutdown)),
            asyncio.create_task(self._digest_loop(shutdown)),
        ]
        try:
            while not shutdown.is_set():
                await self.run_once(shutdown)
                interval = self._graph.config.scheduler.cycle_interval_seconds
                _log.info("Next cycle in {secs:g}s", secs=interval)
                if await wait_for_shutdown(shutdown, interval):
                    break
        finally:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)

        _log.info("Shutdown signal received. Exiting gracefully...")
