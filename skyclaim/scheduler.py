"""Cycle scheduler: one sequential pass over every enabled account."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterator, Sequence

from loguru import logger

from skyclaim.stats import Stats
from skyclaim.worker import AccountWorker

_log = logger.bind(account="SCHEDULER")


class ProvisionedSet:
    """Aliases that successfully provisioned during this process lifetime.

    Entries are never removed automatically; ``discard`` exists for explicit
    operator intervention only.
    """

    __slots__ = ("_aliases",)

    def __init__(self) -> None:
        self._aliases: set[str] = set()

    def add(self, alias: str) -> None:
        self._aliases.add(alias)

    def discard(self, alias: str) -> None:
        self._aliases.discard(alias)

    def __contains__(self, alias: object) -> bool:
        return alias in self._aliases

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._aliases))

    def __len__(self) -> int:
        return len(self._aliases)


async def wait_for_shutdown(shutdown: asyncio.Event, delay: float) -> bool:
    """Sleep ``delay`` seconds. Returns True if ``shutdown`` fired first."""
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(shutdown.wait(), timeout=delay)
    return shutdown.is_set()


class Scheduler:
    """Runs one provisioning pass per ``run_cycle`` call.

    Accounts are attempted strictly one at a time, in configuration order,
    with ``account_delay`` seconds between them to avoid correlated bursts
    of API calls.
    """

    def __init__(
        self,
        workers: Sequence[AccountWorker],
        stats: Stats,
        provisioned: ProvisionedSet,
        *,
        account_delay: float = 0.0,
    ) -> None:
        self.workers = tuple(workers)
        self.stats = stats
        self.provisioned = provisioned
        self.account_delay = max(0.0, account_delay)

    async def run_cycle(self, shutdown: asyncio.Event) -> None:
        """Attempt every account once. Never raises for per-account failures."""
        self.stats.inc_cycle()
        last = len(self.workers) - 1

        for i, worker in enumerate(self.workers):
            if shutdown.is_set():
                return

            if worker.alias in self.provisioned:
                logger.bind(account=worker.alias).info("Already provisioned - skipping")
                continue

            if not await self._provision(worker, shutdown):
                return

            if i < last and self.account_delay > 0:
                _log.info("Waiting {secs:.0f}s before next account...", secs=self.account_delay)
                if await wait_for_shutdown(shutdown, self.account_delay):
                    return

    async def _provision(self, worker: AccountWorker, shutdown: asyncio.Event) -> bool:
        """Run one account attempt. Returns False if shutdown interrupted it."""
        log = logger.bind(account=worker.alias)
        attempt = asyncio.create_task(worker.provision())
        stop = asyncio.create_task(shutdown.wait())
        try:
            await asyncio.wait({attempt, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            attempt.cancel()
            raise
        finally:
            stop.cancel()

        if not attempt.done():
            log.warning("Shutdown requested, abandoning attempt")
            attempt.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await attempt
            return False

        try:
            result = attempt.result()
        except Exception as e:
            log.exception("Cycle failed: {err}", err=e)
            return True

        if result.error is not None:
            log.error("Cycle failed: {err}", err=result.error)
        if result.success:
            self.provisioned.add(worker.alias)
        return True
