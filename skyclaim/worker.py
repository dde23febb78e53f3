"""Per-account launch/verify state machine.

An ``AccountWorker`` owns one ``AccountSpec`` and the compute API client
bound to that account's credentials. Each ``provision()`` call walks::

    CHECKING_EXISTING -> (exists: DONE)
                      -> RESOLVING_ZONE -> LAUNCHING -> (error: classified)
                                                     -> VERIFYING -> DONE

Launch failures are classified so that capacity exhaustion and rate
limiting, the steady state this tool exists to wait out, are reported as
retryable without surfacing an error, while configuration and auth faults
are returned loudly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from enum import StrEnum
from typing import TypeAlias

from loguru import logger

from skyclaim.config import Timeouts
from skyclaim.core.exceptions import ComputeApiError, ProvisioningError, VerificationError
from skyclaim.display import celebrate
from skyclaim.stats import Stats
from skyclaim.types import (
    ACTIVE_STATES,
    AUTO_ZONE,
    AccountSpec,
    AlertSink,
    ComputeApi,
    Instance,
    LaunchRequest,
    ProvisionResult,
    SuccessAlert,
    VerifiedInstance,
)
from skyclaim.verify import verify_instance

ApiFactory: TypeAlias = Callable[[AccountSpec], ComputeApi]


class ProvisionState(StrEnum):
    IDLE = "idle"
    CHECKING_EXISTING = "checking-existing"
    RESOLVING_ZONE = "resolving-zone"
    LAUNCHING = "launching"
    VERIFYING = "verifying"
    DONE = "done"


# =============================================================================
# Error classification
# =============================================================================


class LaunchErrorKind(StrEnum):
    CAPACITY = "capacity"
    RATE_LIMITED = "rate-limited"
    FATAL = "fatal"
    TRANSPORT = "transport"

    @property
    def retryable(self) -> bool:
        return self in (LaunchErrorKind.CAPACITY, LaunchErrorKind.RATE_LIMITED)


def classify_launch_error(exc: BaseException) -> LaunchErrorKind:
    """Map a launch failure onto the retry taxonomy.

    Capacity wins over rate limiting: a 429 whose message mentions a limit
    is counted as a capacity hit.
    """
    if not isinstance(exc, ComputeApiError):
        return LaunchErrorKind.TRANSPORT

    message = exc.message.lower()
    if exc.status == 500 or "capacity" in message or "limit" in message:
        return LaunchErrorKind.CAPACITY
    if exc.status == 429:
        return LaunchErrorKind.RATE_LIMITED
    return LaunchErrorKind.FATAL


# =============================================================================
# Worker
# =============================================================================


class AccountWorker:
    """Launches and verifies the instance described by one ``AccountSpec``."""

    def __init__(
        self,
        spec: AccountSpec,
        stats: Stats,
        *,
        api_factory: ApiFactory,
        alerts: AlertSink | None = None,
        timeouts: Timeouts | None = None,
    ) -> None:
        self.spec = spec
        self.state = ProvisionState.IDLE
        self._stats = stats
        self._api_factory = api_factory
        self._alerts = alerts
        self._timeouts = timeouts or Timeouts()
        self._api: ComputeApi | None = None
        self._log = logger.bind(account=spec.alias)

    @property
    def alias(self) -> str:
        return self.spec.alias

    def _client(self) -> ComputeApi:
        # Cached for the worker's lifetime; a failed creation is retried next call.
        if self._api is None:
            self._api = self._api_factory(self.spec)
        return self._api

    async def provision(self) -> ProvisionResult:
        """Run one launch attempt, followed by verification on success."""
        try:
            api = self._client()
        except Exception as e:
            self._log.error("Failed to initialize API clients: {err}", err=e)
            return ProvisionResult(success=False, retryable=False, error=e)

        try:
            async with asyncio.timeout(self._timeouts.attempt):
                outcome = await self._attempt(api)
        except TimeoutError:
            if self.state is ProvisionState.LAUNCHING:
                self._stats.inc_error()
            error = ProvisioningError(
                f"attempt timed out after {self._timeouts.attempt:.0f}s while {self.state}"
            )
            self.state = ProvisionState.IDLE
            self._log.warning("{err}", err=error)
            return ProvisionResult(success=False, retryable=False, error=error)

        if isinstance(outcome, ProvisionResult):
            return outcome
        return await self._on_launched(api, outcome)

    # -------------------------------------------------------------------------
    # Attempt phases
    # -------------------------------------------------------------------------

    async def _attempt(self, api: ComputeApi) -> ProvisionResult | str:
        """Everything bounded by the attempt timeout. Returns the new instance id on launch."""
        self.state = ProvisionState.CHECKING_EXISTING
        self._log.info("Checking for existing instances...")
        try:
            existing = await self._find_existing(api)
        except Exception as e:
            self.state = ProvisionState.IDLE
            return ProvisionResult(success=False, retryable=False, error=e)

        if existing is not None:
            self._log.info(
                "Instance already exists ({id}, {state}). Stopping.",
                id=existing.id,
                state=existing.lifecycle_state,
            )
            self.state = ProvisionState.DONE
            return ProvisionResult(success=True, retryable=False, instance_id=existing.id)

        self.state = ProvisionState.RESOLVING_ZONE
        try:
            zone = await self._resolve_zone(api)
        except Exception as e:
            self.state = ProvisionState.IDLE
            return ProvisionResult(success=False, retryable=False, error=e)

        self.state = ProvisionState.LAUNCHING
        self._log.info("Launching instance '{name}' in {zone}...", name=self.spec.display_name, zone=zone)
        try:
            instance = await api.launch_instance(self.launch_request(zone))
        except Exception as e:
            self.state = ProvisionState.IDLE
            return self._handle_launch_error(e)

        self._log.success("Instance launched: {id}", id=instance.id)
        return instance.id

    async def _find_existing(self, api: ComputeApi) -> Instance | None:
        instances = await api.list_instances(self.spec.compartment_id, self.spec.display_name)
        for instance in instances:
            if instance.lifecycle_state in ACTIVE_STATES:
                return instance
        return None

    async def _resolve_zone(self, api: ComputeApi) -> str:
        if self.spec.availability_zone != AUTO_ZONE:
            return self.spec.availability_zone

        try:
            zones = await api.list_zones(self.spec.region)
        except Exception as e:
            raise ProvisioningError(f"failed to list availability zones: {e}") from e
        if not zones:
            raise ProvisioningError(f"no availability zones found in {self.spec.region}")

        zone = zones[0].name
        self._log.info("Auto-selected zone: {zone}", zone=zone)
        return zone

    def launch_request(self, zone: str) -> LaunchRequest:
        spec = self.spec
        return LaunchRequest(
            compartment_id=spec.compartment_id,
            availability_zone=zone,
            display_name=spec.display_name,
            shape=spec.shape.name,
            ocpus=spec.shape.ocpus,
            memory_gb=spec.shape.memory_gb,
            image_id=spec.shape.image_id,
            boot_volume_gb=spec.shape.boot_volume_gb,
            subnet_id=spec.subnet_id,
            hostname_label=spec.hostname_label,
            ssh_public_key=spec.ssh_public_key,
            assign_public_ip=True,
        )

    def _handle_launch_error(self, exc: Exception) -> ProvisionResult:
        kind = classify_launch_error(exc)

        if isinstance(exc, ComputeApiError):
            self._log.warning("API error {status}: {msg}", status=exc.status, msg=exc.message)

        match kind:
            case LaunchErrorKind.CAPACITY:
                self._log.warning("Capacity/limit error. Will retry.")
                self._stats.inc_capacity()
                return ProvisionResult(success=False, retryable=True)
            case LaunchErrorKind.RATE_LIMITED:
                self._log.warning("Rate limited. Will retry.")
                self._stats.inc_error()
                return ProvisionResult(success=False, retryable=True)
            case _:
                self._log.error("Launch failed ({kind}): {err}", kind=kind, err=exc)
                self._stats.inc_error()
                return ProvisionResult(success=False, retryable=False, error=exc)

    # -------------------------------------------------------------------------
    # After launch
    # -------------------------------------------------------------------------

    async def _on_launched(self, api: ComputeApi, instance_id: str) -> ProvisionResult:
        self.state = ProvisionState.VERIFYING
        verified: VerifiedInstance | None = None
        progress: list[VerifiedInstance] = []
        try:
            async with asyncio.timeout(self._timeouts.verify):
                verified = await verify_instance(
                    api,
                    self.spec,
                    instance_id,
                    poll_interval=self._timeouts.verify_poll,
                    ceiling=self._timeouts.verify_ceiling,
                    on_progress=progress.append,
                )
        except VerificationError as e:
            verified = e.partial
            self._log.warning("Verification warning: {err}", err=e)
        except TimeoutError:
            message = f"Verification gave up after {self._timeouts.verify:g}s"
            self._log.warning("Verification warning: {msg}", msg=message)
            if progress:
                last = progress[-1]
                verified = replace(last, discrepancies=(*last.discrepancies, message))

        self._stats.inc_success()
        self.state = ProvisionState.DONE

        celebrate(self.spec.alias, instance_id, verified)
        await self._send_alert(instance_id, verified)

        return ProvisionResult(
            success=True,
            retryable=False,
            instance_id=instance_id,
            verified=verified,
        )

    async def _send_alert(self, instance_id: str, verified: VerifiedInstance | None) -> None:
        if self._alerts is None:
            return
        alert = SuccessAlert(
            alias=self.spec.alias,
            instance_id=instance_id,
            region=self.spec.region,
            verified=verified,
        )
        try:
            await self._alerts.send_success(alert)
        except Exception as e:
            self._log.error("Notification failed: {err}", err=e)
