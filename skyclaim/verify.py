"""Post-launch verification.

Polls the compute API until a freshly launched instance reports RUNNING,
then cross-checks the requested shape against what was actually allocated
and resolves the instance's network addresses.

Verification is lenient: problems are reported as discrepancies on the
returned ``VerifiedInstance`` and never invalidate an otherwise successful
launch. Only two conditions raise:

- the instance reaches TERMINATING/TERMINATED (``InstanceTerminatedError``,
  raised on the poll that observed it);
- the polling ceiling elapses without RUNNING (``VerificationError``).

Both carry the last observed fields in ``partial`` so callers can log what
is known.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_delay, wait_fixed

from skyclaim.core.exceptions import InstanceTerminatedError, VerificationError
from skyclaim.types import (
    ATTACHED,
    RUNNING,
    TERMINAL_STATES,
    AccountSpec,
    ComputeApi,
    Instance,
    VerifiedInstance,
)

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_CEILING = 300.0


class _InstancePendingError(Exception):
    """Instance not yet running - retry."""


@dataclass(slots=True)
class _Observation:
    instance: Instance | None = None
    errors: list[str] = field(default_factory=list)


def _result(spec: AccountSpec, instance_id: str, obs: _Observation, **overrides: Any) -> VerifiedInstance:
    inst = obs.instance
    return VerifiedInstance(
        instance_id=instance_id,
        region=spec.region,
        requested_ocpus=spec.shape.ocpus,
        requested_memory_gb=spec.shape.memory_gb,
        display_name=inst.display_name if inst else "",
        lifecycle_state=inst.lifecycle_state if inst else "",
        shape=inst.shape if inst else "",
        ocpus=inst.ocpus if inst else None,
        memory_gb=inst.memory_gb if inst else None,
        discrepancies=tuple(obs.errors),
        **overrides,
    )


def _matches(actual: float | None, requested: float) -> bool:
    return actual is not None and math.isclose(actual, requested)


def _fmt(value: float | None) -> str:
    return "unknown" if value is None else f"{value:.1f}"


async def verify_instance(
    api: ComputeApi,
    spec: AccountSpec,
    instance_id: str,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    ceiling: float = DEFAULT_CEILING,
    on_progress: Callable[[VerifiedInstance], None] | None = None,
) -> VerifiedInstance:
    """Wait for ``instance_id`` to run and report how it compares to ``spec``.

    Args:
        api: Compute API bound to the account that launched the instance.
        spec: The account spec the instance was launched from.
        instance_id: Id returned by the launch call.
        poll_interval: Seconds between ``get_instance`` polls.
        ceiling: Maximum seconds to wait for RUNNING.
        on_progress: Called with the report so far after every poll and once
            the shape has been compared, so a caller that gives up early
            still has the last observed state.

    Returns:
        The verification report.

    Raises:
        InstanceTerminatedError: The instance was terminated while polling.
        VerificationError: RUNNING was not observed within ``ceiling``.
    """
    log = logger.bind(account=spec.alias)
    obs = _Observation()

    log.info("Verifying instance launch ({id})...", id=instance_id)

    def report(**overrides: Any) -> None:
        if on_progress is not None:
            on_progress(_result(spec, instance_id, obs, **overrides))

    async def poll() -> None:
        try:
            instance = await api.get_instance(instance_id)
        except Exception as e:
            obs.errors.append(f"GetInstance failed: {e}")
            report()
            raise _InstancePendingError(str(e)) from e

        obs.instance = instance
        report()
        state = instance.lifecycle_state

        if state == RUNNING:
            return

        if state in TERMINAL_STATES:
            obs.errors.append("Instance was terminated")
            raise InstanceTerminatedError(
                instance_id,
                reason=state,
                partial=_result(spec, instance_id, obs),
            )

        log.info("Instance state: {state} (waiting for RUNNING...)", state=state)
        raise _InstancePendingError(f"Instance {instance_id} status: {state}")

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_delay(ceiling),
            wait=wait_fixed(poll_interval),
            retry=retry_if_exception_type(_InstancePendingError),
            reraise=True,
        ):
            with attempt:
                await poll()
    except _InstancePendingError as e:
        obs.errors.append("Timeout waiting for RUNNING state")
        raise VerificationError(
            f"verification timeout: instance {instance_id} not running after {ceiling:.0f}s",
            partial=_result(spec, instance_id, obs),
        ) from e

    instance = obs.instance
    if instance is None:
        raise VerificationError(
            f"verification failed: no state observed for instance {instance_id}",
            partial=_result(spec, instance_id, obs),
        )
    log.info("Instance is RUNNING")

    mismatch = False
    if not _matches(instance.ocpus, spec.shape.ocpus):
        mismatch = True
        obs.errors.append(
            f"OCPUs mismatch: requested {spec.shape.ocpus:.1f}, got {_fmt(instance.ocpus)}"
        )
    if not _matches(instance.memory_gb, spec.shape.memory_gb):
        mismatch = True
        obs.errors.append(
            f"Memory mismatch: requested {spec.shape.memory_gb:.1f}GB, got {_fmt(instance.memory_gb)}GB"
        )

    if mismatch:
        log.warning("Specs mismatch detected!")
    else:
        log.info(
            "Specs verified: {ocpus:.0f} OCPUs, {memory:.0f}GB RAM",
            ocpus=spec.shape.ocpus,
            memory=spec.shape.memory_gb,
        )

    report(specs_mismatch=mismatch, verified=True)

    public_ip, private_ip = await _resolve_addresses(api, spec, instance_id, obs)

    if public_ip:
        log.info("Public IP: {ip}", ip=public_ip)
    else:
        log.warning("No public IP assigned (may take a moment)")

    return _result(
        spec,
        instance_id,
        obs,
        public_ip=public_ip,
        private_ip=private_ip,
        specs_mismatch=mismatch,
        verified=True,
    )


async def _resolve_addresses(
    api: ComputeApi,
    spec: AccountSpec,
    instance_id: str,
    obs: _Observation,
) -> tuple[str | None, str | None]:
    """Addresses of the first attached interface that can be looked up."""
    try:
        attachments = await api.list_network_attachments(spec.compartment_id, instance_id)
    except Exception as e:
        obs.errors.append(f"ListNetworkAttachments failed: {e}")
        logger.bind(account=spec.alias).warning(
            "Could not retrieve network attachments: {err}", err=e
        )
        return None, None

    for attachment in attachments:
        if attachment.interface_id is None or attachment.lifecycle_state != ATTACHED:
            continue
        try:
            interface = await api.get_network_interface(attachment.interface_id)
        except Exception as e:
            obs.errors.append(f"GetNetworkInterface failed: {e}")
            continue
        return interface.public_ip, interface.private_ip

    return None, None
