"""Oracle Cloud Infrastructure implementation of the compute API.

Uses the OCI Python SDK. Clients are created once per account from the
account's API signing key; every blocking SDK call is dispatched via
:func:`asyncio.to_thread` so the provisioning loop stays async.
"""

from __future__ import annotations

import asyncio
import stat
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

import oci
from loguru import logger
from oci.exceptions import InvalidConfig, ServiceError

from skyclaim.core.exceptions import ComputeApiError, ConfigurationError
from skyclaim.types import (
    AccountSpec,
    Instance,
    LaunchRequest,
    NetworkAttachment,
    NetworkInterface,
    Zone,
)

T = TypeVar("T")

MAX_KEY_SIZE = 16 * 1024


# =============================================================================
# Credentials
# =============================================================================


def load_sdk_config(spec: AccountSpec) -> dict[str, Any]:
    """Build and validate the SDK config dict for one account.

    Raises:
        ConfigurationError: Key file missing, oversized, or config invalid.
    """
    path = Path(spec.key_file)
    try:
        info = path.stat()
    except OSError as e:
        raise ConfigurationError(f"key file not found: {path}") from e

    if info.st_size > MAX_KEY_SIZE:
        raise ConfigurationError(f"key file too large ({info.st_size} bytes), max is {MAX_KEY_SIZE}")

    if info.st_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.bind(account=spec.alias).warning(
            "Key file '{path}' has permissive permissions ({mode:o}). It should be 400 or 600.",
            path=str(path),
            mode=stat.S_IMODE(info.st_mode),
        )

    config = {
        "user": spec.user_id,
        "tenancy": spec.tenancy_id,
        "fingerprint": spec.fingerprint,
        "key_file": str(path),
        "region": spec.region,
    }
    try:
        oci.config.validate_config(config)
    except InvalidConfig as e:
        raise ConfigurationError(f"invalid OCI credentials for '{spec.alias}': {e}") from e
    return config


# =============================================================================
# Model conversion
# =============================================================================


def _instance(model: Any) -> Instance:
    shape_config = getattr(model, "shape_config", None)
    return Instance(
        id=model.id,
        lifecycle_state=model.lifecycle_state,
        display_name=model.display_name or "",
        shape=model.shape or "",
        ocpus=shape_config.ocpus if shape_config else None,
        memory_gb=shape_config.memory_in_gbs if shape_config else None,
    )


def _launch_details(request: LaunchRequest) -> oci.core.models.LaunchInstanceDetails:
    models = oci.core.models
    return models.LaunchInstanceDetails(
        availability_domain=request.availability_zone,
        compartment_id=request.compartment_id,
        display_name=request.display_name,
        shape=request.shape,
        shape_config=models.LaunchInstanceShapeConfigDetails(
            ocpus=request.ocpus,
            memory_in_gbs=request.memory_gb,
        ),
        source_details=models.InstanceSourceViaImageDetails(
            image_id=request.image_id,
            boot_volume_size_in_gbs=request.boot_volume_gb,
        ),
        create_vnic_details=models.CreateVnicDetails(
            subnet_id=request.subnet_id,
            assign_public_ip=request.assign_public_ip,
            hostname_label=request.hostname_label or None,
        ),
        metadata=request.metadata,
    )


# =============================================================================
# Client
# =============================================================================


class OCIComputeApi:
    """``ComputeApi`` backed by the OCI compute, network and identity clients."""

    def __init__(
        self,
        config: dict[str, Any],
        *,
        compute: Any = None,
        network: Any = None,
        identity: Any = None,
    ) -> None:
        self._config = config
        self._compute = compute or oci.core.ComputeClient(config)
        self._network = network or oci.core.VirtualNetworkClient(config)
        self._identity = identity or oci.identity.IdentityClient(config)

    @classmethod
    def for_account(cls, spec: AccountSpec) -> OCIComputeApi:
        return cls(load_sdk_config(spec))

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ServiceError as e:
            raise ComputeApiError(e.status, e.message or str(e), e.code or "") from e

    async def _list_all(self, fn: Callable[..., Any], **kwargs: Any) -> list[Any]:
        response = await self._call(oci.pagination.list_call_get_all_results, fn, **kwargs)
        return list(response.data)

    async def list_instances(self, compartment_id: str, display_name: str) -> Sequence[Instance]:
        items = await self._list_all(
            self._compute.list_instances,
            compartment_id=compartment_id,
            display_name=display_name,
        )
        return [_instance(item) for item in items]

    async def list_zones(self, region: str) -> Sequence[Zone]:
        if region != self._config["region"]:
            logger.bind(account="OCI").debug(
                "Listing zones of client region {own} (asked for {region})",
                own=self._config["region"],
                region=region,
            )
        response = await self._call(
            self._identity.list_availability_domains,
            compartment_id=self._config["tenancy"],
        )
        return [Zone(name=ad.name) for ad in response.data]

    async def launch_instance(self, request: LaunchRequest) -> Instance:
        response = await self._call(self._compute.launch_instance, _launch_details(request))
        return _instance(response.data)

    async def get_instance(self, instance_id: str) -> Instance:
        response = await self._call(self._compute.get_instance, instance_id)
        return _instance(response.data)

    async def list_network_attachments(
        self, compartment_id: str, instance_id: str
    ) -> Sequence[NetworkAttachment]:
        items = await self._list_all(
            self._compute.list_vnic_attachments,
            compartment_id=compartment_id,
            instance_id=instance_id,
        )
        return [
            NetworkAttachment(id=a.id, lifecycle_state=a.lifecycle_state, interface_id=a.vnic_id)
            for a in items
        ]

    async def get_network_interface(self, interface_id: str) -> NetworkInterface:
        response = await self._call(self._network.get_vnic, interface_id)
        vnic = response.data
        return NetworkInterface(public_ip=vnic.public_ip, private_ip=vnic.private_ip)
