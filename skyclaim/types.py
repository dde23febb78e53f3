"""Core types for skyclaim.

Immutable value objects exchanged between the scheduler, the account
workers and the compute API, plus the capability protocols the core
depends on (compute API and alert delivery).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from skyclaim.stats import StatsSnapshot

__all__ = [
    "AUTO_ZONE",
    "ACTIVE_STATES",
    "TERMINAL_STATES",
    "Shape",
    "AccountSpec",
    "Instance",
    "Zone",
    "NetworkAttachment",
    "NetworkInterface",
    "LaunchRequest",
    "VerifiedInstance",
    "ProvisionResult",
    "SuccessAlert",
    "ComputeApi",
    "AlertSink",
]

LifecycleState: TypeAlias = str

AUTO_ZONE = "auto"

RUNNING: LifecycleState = "RUNNING"
PROVISIONING: LifecycleState = "PROVISIONING"
STARTING: LifecycleState = "STARTING"
TERMINATING: LifecycleState = "TERMINATING"
TERMINATED: LifecycleState = "TERMINATED"
ATTACHED: LifecycleState = "ATTACHED"

ACTIVE_STATES: frozenset[LifecycleState] = frozenset({RUNNING, PROVISIONING, STARTING})
TERMINAL_STATES: frozenset[LifecycleState] = frozenset({TERMINATING, TERMINATED})


# =============================================================================
# Account configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class Shape:
    """Requested instance profile.

    Args:
        name: Shape identifier (e.g. "VM.Standard.A1.Flex").
        ocpus: Requested OCPU count.
        memory_gb: Requested memory in GB.
        boot_volume_gb: Boot volume size in GB.
        image_id: Boot image reference.
    """

    name: str
    ocpus: float
    memory_gb: float
    boot_volume_gb: int
    image_id: str


@dataclass(frozen=True, slots=True)
class AccountSpec:
    """Everything needed to provision one instance in one account.

    Built once per configuration load. A reload replaces the whole set of
    specs, it never mutates one in place.

    ``alias`` is the user-facing account name and the in-process
    idempotency key; ``display_name`` is the instance name used as the
    durable idempotency key against the live API.
    """

    alias: str
    tenancy_id: str
    user_id: str
    fingerprint: str
    key_file: str
    region: str
    compartment_id: str
    shape: Shape
    subnet_id: str
    ssh_public_key: str
    display_name: str
    hostname_label: str = ""
    availability_zone: str = AUTO_ZONE
    enabled: bool = True


# =============================================================================
# Compute API values
# =============================================================================


@dataclass(frozen=True, slots=True)
class Instance:
    id: str
    lifecycle_state: LifecycleState
    display_name: str = ""
    shape: str = ""
    ocpus: float | None = None
    memory_gb: float | None = None


@dataclass(frozen=True, slots=True)
class Zone:
    name: str


@dataclass(frozen=True, slots=True)
class NetworkAttachment:
    id: str
    lifecycle_state: LifecycleState
    interface_id: str | None = None


@dataclass(frozen=True, slots=True)
class NetworkInterface:
    public_ip: str | None = None
    private_ip: str | None = None


@dataclass(frozen=True, slots=True)
class LaunchRequest:
    """A single launch call, fully resolved (no "auto" zone)."""

    compartment_id: str
    availability_zone: str
    display_name: str
    shape: str
    ocpus: float
    memory_gb: float
    image_id: str
    boot_volume_gb: int
    subnet_id: str
    hostname_label: str
    ssh_public_key: str
    assign_public_ip: bool = True

    @property
    def metadata(self) -> dict[str, str]:
        return {"ssh_authorized_keys": self.ssh_public_key}


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True, slots=True)
class VerifiedInstance:
    """Outcome of post-launch verification.

    ``discrepancies`` lists non-fatal problems (spec mismatch, failed
    lookups). ``verified`` only says the instance reached RUNNING.
    """

    instance_id: str
    region: str
    requested_ocpus: float
    requested_memory_gb: float
    display_name: str = ""
    lifecycle_state: LifecycleState = ""
    shape: str = ""
    ocpus: float | None = None
    memory_gb: float | None = None
    public_ip: str | None = None
    private_ip: str | None = None
    discrepancies: tuple[str, ...] = ()
    specs_mismatch: bool = False
    verified: bool = False


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    """Result of one ``AccountWorker.provision()`` call.

    Unpacks like ``(success, retryable, error)``.
    """

    success: bool
    retryable: bool
    error: Exception | None = None
    instance_id: str | None = None
    verified: VerifiedInstance | None = None

    def __iter__(self):
        return iter((self.success, self.retryable, self.error))


@dataclass(frozen=True, slots=True)
class SuccessAlert:
    alias: str
    instance_id: str
    region: str
    verified: VerifiedInstance | None = None


# =============================================================================
# Capabilities
# =============================================================================


@runtime_checkable
class ComputeApi(Protocol):
    """Compute API bound to one account's credentials.

    Structured service failures are raised as ``ComputeApiError``; any other
    exception is treated as a transport failure.
    """

    async def list_instances(self, compartment_id: str, display_name: str) -> Sequence[Instance]: ...

    async def list_zones(self, region: str) -> Sequence[Zone]: ...

    async def launch_instance(self, request: LaunchRequest) -> Instance: ...

    async def get_instance(self, instance_id: str) -> Instance: ...

    async def list_network_attachments(
        self, compartment_id: str, instance_id: str
    ) -> Sequence[NetworkAttachment]: ...

    async def get_network_interface(self, interface_id: str) -> NetworkInterface: ...


@runtime_checkable
class AlertSink(Protocol):
    """Outbound alerts. Delivery is fire-and-forget from the core's view."""

    async def send_success(self, alert: SuccessAlert) -> None: ...

    async def send_digest(self, snapshot: StatsSnapshot) -> None: ...
