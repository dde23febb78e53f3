from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

import pytest

from skyclaim.config import Timeouts
from skyclaim.stats import Stats, StatsSnapshot
from skyclaim.types import (
    PROVISIONING,
    RUNNING,
    AccountSpec,
    Instance,
    LaunchRequest,
    NetworkAttachment,
    NetworkInterface,
    Shape,
    SuccessAlert,
    Zone,
)

NEW_INSTANCE_ID = "ocid1.instance.oc1..new"


def make_spec(alias: str = "acct-1", **overrides: Any) -> AccountSpec:
    spec = AccountSpec(
        alias=alias,
        tenancy_id="ocid1.tenancy.oc1..tenancy",
        user_id="ocid1.user.oc1..user",
        fingerprint="aa:bb:cc:dd:ee:ff:00:11:22:33:44:55:66:77:88:99",
        key_file="/tmp/oci_api_key.pem",
        region="eu-frankfurt-1",
        compartment_id="ocid1.compartment.oc1..comp",
        shape=Shape(
            name="VM.Standard.A1.Flex",
            ocpus=4.0,
            memory_gb=24.0,
            boot_volume_gb=100,
            image_id="ocid1.image.oc1..img",
        ),
        subnet_id="ocid1.subnet.oc1..subnet",
        ssh_public_key="ssh-ed25519 AAAA test@host",
        display_name=f"{alias}-vm",
        hostname_label="vm",
    )
    return replace(spec, **overrides)


class FakeComputeApi:
    """In-memory ``ComputeApi``.

    ``states`` is the sequence of lifecycle states ``get_instance`` reports;
    the last one repeats. An exception in the sequence is raised instead.
    With ``persist_launches`` a launched instance shows up in later
    ``list_instances`` calls, the way a real tenancy would list it.
    """

    def __init__(
        self,
        *,
        existing: Iterable[Instance] = (),
        zones: Iterable[Zone] | Exception = (Zone("Zone-A"), Zone("Zone-B")),
        launch_error: Exception | None = None,
        launch_blocks: bool = False,
        persist_launches: bool = False,
        states: Iterable[str | Exception] = (RUNNING,),
        ocpus: float | None = 4.0,
        memory_gb: float | None = 24.0,
        attachments: Iterable[NetworkAttachment] | Exception | None = None,
        interfaces: Mapping[str, NetworkInterface] | None = None,
    ) -> None:
        self.existing = list(existing)
        self.zones = zones if isinstance(zones, Exception) else list(zones)
        self.launch_error = launch_error
        self.launch_blocks = launch_blocks
        self.persist_launches = persist_launches
        self.states = list(states)
        self.ocpus = ocpus
        self.memory_gb = memory_gb
        self.attachments = (
            [NetworkAttachment("att-1", "ATTACHED", "vnic-1")] if attachments is None else attachments
        )
        self.interfaces = (
            {"vnic-1": NetworkInterface("203.0.113.10", "10.0.0.10")} if interfaces is None else interfaces
        )
        self.calls: list[str] = []
        self.launched: list[LaunchRequest] = []

    async def list_instances(self, compartment_id: str, display_name: str) -> list[Instance]:
        self.calls.append("list_instances")
        return [i for i in self.existing if i.display_name in ("", display_name)]

    async def list_zones(self, region: str) -> list[Zone]:
        self.calls.append("list_zones")
        if isinstance(self.zones, Exception):
            raise self.zones
        return list(self.zones)

    async def launch_instance(self, request: LaunchRequest) -> Instance:
        self.calls.append("launch_instance")
        self.launched.append(request)
        if self.launch_blocks:
            await asyncio.Event().wait()
        if self.launch_error is not None:
            raise self.launch_error
        instance = Instance(NEW_INSTANCE_ID, PROVISIONING, display_name=request.display_name)
        if self.persist_launches:
            self.existing.append(instance)
        return instance

    async def get_instance(self, instance_id: str) -> Instance:
        self.calls.append("get_instance")
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, Exception):
            raise state
        return Instance(
            instance_id,
            state,
            display_name="acct-1-vm",
            shape="VM.Standard.A1.Flex",
            ocpus=self.ocpus,
            memory_gb=self.memory_gb,
        )

    async def list_network_attachments(self, compartment_id: str, instance_id: str) -> list[NetworkAttachment]:
        self.calls.append("list_network_attachments")
        if isinstance(self.attachments, Exception):
            raise self.attachments
        return list(self.attachments)

    async def get_network_interface(self, interface_id: str) -> NetworkInterface:
        self.calls.append("get_network_interface")
        try:
            return self.interfaces[interface_id]
        except KeyError:
            raise RuntimeError(f"vnic {interface_id} not found") from None


class RecordingAlerts:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.successes: list[SuccessAlert] = []
        self.digests: list[StatsSnapshot] = []

    async def send_success(self, alert: SuccessAlert) -> None:
        self.successes.append(alert)
        if self.fail:
            raise RuntimeError("webhook unreachable")

    async def send_digest(self, snapshot: StatsSnapshot) -> None:
        self.digests.append(snapshot)
        if self.fail:
            raise RuntimeError("webhook unreachable")


@pytest.fixture
def stats() -> Stats:
    return Stats()


@pytest.fixture
def fast_timeouts() -> Timeouts:
    return Timeouts(attempt=5, verify=5, verify_poll=0, verify_ceiling=2)


@pytest.fixture
def spec() -> AccountSpec:
    return make_spec()


@pytest.fixture
def alerts() -> RecordingAlerts:
    return RecordingAlerts()
