"""Clone a VM from an existing VM."""

import time
from dataclasses import dataclass
from typing import ClassVar, Mapping

from client import ProvisionOptions, VSphereClient
from common import ConfigError, OperationResult, vs_log
from guestinfo import GuestInfoProperty
from operations.base import (
    TIMEOUT_DEFAULT,
    StepContext,
    complete_provisioning,
    expand_fields,
    register_operation,
    remote_call,
    require,
)


@register_operation
@dataclass(frozen=True)
class Clone:
    """Clone ``source_name`` into a new VM named ``clone``.

    Linked clones share storage with the source's current snapshot. When
    ``power_on`` is set, the new VM's IP is looked up for ``timeout``
    seconds and published as VSPHERE_IP.
    """
    kind: ClassVar[str] = 'clone'
    display_name: ClassVar[str] = 'Clone VM'
    expanded_fields: ClassVar[tuple[str, ...]] = (
        'source_name', 'clone', 'resource_pool', 'cluster',
        'datastore', 'folder', 'customization_spec',
    )

    source_name: str = ''
    clone: str = ''
    linked_clone: bool = False
    resource_pool: str = ''
    cluster: str = ''
    datastore: str = ''
    folder: str = ''
    customization_spec: str = ''
    power_on: bool = False
    timeout: int = TIMEOUT_DEFAULT
    guest_info_properties: tuple[GuestInfoProperty, ...] = ()

    def __post_init__(self):
        require(self.source_name, "the source name")
        require(self.clone, "the clone name")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got: {self.timeout}")
        object.__setattr__(self, 'guest_info_properties', tuple(self.guest_info_properties or ()))

    def describe(self) -> str:
        return self.display_name

    def expand_parameters(self, env: Mapping[str, str]) -> 'Clone':
        return expand_fields(self, env, self.expanded_fields)

    def provision_options(self) -> ProvisionOptions:
        return ProvisionOptions(
            linked_clone=self.linked_clone,
            resource_pool=self.resource_pool,
            cluster=self.cluster,
            datastore=self.datastore,
            folder=self.folder,
            power_on=self.power_on,
            customization_spec=self.customization_spec,
        )

    def execute(self, client: VSphereClient, step: StepContext) -> OperationResult:
        """Clone the VM, inject guest-info and wait for its IP."""
        start = time.time()
        op = self.expand_parameters(step.env)

        with remote_call(f"Failed to clone \"{op.source_name}\" to \"{op.clone}\""):
            vs_log(step.log, f"Cloning VM \"{op.source_name}\" to \"{op.clone}\". Please wait ...")
            client.clone_vm(op.source_name, op.clone, op.provision_options())
            return complete_provisioning(client, op, step, 'cloned', start)
