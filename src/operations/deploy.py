"""Deploy a VM from a template."""

import time
from dataclasses import dataclass
from typing import ClassVar, Mapping

from client import ProvisionOptions, VSphereClient
from common import ConfigError, OperationResult, vs_log
from expander import expand
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

# Every installation has this resource pool, even when the client UI hides it
DEFAULT_RESOURCE_POOL = 'Resources'


@register_operation
@dataclass(frozen=True)
class Deploy:
    """Deploy a new VM named ``clone`` from ``template``."""
    kind: ClassVar[str] = 'deploy'
    display_name: ClassVar[str] = 'Deploy VM from template'
    expanded_fields: ClassVar[tuple[str, ...]] = (
        'template', 'clone', 'cluster', 'datastore', 'folder', 'customization_spec',
    )

    template: str = ''
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
        require(self.template, "the template name")
        require(self.clone, "the clone name")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got: {self.timeout}")
        object.__setattr__(self, 'resource_pool', self.resource_pool or '')
        object.__setattr__(self, 'guest_info_properties', tuple(self.guest_info_properties or ()))

    def describe(self) -> str:
        return self.display_name

    def expand_parameters(self, env: Mapping[str, str]) -> 'Deploy':
        """Expand templated fields; a blank resource pool becomes the default."""
        if self.resource_pool:
            resource_pool = expand(self.resource_pool, env)
        else:
            resource_pool = DEFAULT_RESOURCE_POOL
        return expand_fields(self, env, self.expanded_fields, resource_pool=resource_pool)

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
        """Deploy the template, inject guest-info and wait for the IP."""
        start = time.time()
        op = self.expand_parameters(step.env)

        with remote_call(f"Failed to deploy \"{op.template}\" to \"{op.clone}\""):
            vs_log(step.log, f"Deploying template \"{op.template}\" to \"{op.clone}\". Please wait ...")
            client.deploy_vm(op.template, op.clone, op.provision_options())
            return complete_provisioning(client, op, step, 'deployed', start)
