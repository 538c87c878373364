"""Contract for the virtualization client used by build steps.

The client owns the connection to the vSphere endpoint. Every call blocks
until the remote operation finishes and may raise on transport or remote
errors. None of the calls are assumed to be idempotent.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ProvisionOptions:
    """Placement and power options for clone and deploy calls."""
    linked_clone: bool = False
    resource_pool: str = ''
    cluster: str = ''
    datastore: str = ''
    folder: str = ''
    power_on: bool = False
    customization_spec: str = ''


@runtime_checkable
class VSphereClient(Protocol):
    """Operations the build steps need from the virtualization API."""

    def find_vm(self, name: str) -> Optional[Any]:
        """Return a handle for the named VM or template, or None."""
        ...

    def clone_vm(self, source: str, target: str, options: ProvisionOptions) -> None:
        ...

    def deploy_vm(self, template: str, target: str, options: ProvisionOptions) -> None:
        ...

    def set_annotation(self, vm_name: str, text: str) -> None:
        ...

    def inject_guest_properties(self, vm_name: str, properties: dict[str, str]) -> None:
        """Write guestinfo.* variables into the VM's configuration."""
        ...

    def get_ip(self, vm: Any, timeout: int) -> Optional[str]:
        """Return the guest's IP address, waiting at most timeout seconds."""
        ...

    def get_snapshot(self, vm: Any) -> Optional[Any]:
        """Return the VM's current snapshot, or None."""
        ...

    def find_customization_spec(self, name: str) -> Optional[Any]:
        ...

    def is_template(self, vm: Any) -> bool:
        ...
