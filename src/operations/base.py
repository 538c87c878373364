"""Shared shape of VM lifecycle operations.

Each operation is a frozen dataclass holding its declarative parameters,
tagged with a ``kind`` and registered so step files can refer to it by
name. Operations never mutate themselves: expand_parameters() returns a
new instance with every templated field resolved.
"""

import dataclasses
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, ClassVar, Iterator, Mapping, Optional, Protocol, TextIO, runtime_checkable

from client import VSphereClient
from common import (
    ConfigError,
    OperationResult,
    RemoteOperationError,
    VSphereError,
    vs_log,
    wait_for_ip,
)
from environment import PipelineHost
from expander import expand
from guestinfo import GuestInfoProperty, resolve_guest_info_properties

logger = logging.getLogger(__name__)

IP_VARIABLE = 'VSPHERE_IP'
TIMEOUT_DEFAULT = 60


@dataclass
class StepContext:
    """Everything one attempt needs besides the client.

    Attributes:
        env: Execution context, built fresh for the attempt
        host: Pipeline host running the step
        log: Build log stream
    """
    env: dict
    host: PipelineHost
    log: Optional[TextIO] = None


@runtime_checkable
class VMOperation(Protocol):
    """Protocol for VM lifecycle operations.

    Class attributes:
        kind: Identifier used in step files (e.g., 'clone')
        display_name: Human-readable name
    """
    kind: ClassVar[str]
    display_name: ClassVar[str]

    def expand_parameters(self, env: Mapping[str, str]) -> 'VMOperation':
        ...

    def execute(self, client: VSphereClient, step: StepContext) -> OperationResult:
        ...

    def describe(self) -> str:
        ...


@contextmanager
def remote_call(description: str) -> Iterator[None]:
    """Wrap any client failure into a single RemoteOperationError."""
    try:
        yield
    except VSphereError:
        raise
    except Exception as e:
        raise RemoteOperationError(f"{description}: {e}") from e


def require(value: Optional[str], what: str) -> None:
    if not value:
        raise ConfigError(f"Please enter {what}")


def expand_fields(operation: Any, env: Mapping[str, str], names: tuple[str, ...], **overrides: Any) -> Any:
    """Return a copy of operation with the named string fields expanded."""
    values = {name: expand(getattr(operation, name), env) for name in names}
    values.update(overrides)
    return dataclasses.replace(operation, **values)


def complete_provisioning(
    client: VSphereClient,
    operation: Any,
    step: StepContext,
    verb: str,
    start: float
) -> OperationResult:
    """Guest-info injection and IP lookup after a clone or deploy.

    ``operation`` must already be expanded. Missing IP after power-on is
    reported as a warning; the operation still succeeds.
    """
    target = operation.clone
    if operation.guest_info_properties:
        resolved = resolve_guest_info_properties(
            target,
            operation.cluster,
            operation.datastore,
            operation.guest_info_properties,
            step.env,
            step.host,
            step.log,
        )
        if resolved:
            vs_log(step.log, f"Adding guest-info properties to \"{target}\": {', '.join(resolved)}")
            client.inject_guest_properties(target, resolved)

    vs_log(step.log, f"\"{target}\" successfully {verb}!")
    logger.debug(f"[{operation.display_name}] {target} {verb} in {time.time() - start:.1f}s")
    if not operation.power_on:
        return OperationResult(
            success=True,
            message=f"{target} {verb}",
            duration=time.time() - start
        )

    vs_log(step.log, f"Trying to get the IP-Address of \"{target}\" for the next {operation.timeout} seconds.")
    vm = client.find_vm(target)
    if vm is None:
        raise RemoteOperationError(f"VM \"{target}\" not found after it was {verb}")

    ip = wait_for_ip(client, vm, timeout=operation.timeout)
    if not ip:
        vs_log(step.log, f"Warning: timed out after waiting {operation.timeout} seconds to get IP for \"{target}\"")
        return OperationResult(
            success=True,
            message=f"{target} {verb}, no IP after {operation.timeout}s",
            duration=time.time() - start
        )

    vs_log(step.log, f"Successfully retrieved IP for \"{target}\" : {ip}")
    vs_log(step.log, f"Exposing {ip} as environment variable {IP_VARIABLE}")
    return OperationResult(
        success=True,
        message=f"{target} {verb}, IP: {ip}",
        duration=time.time() - start,
        ip=ip,
        context_updates={IP_VARIABLE: ip}
    )


# Registry of available operations
_operations: dict[str, type] = {}


def register_operation(cls: type) -> type:
    """Decorator to register an operation class."""
    _operations[cls.kind] = cls
    return cls


def get_operation_class(kind: str) -> type:
    """Get an operation class by kind."""
    if kind not in _operations:
        available = list_operations()
        raise ConfigError(f"Unknown operation kind: {kind}. Available: {available}")
    return _operations[kind]


def list_operations() -> list[str]:
    """List registered operation kinds."""
    return sorted(_operations.keys())


def _coerce(name: str, expected: Any, value: Any) -> Any:
    if expected is bool:
        if not isinstance(value, bool):
            raise ConfigError(f"Field '{name}' must be true or false, got: {value!r}")
        return value
    if expected is int:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"Field '{name}' must be an integer, got: {value!r}")
        return value
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        raise ConfigError(f"Field '{name}' must be a string, got: {value!r}")
    return str(value)


def operation_from_dict(data: Mapping[str, Any]) -> Any:
    """Build an operation from a step-file mapping with a 'kind' key."""
    if not isinstance(data, Mapping):
        raise ConfigError(f"Operation must be a mapping, got: {data!r}")
    data = dict(data)
    kind = data.pop('kind', None)
    if not kind:
        raise ConfigError("Operation requires a 'kind'")
    cls = get_operation_class(str(kind))

    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown = set(data) - set(fields)
    if unknown:
        raise ConfigError(f"Unknown fields for {kind}: {', '.join(sorted(unknown))}")

    kwargs: dict[str, Any] = {}
    for name, value in data.items():
        if name == 'guest_info_properties':
            if value is None:
                value = []
            if not isinstance(value, list):
                raise ConfigError("Field 'guest_info_properties' must be a list")
            kwargs[name] = tuple(GuestInfoProperty.from_dict(item) for item in value)
            continue
        coerced = _coerce(name, fields[name].type, value)
        if coerced is not None:
            kwargs[name] = coerced
    return cls(**kwargs)
