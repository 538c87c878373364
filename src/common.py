"""Common utilities and types for vSphere build steps."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, TextIO

logger = logging.getLogger(__name__)

LOG_PREFIX = '[vSphere]'
IP_POLL_INTERVAL = 5


class VSphereError(Exception):
    """Base class for errors raised by vSphere build steps."""


class ConfigError(VSphereError):
    """Step configuration is malformed or missing a required field."""


class RemoteOperationError(VSphereError):
    """A call against the virtualization client failed.

    Treated as transient: the retry orchestrator will try again.
    """


class EnvironmentResolutionError(RemoteOperationError):
    """The execution context could not be computed from the pipeline host."""


class StepAbortedError(VSphereError):
    """The build step must be aborted; carries the underlying message."""


class PublishError(VSphereError):
    """Values produced by a successful step could not be handed to the host.

    Not retried: the VM operation itself already succeeded.
    """


@dataclass
class OperationResult:
    """Result returned by a VM operation."""
    success: bool
    message: str = ''
    duration: float = 0.0
    ip: Optional[str] = None
    context_updates: dict = field(default_factory=dict)


def vs_log(stream: Optional[TextIO], message: str) -> None:
    """Write a line to the build log and mirror it to the module logger."""
    logger.info(message)
    if stream is not None:
        stream.write(f"{LOG_PREFIX} {message}\n")
        stream.flush()


def wait_for_ip(
    client: Any,
    vm: Any,
    timeout: int = 60,
    interval: int = IP_POLL_INTERVAL
) -> Optional[str]:
    """Poll the client for the VM's IP address.

    Returns the address, or None once the timeout has elapsed. A missing
    address is an outcome, not an error; client failures propagate.
    """
    logger.debug(f"Waiting up to {timeout}s for an IP address...")
    deadline = time.time() + timeout
    while True:
        ip = client.get_ip(vm, 0)
        if ip:
            logger.debug(f"Got IP address {ip}")
            return ip
        remaining = deadline - time.time()
        if remaining <= 0:
            break
        logger.debug(f"No IP address yet, retrying in {interval}s...")
        time.sleep(min(interval, remaining))
    logger.warning(f"No IP address after {timeout}s")
    return None
