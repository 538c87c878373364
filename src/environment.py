"""Build environment handling.

The pipeline host supplies the live build environment, build parameters,
node-property providers and a log stream. From these an execution context
is built fresh for every attempt, since upstream steps may change build
parameters between attempts.

Values produced by a successful step are handed back to the host through
EnvironmentPublisher.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Iterable, Mapping, Optional, Protocol, TextIO, runtime_checkable

from common import EnvironmentResolutionError, PublishError

logger = logging.getLogger(__name__)

ROOT_URL_ALIASES = ('PIPELINE_URL', 'CI_SERVER_URL')


@runtime_checkable
class NodePropertyProvider(Protocol):
    """Contributes environment variables defined on the build node."""

    def build_env_vars(self, env: dict, log: Optional[TextIO]) -> None:
        ...


@runtime_checkable
class PipelineHost(Protocol):
    """The pipeline that invokes a build step.

    Attributes:
        root_url: Base URL of the pipeline server, if known
        log: Append-only build log stream
    """
    root_url: Optional[str]
    log: Optional[TextIO]

    def environment(self) -> Mapping[str, str]:
        """Live build environment. May raise if the host is unavailable."""
        ...

    def build_variables(self) -> Mapping[str, str]:
        """Build parameters; these override the environment."""
        ...

    def node_properties(self) -> Iterable[NodePropertyProvider]:
        ...

    def contribute_environment(self, values: Mapping[str, str]) -> None:
        """Add values to the environment seen by downstream steps."""
        ...


def build_execution_context(host: PipelineHost) -> dict[str, str]:
    """Merge node properties, the host's environment and build parameters.

    Later sources win: build parameters override the environment, which
    overrides node-property variables.
    """
    try:
        env: dict[str, str] = {}
        for provider in host.node_properties() or []:
            provider.build_env_vars(env, host.log)
        env.update(host.environment())
        env.update(host.build_variables())
    except Exception as e:
        raise EnvironmentResolutionError(f"Cannot read build environment: {e}") from e
    return env


class EnvironmentPublisher:
    """Exposes values produced by a successful step to downstream steps."""

    def __init__(self, host: PipelineHost):
        self.host = host
        self.data: dict[str, str] = {}

    def publish(self, key: str, value: str) -> None:
        try:
            self.host.contribute_environment({key: value})
        except Exception as e:
            raise PublishError(f"Cannot publish {key}: {e}") from e
        self.data[key] = value

    def build_env_vars(self, env: dict) -> None:
        """Add published values to env, leaving unrelated keys alone."""
        env.update(self.data)


class StaticNodeProperty:
    """Node property contributing a fixed set of variables."""

    def __init__(self, values: Mapping[str, str]):
        self.values = dict(values)

    def build_env_vars(self, env: dict, log: Optional[TextIO]) -> None:
        env.update(self.values)


class ProcessHost:
    """Pipeline host backed by the current process.

    Used when steps run from a shell-based CI job: the environment comes
    from os.environ, build parameters from the command line, and published
    values are appended to an env file as KEY=VALUE lines.
    """

    def __init__(
        self,
        build_variables: Optional[Mapping[str, str]] = None,
        node_properties: Optional[Iterable[NodePropertyProvider]] = None,
        env_file: Optional[Path] = None,
        log: Optional[TextIO] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._build_variables = dict(build_variables or {})
        self._node_properties = list(node_properties or [])
        self.env_file = env_file
        self.log = log if log is not None else sys.stdout
        self._environ = environ if environ is not None else os.environ
        self.published: dict[str, str] = {}

    @property
    def root_url(self) -> Optional[str]:
        for name in ROOT_URL_ALIASES:
            if url := self._environ.get(name):
                return url
        return None

    def environment(self) -> dict[str, str]:
        env = dict(self._environ)
        env.update(self.published)
        return env

    def build_variables(self) -> dict[str, str]:
        return dict(self._build_variables)

    def node_properties(self) -> list[NodePropertyProvider]:
        return list(self._node_properties)

    def contribute_environment(self, values: Mapping[str, str]) -> None:
        if self.env_file:
            logger.debug(f"Appending {', '.join(values)} to {self.env_file}")
            with open(self.env_file, 'a', encoding='utf-8') as f:
                for key, value in values.items():
                    f.write(f"{key}={value}\n")
        self.published.update(values)
