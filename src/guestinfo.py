"""Guest-info properties injected into newly provisioned VMs.

Property values are templates resolved at execution time against a set of
known variables and the build environment:

- PIPELINE_URL, CI_SERVER_URL: root URL of the pipeline server
- variables contributed by node properties
- NODE_NAME: name of the new VM
- cluster, datastore: placement of the new VM
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, TextIO

from common import ConfigError
from environment import ROOT_URL_ALIASES, NodePropertyProvider, PipelineHost
from expander import expand

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuestInfoProperty:
    """A guestinfo name and its raw value template."""
    name: str
    value: str = ''

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Guest-info property requires a name")

    @classmethod
    def from_dict(cls, data: Any) -> 'GuestInfoProperty':
        if not isinstance(data, dict):
            raise ConfigError(f"Guest-info property must be a mapping, got: {data!r}")
        unknown = set(data) - {'name', 'value'}
        if unknown:
            raise ConfigError(f"Unknown guest-info property fields: {', '.join(sorted(unknown))}")
        value = data.get('value')
        return cls(name=str(data.get('name') or ''), value='' if value is None else str(value))


def _add_env_var(env: dict, name: str, value: Optional[object]) -> None:
    env[name] = '' if value is None else str(value)


def _add_node_properties(
    env: dict,
    providers: Iterable[NodePropertyProvider],
    log: Optional[TextIO]
) -> None:
    for provider in providers or []:
        provider.build_env_vars(env, log)


def known_variables(
    target_name: str,
    cluster: Optional[str],
    datastore: Optional[str],
    host: PipelineHost,
    log: Optional[TextIO] = None
) -> dict[str, str]:
    """Variables every guest-info value may reference."""
    variables: dict[str, str] = {}
    # Keep the help text for guest-info properties in sync with this list.
    root_url = host.root_url
    if root_url is not None:
        for alias in ROOT_URL_ALIASES:
            _add_env_var(variables, alias, root_url)
    _add_node_properties(variables, host.node_properties(), log)
    _add_env_var(variables, 'NODE_NAME', target_name)
    _add_env_var(variables, 'cluster', cluster)
    _add_env_var(variables, 'datastore', datastore)
    return variables


def resolve_guest_info_properties(
    target_name: str,
    cluster: Optional[str],
    datastore: Optional[str],
    properties: Iterable[GuestInfoProperty],
    env: Mapping[str, str],
    host: PipelineHost,
    log: Optional[TextIO] = None
) -> dict[str, str]:
    """Resolve declared properties into name -> value.

    The build environment wins over known variables on conflict. A name
    declared twice keeps the last value. Returns an empty dict when
    nothing is declared.
    """
    properties = list(properties or [])
    if not properties:
        return {}

    variables = known_variables(target_name, cluster, datastore, host, log)
    variables.update(env)

    resolved: dict[str, str] = {}
    for prop in properties:
        resolved[prop.name] = expand(prop.value, variables)
    logger.debug(f"Resolved guest-info properties for {target_name}: {', '.join(resolved)}")
    return resolved
