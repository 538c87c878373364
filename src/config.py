"""Step configuration management.

A step file is a YAML document describing one VM operation and how to
retry it:

    server: vcenter-01
    retries: 2
    retry_delay: 30
    node_properties:
      DOMAIN: lab.example
    operation:
      kind: clone
      source_name: tmpl1
      clone: vm-${BUILD_NUMBER}

Step files are found by path, or by name under the steps directory:
1. $VSPHERE_STEPS_DIR
2. ./steps/

VSPHERE_STEP_RETRIES and VSPHERE_STEP_RETRY_DELAY override the file's
retry settings when set.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from common import ConfigError
from operations import operation_from_dict

__all__ = ['ConfigError', 'StepConfig', 'get_steps_dir', 'list_steps', 'load_step_config']

_STEP_KEYS = {'server', 'retries', 'retry_delay', 'node_properties', 'operation'}


@dataclass
class StepConfig:
    """Configuration for one build step.

    Attributes:
        name: Step name (file stem)
        config_file: Source YAML file
        operation: The VM operation to run
        server: Name of the vSphere server, passed to the client factory
        retries: Guarded attempts before the final attempt
        retry_delay: Seconds to wait after a failed attempt
        node_properties: Variables contributed by the build node
    """
    name: str
    config_file: Path
    operation: Any
    server: str = ''
    retries: int = 0
    retry_delay: float = 0
    node_properties: dict = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.config_file, str):
            self.config_file = Path(self.config_file)
        if self.retries < 0:
            raise ConfigError(f"retries must not be negative, got: {self.retries}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must not be negative, got: {self.retry_delay}")


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _int_setting(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            value = int(str(value))
        except ValueError as e:
            raise ConfigError(f"{name} must be an integer, got: {value!r}") from e
    return value


def _float_setting(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got: {value!r}") from e


def get_steps_dir() -> Path:
    """Directory holding named step files."""
    if env_path := os.environ.get('VSPHERE_STEPS_DIR'):
        return Path(env_path)
    return Path.cwd() / 'steps'


def list_steps() -> list[str]:
    """List step names available in the steps directory."""
    steps_dir = get_steps_dir()
    if not steps_dir.is_dir():
        return []
    return sorted(f.stem for f in steps_dir.glob('*.yaml') if f.is_file())


def _find_step_file(step: str) -> Path:
    path = Path(step)
    if path.suffix in ('.yaml', '.yml') or path.exists():
        if not path.is_file():
            raise ConfigError(f"Step file not found: {path}")
        return path

    candidate = get_steps_dir() / f'{step}.yaml'
    if candidate.is_file():
        return candidate

    available = list_steps()
    raise ConfigError(
        f"Step '{step}' not found.\n"
        f"  - No step file: {candidate}\n\n"
        f"Available steps: {', '.join(available) if available else 'none configured'}"
    )


def load_step_config(step: str) -> StepConfig:
    """Load a step by file path or by name."""
    path = _find_step_file(step)
    data = _parse_yaml(path)

    unknown = set(data) - _STEP_KEYS
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {', '.join(sorted(unknown))}")
    if 'operation' not in data:
        raise ConfigError(f"{path} has no 'operation' section")

    node_properties = data.get('node_properties') or {}
    if not isinstance(node_properties, dict):
        raise ConfigError(f"node_properties in {path} must be a mapping")

    retries = _int_setting('retries', data.get('retries', 0) or 0)
    retry_delay = _float_setting('retry_delay', data.get('retry_delay', 0) or 0)
    if env_retries := os.environ.get('VSPHERE_STEP_RETRIES'):
        retries = _int_setting('VSPHERE_STEP_RETRIES', env_retries)
    if env_delay := os.environ.get('VSPHERE_STEP_RETRY_DELAY'):
        retry_delay = _float_setting('VSPHERE_STEP_RETRY_DELAY', env_delay)

    return StepConfig(
        name=path.stem,
        config_file=path,
        operation=operation_from_dict(data['operation']),
        server=str(data.get('server') or ''),
        retries=retries,
        retry_delay=retry_delay,
        node_properties={str(k): '' if v is None else str(v) for k, v in node_properties.items()},
    )
