#!/usr/bin/env python3
"""CLI entry point for vSphere build steps.

Runs a step file from a shell-based CI job, acting as the pipeline host:
- run: execute a step with retries (vsphere-step run clone-web -D BUILD=42)
- validate: preflight checks for a step
- list: available operation kinds and step files

The virtualization client is built by a factory named with
--client-factory (or $VSPHERE_CLIENT_FACTORY) as 'module:callable'; it is
called with the step's server name. Connection handling lives there.
"""

import argparse
import importlib
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Optional

from common import ConfigError, RemoteOperationError, VSphereError
from config import StepConfig, list_steps, load_step_config
from environment import ProcessHost, StaticNodeProperty
from operations import list_operations
from orchestrator import Orchestrator
from validation import format_preflight_results, run_preflight_checks

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def _parse_defines(values: Optional[list[str]]) -> dict[str, str]:
    """Parse repeated -D KEY=VALUE arguments."""
    defines = {}
    for item in values or []:
        if '=' not in item:
            raise ConfigError(f"Invalid -D value '{item}', expected KEY=VALUE")
        key, value = item.split('=', 1)
        if not key:
            raise ConfigError(f"Invalid -D value '{item}', empty key")
        defines[key] = value
    return defines


def load_client_factory(spec: Optional[str]) -> Callable[[str], Any]:
    """Resolve 'module:callable' to the client factory."""
    if not spec:
        raise ConfigError(
            "No client factory configured.\n"
            "  Use --client-factory module:callable or set VSPHERE_CLIENT_FACTORY"
        )
    module_name, sep, attr = spec.partition(':')
    if not sep or not module_name or not attr:
        raise ConfigError(f"Invalid client factory '{spec}', expected module:callable")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import client factory module '{module_name}': {e}") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"Client factory '{spec}' is not callable")
    return factory


def _create_host(config: StepConfig, args: argparse.Namespace) -> ProcessHost:
    node_properties = []
    if config.node_properties:
        node_properties.append(StaticNodeProperty(config.node_properties))
    env_file = args.env_file or os.environ.get('VSPHERE_ENV_FILE')
    return ProcessHost(
        build_variables=_parse_defines(args.define),
        node_properties=node_properties,
        env_file=Path(env_file) if env_file else None,
        # Keep stdout clean for --json-output
        log=sys.stderr if args.json_output else sys.stdout,
    )


def _configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, 'json_output', False):
        # Remove existing handlers and redirect to stderr
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(stderr_handler)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def run_step(args: argparse.Namespace) -> int:
    """Handle 'run' subcommand."""
    output: dict[str, Any] = {'step': args.step, 'success': False}
    host: Optional[ProcessHost] = None
    try:
        config = load_step_config(args.step)
        output['operation'] = config.operation.kind
        host = _create_host(config, args)

        if args.dry_run:
            preview = Orchestrator(config.operation, None, host, config.retries, config.retry_delay)
            return 0 if preview.preview() else 1

        factory = load_client_factory(args.client_factory or os.environ.get('VSPHERE_CLIENT_FACTORY'))
        try:
            client = factory(config.server)
        except Exception as e:
            raise RemoteOperationError(f"Cannot connect to vSphere server '{config.server}': {e}") from e
        orchestrator = Orchestrator(config.operation, client, host, config.retries, config.retry_delay)

        if args.once:
            success = orchestrator.perform().success
        else:
            success = orchestrator.run()

        result = orchestrator.last_result
        output['success'] = success
        if result is not None:
            output['message'] = result.message
            output['ip'] = result.ip
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        output['error'] = str(e)
    except VSphereError as e:
        logger.error(f"Step failed: {e}")
        output['error'] = str(e)

    if host is not None:
        output['published'] = dict(host.published)
    if args.json_output:
        print(json.dumps(output, indent=2))
    return 0 if output['success'] else 1


def validate_step(args: argparse.Namespace) -> int:
    """Handle 'validate' subcommand."""
    try:
        config = load_step_config(args.step)
        client = None
        factory_spec = args.client_factory or os.environ.get('VSPHERE_CLIENT_FACTORY')
        if factory_spec:
            client = load_client_factory(factory_spec)(config.server)
    except ConfigError as e:
        print(f"Error loading step: {e}")
        return 1
    except Exception as e:
        print(f"Cannot connect to vSphere: {e}")
        return 1

    endpoint = args.endpoint or os.environ.get('VSPHERE_ENDPOINT')
    success, results = run_preflight_checks(config.operation, client=client, endpoint=endpoint)
    print(format_preflight_results(config.name, results))
    return 0 if success else 1


def list_available(_args: argparse.Namespace) -> int:
    """Handle 'list' subcommand."""
    print("Operation kinds:")
    for kind in list_operations():
        print(f"  {kind}")
    steps = list_steps()
    print("\nSteps:")
    if not steps:
        print("  (none; set VSPHERE_STEPS_DIR or create ./steps/)")
    for name in steps:
        print(f"  {name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='vsphere-step',
        description='Run vSphere VM operations as pipeline build steps'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command')

    run_parser = subparsers.add_parser('run', help='Run a step')
    run_parser.add_argument('step', help='Step name or path to a step YAML file')
    run_parser.add_argument(
        '-D', '--define',
        action='append',
        metavar='KEY=VALUE',
        help='Build parameter (repeatable), overrides the environment'
    )
    run_parser.add_argument('--env-file', help='Append published variables to this file')
    run_parser.add_argument('--client-factory', metavar='MODULE:CALLABLE', help='vSphere client factory')
    run_parser.add_argument('--once', action='store_true', help='Single attempt, no retries')
    run_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be executed without running'
    )
    run_parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs go to stderr)'
    )
    run_parser.set_defaults(func=run_step)

    validate_parser = subparsers.add_parser('validate', help='Run preflight checks for a step')
    validate_parser.add_argument('step', help='Step name or path to a step YAML file')
    validate_parser.add_argument('--client-factory', metavar='MODULE:CALLABLE', help='vSphere client factory')
    validate_parser.add_argument('--endpoint', help='vSphere URL to probe')
    validate_parser.set_defaults(func=validate_step)

    list_parser = subparsers.add_parser('list', help='List operation kinds and steps')
    list_parser.set_defaults(func=list_available)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, 'func', None):
        parser.print_help()
        return 1

    _configure_logging(args)
    rc: int = args.func(args)
    return rc


if __name__ == '__main__':
    sys.exit(main())
