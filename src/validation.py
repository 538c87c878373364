"""Pre-flight validation checks for build steps.

These checks give early feedback on a step's configuration before it runs
in a pipeline. They are not authoritative: the step itself re-checks what
it needs at execution time, when build parameters are known.
"""

import logging
from typing import Any, Optional

import requests
import urllib3

from expander import has_placeholder
from operations import AddAnnotation, Clone, Deploy

# Suppress SSL warnings for self-signed certs
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Endpoint Validation
# -----------------------------------------------------------------------------

def validate_endpoint(endpoint: str, timeout: float = 10.0) -> list[str]:
    """Check the vSphere endpoint answers on its SDK URL.

    Args:
        endpoint: vSphere URL (e.g., https://vcenter.example:443)
        timeout: Request timeout in seconds

    Returns:
        List of validation error messages (empty if reachable)
    """
    errors = []
    if not endpoint:
        return ["vSphere endpoint not configured"]

    url = f"{endpoint.rstrip('/')}/sdk/vimServiceVersions.xml"
    try:
        resp = requests.get(url, verify=False, timeout=timeout)  # Self-signed cert
        if resp.status_code != 200:
            errors.append(
                f"Unexpected response from {endpoint}: {resp.status_code}\n"
                f"  Response: {resp.text[:100]}"
            )
        else:
            logger.info(f"vSphere endpoint {endpoint} reachable")
    except requests.exceptions.ConnectionError:
        errors.append(
            f"Cannot connect to {endpoint}\n"
            f"  Check: host is online, port 443 is open, firewall allows access"
        )
    except requests.exceptions.Timeout:
        errors.append(f"Timeout connecting to {endpoint}")
    except Exception as e:
        errors.append(f"Error checking endpoint: {e}")

    return errors


# -----------------------------------------------------------------------------
# Operation Checks
# -----------------------------------------------------------------------------

def validate_required(operation: Any) -> list[str]:
    """Required names must be non-empty."""
    if isinstance(operation, Clone):
        required = {'source_name': 'the source name', 'clone': 'the clone name', 'cluster': 'the cluster'}
    elif isinstance(operation, Deploy):
        required = {'template': 'the template name', 'clone': 'the clone name', 'cluster': 'the cluster'}
    elif isinstance(operation, AddAnnotation):
        required = {'vm': 'the VM name'}
    else:
        return [f"Unsupported operation: {type(operation).__name__}"]
    return [f"Please enter {what}" for name, what in required.items() if not getattr(operation, name)]


def _check_new_vm_name(client: Any, name: str) -> list[str]:
    # A name that depends on build parameters cannot be checked here
    if has_placeholder(name):
        return []
    if client.find_vm(name) is not None:
        return [f"VM \"{name}\" already exists"]
    return []


def validate_clone(client: Any, op: Clone) -> tuple[list[str], list[str]]:
    """Check a clone against the inventory. Returns (errors, warnings)."""
    errors = _check_new_vm_name(client, op.clone)
    if has_placeholder(op.source_name):
        return errors, [f"source_name \"{op.source_name}\" uses a build parameter and cannot be checked"]

    vm = client.find_vm(op.source_name)
    if vm is None:
        errors.append(f"Source VM \"{op.source_name}\" not found")
        return errors, []
    if client.get_snapshot(vm) is None:
        errors.append(f"Source VM \"{op.source_name}\" has no snapshots")
    if client.is_template(vm) and not op.resource_pool:
        errors.append("Please enter the resource pool (source is a template)")
    if op.customization_spec and client.find_customization_spec(op.customization_spec) is None:
        errors.append(f"Customization spec \"{op.customization_spec}\" not found")
    return errors, []


def validate_deploy(client: Any, op: Deploy) -> tuple[list[str], list[str]]:
    """Check a deploy against the inventory. Returns (errors, warnings)."""
    errors = _check_new_vm_name(client, op.clone)
    if has_placeholder(op.template):
        return errors, [f"template \"{op.template}\" uses a build parameter and cannot be checked"]

    vm = client.find_vm(op.template)
    if vm is None:
        errors.append(f"Template \"{op.template}\" not found")
    elif not client.is_template(vm):
        errors.append(f"\"{op.template}\" is not actually a template")
    return errors, []


def validate_annotation(client: Any, op: AddAnnotation) -> tuple[list[str], list[str]]:
    """Check an annotation target exists. Returns (errors, warnings)."""
    if has_placeholder(op.vm):
        return [], [f"VM \"{op.vm}\" uses a build parameter and cannot be checked"]

    vm = client.find_vm(op.vm)
    if vm is None:
        return [f"VM \"{op.vm}\" not found"], []
    if client.is_template(vm):
        return [f"\"{op.vm}\" is not actually a VM"], []
    return [], []


_INVENTORY_CHECKS = {
    Clone: validate_clone,
    Deploy: validate_deploy,
    AddAnnotation: validate_annotation,
}


def run_preflight_checks(
    operation: Any,
    client: Optional[Any] = None,
    endpoint: Optional[str] = None
) -> tuple[bool, dict]:
    """Run all checks that apply to an operation.

    Inventory checks need a client; the endpoint check needs a URL.

    Returns:
        (success, results) tuple where results maps category to
        passed/failed/warnings lists
    """
    results: dict[str, dict[str, list[str]]] = {
        'configuration': {'passed': [], 'failed': [], 'warnings': []},
        'endpoint': {'passed': [], 'failed': [], 'warnings': []},
        'inventory': {'passed': [], 'failed': [], 'warnings': []},
    }

    required_errors = validate_required(operation)
    if required_errors:
        results['configuration']['failed'].extend(required_errors)
    else:
        results['configuration']['passed'].append("Required values present")

    if endpoint:
        endpoint_errors = validate_endpoint(endpoint)
        if endpoint_errors:
            results['endpoint']['failed'].extend(endpoint_errors)
        else:
            results['endpoint']['passed'].append(f"{endpoint} reachable")

    check = _INVENTORY_CHECKS.get(type(operation))
    if client is not None and check is not None and not required_errors:
        try:
            errors, warnings = check(client, operation)
        except Exception as e:
            errors, warnings = [f"Cannot query vSphere: {e}"], []
        results['inventory']['failed'].extend(errors)
        results['inventory']['warnings'].extend(warnings)
        if not errors:
            results['inventory']['passed'].append("Inventory checks passed")

    success = all(not category['failed'] for category in results.values())
    return success, results


def format_preflight_results(step_name: str, results: dict) -> str:
    """Format preflight check results for display."""
    lines = [f"\nPreflight checks for step '{step_name}':\n"]

    category_names = {
        'configuration': 'Configuration',
        'endpoint': 'vSphere endpoint',
        'inventory': 'Inventory',
    }

    for key, name in category_names.items():
        category = results.get(key, {'passed': [], 'failed': [], 'warnings': []})
        if category['passed'] or category['failed'] or category.get('warnings'):
            lines.append(f"{name}:")
            for item in category['passed']:
                lines.append(f"✓ {item}")
            for item in category.get('warnings', []):
                lines.append(f"! {item}")
            for item in category['failed']:
                # Handle multi-line errors
                first_line = item.split('\n')[0]
                lines.append(f"✗ {first_line}")
                for line in item.split('\n')[1:]:
                    lines.append(f"  {line}")
            lines.append("")

    all_passed = all(len(cat['failed']) == 0 for cat in results.values())
    if all_passed:
        lines.append("All checks passed. Ready to run.")
    else:
        lines.append("Some checks failed. Fix issues before running the step.")

    return '\n'.join(lines)
