"""Shared pytest fixtures for vsphere-steps tests."""

import io
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


class StubClient:
    """In-memory virtualization client recording every call.

    Attributes:
        vms: name -> handle for existing VMs and templates
        ips: addresses returned by successive get_ip calls (None = not yet)
        templates: names of VMs that are templates
        snapshots: names of VMs that have a current snapshot
        specs: names of existing customization specs
        fail_on: method name -> exception raised on every call
    """

    def __init__(self, vms=None, ips=None, templates=(), snapshots=(), specs=()):
        self.vms = dict(vms or {})
        self.ips = list(ips or [])
        self.templates = set(templates)
        self.snapshots = set(snapshots)
        self.specs = set(specs)
        self.fail_on = {}
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise self.fail_on[name]

    def calls_to(self, name):
        return [c[1:] for c in self.calls if c[0] == name]

    def find_vm(self, name):
        self._record('find_vm', name)
        return self.vms.get(name)

    def clone_vm(self, source, target, options):
        self._record('clone_vm', source, target, options)
        self.vms[target] = {'name': target}

    def deploy_vm(self, template, target, options):
        self._record('deploy_vm', template, target, options)
        self.vms[target] = {'name': target}

    def set_annotation(self, vm_name, text):
        self._record('set_annotation', vm_name, text)

    def inject_guest_properties(self, vm_name, properties):
        self._record('inject_guest_properties', vm_name, dict(properties))

    def get_ip(self, vm, timeout):
        self._record('get_ip', vm, timeout)
        return self.ips.pop(0) if self.ips else None

    def get_snapshot(self, vm):
        self._record('get_snapshot', vm)
        return {'snapshot': vm['name']} if vm['name'] in self.snapshots else None

    def find_customization_spec(self, name):
        self._record('find_customization_spec', name)
        return {'spec': name} if name in self.specs else None

    def is_template(self, vm):
        return vm['name'] in self.templates


class FakeHost:
    """Pipeline host with an in-memory environment and build log."""

    def __init__(self, env=None, build_variables=None, node_properties=None,
                 root_url='https://ci.example/'):
        self.env = dict(env or {})
        self.variables = dict(build_variables or {})
        self.providers = list(node_properties or [])
        self.root_url = root_url
        self.log = io.StringIO()
        self.published = {}
        # Raised in order by successive environment() calls
        self.environment_errors = []
        self.publish_error = None

    def environment(self):
        if self.environment_errors:
            raise self.environment_errors.pop(0)
        return dict(self.env)

    def build_variables(self):
        return dict(self.variables)

    def node_properties(self):
        return list(self.providers)

    def contribute_environment(self, values):
        if self.publish_error:
            raise self.publish_error
        self.published.update(values)

    @property
    def log_lines(self):
        return self.log.getvalue().splitlines()


class FakeClock:
    """Replaces time.time/time.sleep; sleeping advances the clock."""

    def __init__(self, now=1000.0):
        self.now = now
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def stub_client():
    """Client with one source VM that has a snapshot and one template."""
    return StubClient(
        vms={
            'tmpl1': {'name': 'tmpl1'},
            'gold-template': {'name': 'gold-template'},
        },
        templates={'gold-template'},
        snapshots={'tmpl1'},
    )


@pytest.fixture
def fake_host():
    return FakeHost(env={'BUILD_NUMBER': '42', 'WORKSPACE': '/var/ci/ws'})


@pytest.fixture
def fake_clock():
    """Deterministic clock for polling and retry delays."""
    clock = FakeClock()
    with patch('time.time', clock.time), patch('time.sleep', clock.sleep):
        yield clock


@pytest.fixture
def steps_dir(tmp_path, monkeypatch):
    """Temporary steps directory with one step of each kind."""
    steps = tmp_path / 'steps'
    steps.mkdir()
    monkeypatch.setenv('VSPHERE_STEPS_DIR', str(steps))
    monkeypatch.delenv('VSPHERE_STEP_RETRIES', raising=False)
    monkeypatch.delenv('VSPHERE_STEP_RETRY_DELAY', raising=False)

    (steps / 'clone-web.yaml').write_text("""
server: vcenter-01
retries: 2
retry_delay: 5
node_properties:
  DOMAIN: lab.example
operation:
  kind: clone
  source_name: tmpl1
  clone: web-${BUILD_NUMBER}
  cluster: c1
  datastore: ds1
  power_on: true
  timeout: 30
  guest_info_properties:
    - name: ENV
      value: ${cluster}
    - name: FQDN
      value: ${NODE_NAME}.${DOMAIN}
""")

    (steps / 'deploy-db.yaml').write_text("""
server: vcenter-01
operation:
  kind: deploy
  template: gold-template
  clone: db-01
  cluster: c1
""")

    (steps / 'annotate.yaml').write_text("""
operation:
  kind: annotate
  vm: web-01
  annotation: Built by ${BUILD_NUMBER}
""")

    return steps
