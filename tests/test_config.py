#!/usr/bin/env python3
"""Tests for config.py - step file loading."""

import pytest

from config import ConfigError, StepConfig, get_steps_dir, list_steps, load_step_config
from guestinfo import GuestInfoProperty
from operations import AddAnnotation, Clone, Deploy


class TestStepsDir:
    """Test step discovery."""

    def test_env_override(self, steps_dir):
        assert get_steps_dir() == steps_dir

    def test_default_is_cwd_steps(self, tmp_path, monkeypatch):
        monkeypatch.delenv('VSPHERE_STEPS_DIR', raising=False)
        monkeypatch.chdir(tmp_path)
        assert get_steps_dir() == tmp_path / 'steps'

    def test_list_steps(self, steps_dir):
        (steps_dir / 'notes.txt').write_text("ignored")
        assert list_steps() == ['annotate', 'clone-web', 'deploy-db']

    def test_list_steps_missing_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv('VSPHERE_STEPS_DIR', str(tmp_path / 'nope'))
        assert list_steps() == []


class TestLoadStepConfig:
    """Test load_step_config()."""

    def test_clone_step(self, steps_dir):
        config = load_step_config('clone-web')

        assert config.name == 'clone-web'
        assert config.config_file == steps_dir / 'clone-web.yaml'
        assert config.server == 'vcenter-01'
        assert config.retries == 2
        assert config.retry_delay == 5.0
        assert config.node_properties == {'DOMAIN': 'lab.example'}
        assert config.operation == Clone(
            source_name='tmpl1',
            clone='web-${BUILD_NUMBER}',
            cluster='c1',
            datastore='ds1',
            power_on=True,
            timeout=30,
            guest_info_properties=(
                GuestInfoProperty('ENV', '${cluster}'),
                GuestInfoProperty('FQDN', '${NODE_NAME}.${DOMAIN}'),
            ),
        )

    def test_deploy_step_keeps_blank_pool(self, steps_dir):
        """The default resource pool is not written into the configuration."""
        config = load_step_config('deploy-db')
        assert isinstance(config.operation, Deploy)
        assert config.operation.resource_pool == ''
        assert config.retries == 0

    def test_annotate_step(self, steps_dir):
        config = load_step_config('annotate')
        assert config.operation == AddAnnotation(vm='web-01', annotation='Built by ${BUILD_NUMBER}')
        assert config.server == ''

    def test_load_by_path(self, steps_dir):
        config = load_step_config(str(steps_dir / 'deploy-db.yaml'))
        assert config.name == 'deploy-db'

    def test_missing_path(self, tmp_path):
        with pytest.raises(ConfigError, match="Step file not found"):
            load_step_config(str(tmp_path / 'missing.yaml'))

    def test_unknown_step_lists_available(self, steps_dir):
        with pytest.raises(ConfigError, match="Available steps: annotate, clone-web, deploy-db"):
            load_step_config('nope')

    def test_env_overrides_retries(self, steps_dir, monkeypatch):
        monkeypatch.setenv('VSPHERE_STEP_RETRIES', '5')
        monkeypatch.setenv('VSPHERE_STEP_RETRY_DELAY', '0.5')
        config = load_step_config('clone-web')
        assert config.retries == 5
        assert config.retry_delay == 0.5

    def test_invalid_env_retries(self, steps_dir, monkeypatch):
        monkeypatch.setenv('VSPHERE_STEP_RETRIES', 'many')
        with pytest.raises(ConfigError, match="VSPHERE_STEP_RETRIES must be an integer"):
            load_step_config('clone-web')

    def test_negative_retries(self, steps_dir):
        (steps_dir / 'bad.yaml').write_text("retries: -1\noperation: {kind: annotate, vm: a}\n")
        with pytest.raises(ConfigError, match="retries must not be negative"):
            load_step_config('bad')

    def test_unknown_key(self, steps_dir):
        (steps_dir / 'bad.yaml').write_text("retry: 3\noperation: {kind: annotate, vm: a}\n")
        with pytest.raises(ConfigError, match="Unknown keys .*: retry"):
            load_step_config('bad')

    def test_missing_operation(self, steps_dir):
        (steps_dir / 'bad.yaml').write_text("server: vcenter-01\n")
        with pytest.raises(ConfigError, match="has no 'operation' section"):
            load_step_config('bad')

    def test_invalid_yaml(self, steps_dir):
        (steps_dir / 'bad.yaml').write_text("operation: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_step_config('bad')

    def test_document_not_mapping(self, steps_dir):
        (steps_dir / 'bad.yaml').write_text("- kind: clone\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_step_config('bad')

    def test_node_properties_must_be_mapping(self, steps_dir):
        (steps_dir / 'bad.yaml').write_text("node_properties: [A]\noperation: {kind: annotate, vm: a}\n")
        with pytest.raises(ConfigError, match="node_properties .* must be a mapping"):
            load_step_config('bad')

    def test_node_property_values_are_strings(self, steps_dir):
        (steps_dir / 'ok.yaml').write_text(
            "node_properties: {PORT: 8080, EMPTY: null}\noperation: {kind: annotate, vm: a}\n"
        )
        assert load_step_config('ok').node_properties == {'PORT': '8080', 'EMPTY': ''}

    def test_operation_errors_surface(self, steps_dir):
        (steps_dir / 'bad.yaml').write_text("operation: {kind: clone, clone: vm-A}\n")
        with pytest.raises(ConfigError, match="Please enter the source name"):
            load_step_config('bad')


class TestStepConfig:
    """Test StepConfig validation."""

    def test_path_coerced(self):
        config = StepConfig(name='x', config_file='steps/x.yaml', operation=AddAnnotation('vm'))
        assert config.config_file.name == 'x.yaml'

    def test_negative_delay(self):
        with pytest.raises(ConfigError, match="retry_delay must not be negative"):
            StepConfig(name='x', config_file='x.yaml', operation=AddAnnotation('vm'), retry_delay=-1)
