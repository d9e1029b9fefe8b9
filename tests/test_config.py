import json
import logging

import pytest
from jsonschema import ValidationError

from sync_core.config_utils import ENV_OVERRIDES, create_default_config, load_config, resolve_env_vars
from sync_core.models import SyncConfig

logger = logging.getLogger('test')


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


def write_json(tmp_path, data, name='config.json'):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return str(path)


def test_load_json_config(tmp_path):
    path = write_json(tmp_path, {
        'check_interval': 60,
        'update_interval': 2.5,
        'docker_host': 'unix:///var/run/docker.sock',
        'registries': {'ghcr.io': {'username': 'bot', 'password': 'pw'}},
    })
    config = load_config(path, logger)
    assert config.check_interval == 60
    assert config.update_interval == 2.5
    assert config.docker_host == 'unix:///var/run/docker.sock'
    assert config.registries['ghcr.io']['username'] == 'bot'
    assert config.label_prefix == 'swarm-sync'


def test_load_yaml_config(tmp_path):
    path = tmp_path / 'config.yml'
    path.write_text("check_interval: 120\nlabel_prefix: acme\n")
    config = load_config(str(path), logger)
    assert config.check_interval == 120
    assert config.label_prefix == 'acme'
    assert config.update_interval == SyncConfig().update_interval


def test_empty_yaml_uses_defaults(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('')
    assert load_config(str(path), logger) == SyncConfig()


def test_env_overrides(tmp_path, monkeypatch):
    path = write_json(tmp_path, {'check_interval': 60})
    monkeypatch.setenv('CHECK_INTERVAL', '15')
    monkeypatch.setenv('UPDATE_INTERVAL', '0.5')
    monkeypatch.setenv('WEBHOOK_URL', 'http://hooks.local/swarm')
    config = load_config(path, logger)
    assert config.check_interval == 15
    assert config.update_interval == 0.5
    assert config.webhook_url == 'http://hooks.local/swarm'


def test_invalid_env_override_is_ignored(tmp_path, monkeypatch):
    path = write_json(tmp_path, {'check_interval': 60})
    monkeypatch.setenv('CHECK_INTERVAL', 'soon')
    assert load_config(path, logger).check_interval == 60


def test_registry_credentials_resolve_env_vars(tmp_path, monkeypatch):
    monkeypatch.setenv('GHCR_TOKEN', 'tok')
    path = write_json(tmp_path, {'registries': {'ghcr.io': {'username': 'bot', 'password': '${GHCR_TOKEN}'}}})
    assert load_config(path, logger).registries['ghcr.io']['password'] == 'tok'


def test_resolve_env_vars_keeps_unknown_placeholders():
    assert resolve_env_vars({'a': '${SWARM_SYNC_UNSET_VAR}'}) == {'a': '${SWARM_SYNC_UNSET_VAR}'}


def test_schema_violation_raises(tmp_path):
    path = write_json(tmp_path, {'check_interval': 0})
    with pytest.raises(ValidationError):
        load_config(path, logger)


def test_create_default_config_roundtrip(tmp_path):
    path = create_default_config(str(tmp_path / 'etc' / 'config.json'), logger)
    config = load_config(path, logger)
    assert config.check_interval == 300
    assert config.update_interval == 5
