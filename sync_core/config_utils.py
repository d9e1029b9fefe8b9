import json
import os
import re
from typing import Any, Dict

from jsonschema import ValidationError, validate as jsonschema_validate
from yaml import safe_dump, safe_load

from sync_core.models import SyncConfig

CONFIG_SCHEMA = {
    'type': 'object',
    'properties': {
        'check_interval': {'type': 'integer', 'minimum': 1},
        'update_interval': {'type': 'number', 'minimum': 0},
        'docker_host': {'type': 'string'},
        'docker_timeout': {'type': 'integer', 'minimum': 1},
        'registry_timeout': {'type': 'integer', 'minimum': 1},
        'registry_retries': {'type': 'integer', 'minimum': 1},
        'label_prefix': {'type': 'string', 'minLength': 1},
        'webhook_url': {'type': 'string'},
        'registries': {
            'type': 'object',
            'additionalProperties': {
                'type': 'object',
                'properties': {
                    'username': {'type': 'string'},
                    'password': {'type': 'string'},
                    'region': {'type': 'string'},
                    'aws_access_key_id': {'type': 'string'},
                    'aws_secret_access_key': {'type': 'string'},
                    'service_account_path': {'type': 'string'},
                },
            },
        },
    },
}

# env var -> (config key, type)
ENV_OVERRIDES = {
    'CHECK_INTERVAL': ('check_interval', int),
    'UPDATE_INTERVAL': ('update_interval', float),
    'DOCKER_HOST': ('docker_host', str),
    'DOCKER_TIMEOUT': ('docker_timeout', int),
    'REGISTRY_TIMEOUT': ('registry_timeout', int),
    'REGISTRY_RETRIES': ('registry_retries', int),
    'LABEL_PREFIX': ('label_prefix', str),
    'WEBHOOK_URL': ('webhook_url', str),
}


def resolve_env_vars(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively resolve ${VAR} environment variables in a dict."""
    resolved: Dict[str, Any] = {}

    def replace_env_var(match):
        return os.getenv(match.group(1), match.group(0))

    for key, value in config_dict.items():
        if isinstance(value, str):
            resolved[key] = re.sub(r"\$\{([^}]+)\}", replace_env_var, value)
        elif isinstance(value, dict):
            resolved[key] = resolve_env_vars(value)
        elif isinstance(value, list):
            resolved[key] = [resolve_env_vars(item) if isinstance(item, dict) else item for item in value]
        else:
            resolved[key] = value
    return resolved


def _is_yaml(path: str) -> bool:
    return path.lower().endswith(('.yml', '.yaml'))


def load_config(config_file: str, logger) -> SyncConfig:
    """Load and validate the config file, then apply environment overrides."""
    with open(config_file, 'r') as f:
        raw = safe_load(f) if _is_yaml(config_file) else json.load(f)
    raw = raw or {}

    try:
        jsonschema_validate(raw, CONFIG_SCHEMA)
    except ValidationError as e:
        logger.error(f"Configuration validation error: {e.message}")
        raise

    values = {k: v for k, v in raw.items() if k in CONFIG_SCHEMA['properties']}
    values['registries'] = resolve_env_vars(values.get('registries') or {})

    for env_name, (key, cast) in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value is None:
            continue
        try:
            values[key] = cast(env_value)
        except ValueError:
            logger.warning(f"Ignoring invalid {env_name}={env_value!r}")

    config = SyncConfig(**values)
    logger.info(
        f"Loaded configuration: check every {config.check_interval}s, "
        f"{config.update_interval}s between services, {len(config.registries)} registries"
    )
    return config


def create_default_config(config_file: str, logger) -> str:
    """Create a default config file. Returns the path written."""
    default_config = {
        'check_interval': 300,
        'update_interval': 5,
        'label_prefix': 'swarm-sync',
        'registries': {},
    }

    def write(path):
        with open(path, 'w') as f:
            if _is_yaml(path):
                safe_dump(default_config, f, default_flow_style=False)
            else:
                json.dump(default_config, f, indent=2)

    try:
        config_dir = os.path.dirname(config_file) or '.'
        os.makedirs(config_dir, exist_ok=True)
        write(config_file)
        logger.info(f"Created default configuration file: {config_file}")
        return config_file
    except OSError:
        local_path = './swarm_sync_config.json'
        write(local_path)
        logger.info(f"Created local configuration file: {local_path}")
        return local_path
