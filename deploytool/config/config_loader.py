import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..core.models import DatabaseEndpoint, DeploymentOptions, DeploymentSettings, TableIdentifier
from ..datastore.factory import DATASTORE_TYPES, is_supported_scheme


ENVIRONMENT_VARIABLE = "DEPLOYTOOL_ENVIRONMENT"
DEFAULT_ENVIRONMENT = "production"

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")

_BOOL_OPTIONS = ('preview_mode', 'continue_on_error', 'block_destructive_changes', 'use_transaction')
_NUMBER_OPTIONS = ('deployment_timeout', 'connect_timeout')


def resolve_env_vars(value: Any) -> Any:
    """Substitute ${VAR} and ${VAR:default} from the environment, recursively"""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), value)
    elif isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    return value


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into a copy of base; nested dicts merge, everything else replaces"""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigLoader:
    """Load and validate deployment settings"""

    @staticmethod
    def load_from_yaml(file_path: Union[str, Path], environment: Optional[str] = None) -> DeploymentSettings:
        """
        Load settings from a YAML file plus its environment overlay.

        The overlay is a sibling file named <stem>.<environment><suffix>
        (e.g. deploy.staging.yaml); it is optional.
        """
        path = Path(file_path)
        config_dict = ConfigLoader._read_yaml(path)

        environment = environment or os.getenv(ENVIRONMENT_VARIABLE, DEFAULT_ENVIRONMENT)
        overlay_path = ConfigLoader.overlay_path(path, environment)
        if overlay_path.exists():
            config_dict = deep_merge(config_dict, ConfigLoader._read_yaml(overlay_path))

        return ConfigLoader.load_from_dict(config_dict)

    @staticmethod
    def overlay_path(path: Path, environment: str) -> Path:
        return path.with_name(f"{path.stem}.{environment}{path.suffix}")

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        with open(path, 'r') as file:
            config_dict = yaml.safe_load(file)

        if config_dict is None:
            raise ValueError(f"Empty or invalid YAML file: {path}")
        if not isinstance(config_dict, dict):
            raise ValueError(f"Expected a mapping at the top level of {path}")

        return config_dict

    @staticmethod
    def load_from_dict(config_dict: Dict[str, Any]) -> DeploymentSettings:
        """Load settings from a dictionary, raising ValueError listing every issue"""
        resolved = resolve_env_vars(config_dict)

        source_dict = resolved.get('source') or {}
        source = ConfigLoader._endpoint(source_dict, default_name='source')

        targets = [
            ConfigLoader._endpoint(target, default_name=f"target_{i}")
            for i, target in enumerate(resolved.get('targets') or [], start=1)
        ]

        settings = DeploymentSettings(
            source=source,
            targets=targets,
            config_tables=[str(t) for t in resolved.get('config_tables') or []],
            excluded_tables=[str(t) for t in resolved.get('excluded_tables') or []],
            included_schemas=[str(s) for s in resolved.get('included_schemas') or []],
            options=ConfigLoader._options(resolved.get('options') or {})
        )

        issues = ConfigLoader.validate_settings(settings)
        if issues:
            raise ValueError("Invalid deployment configuration:\n  - " + "\n  - ".join(issues))

        return settings

    @staticmethod
    def _endpoint(endpoint_dict: Any, default_name: str) -> DatabaseEndpoint:
        if isinstance(endpoint_dict, str):
            return DatabaseEndpoint(name=default_name, connection_string=endpoint_dict)
        if not isinstance(endpoint_dict, dict):
            raise ValueError(
                f"Database entry {default_name} must be a mapping with name and connection_string, "
                f"got {endpoint_dict!r}"
            )
        return DatabaseEndpoint(
            name=str(endpoint_dict.get('name') or default_name),
            connection_string=str(endpoint_dict.get('connection_string') or '')
        )

    @staticmethod
    def _options(options_dict: Dict[str, Any]) -> DeploymentOptions:
        unknown = set(options_dict) - set(DeploymentOptions.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown deployment option(s): {', '.join(sorted(unknown))}")

        values = dict(options_dict)
        for key in _BOOL_OPTIONS:
            if key in values:
                values[key] = ConfigLoader._to_bool(key, values[key])
        for key in _NUMBER_OPTIONS:
            if key in values:
                values[key] = ConfigLoader._to_number(key, values[key], float)
        if 'max_parallel_deployments' in values:
            values['max_parallel_deployments'] = ConfigLoader._to_whole_number(
                'max_parallel_deployments', values['max_parallel_deployments']
            )

        return DeploymentOptions(**values)

    @staticmethod
    def _to_bool(key: str, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ('true', 'yes', '1', 'on'):
            return True
        if isinstance(value, str) and value.strip().lower() in ('false', 'no', '0', 'off', ''):
            return False
        raise ValueError(f"Option '{key}' must be a boolean, got {value!r}")

    @staticmethod
    def _to_number(key: str, value: Any, number_type: type):
        try:
            return number_type(value)
        except (TypeError, ValueError):
            raise ValueError(f"Option '{key}' must be a number, got {value!r}")

    @staticmethod
    def _to_whole_number(key: str, value: Any) -> int:
        number = ConfigLoader._to_number(key, value, float)
        if isinstance(value, bool) or not number.is_integer():
            raise ValueError(f"Option '{key}' must be a whole number, got {value!r}")
        return int(number)

    @staticmethod
    def validate_settings(settings: DeploymentSettings) -> List[str]:
        """Validate settings and return list of issues"""
        issues = []

        if not settings.source.connection_string:
            issues.append("Source database must specify connection_string")
        elif not is_supported_scheme(settings.source.scheme):
            issues.append(
                f"Source database '{settings.source.name}' uses unsupported scheme "
                f"'{settings.source.scheme}' (supported: {', '.join(sorted(DATASTORE_TYPES))})"
            )

        seen = set()
        for target in settings.targets:
            if target.name in seen:
                issues.append(f"Duplicate target name '{target.name}'")
            seen.add(target.name)

            if not target.connection_string:
                issues.append(f"Target '{target.name}' must specify connection_string")
            elif not is_supported_scheme(target.scheme):
                issues.append(f"Target '{target.name}' uses unsupported scheme '{target.scheme}'")

        for table_name in settings.config_tables + settings.excluded_tables:
            try:
                TableIdentifier.parse(table_name)
            except ValueError as e:
                issues.append(str(e))

        options = settings.options
        if options.max_parallel_deployments < 1:
            issues.append("max_parallel_deployments must be at least 1")
        if options.deployment_timeout <= 0:
            issues.append("deployment_timeout must be positive")
        if options.connect_timeout <= 0:
            issues.append("connect_timeout must be positive")

        return issues
