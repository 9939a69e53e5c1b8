#!/usr/bin/env python3
"""
Configuration for rowferry
Handles environment variables, the optional JSON config file and paths centrally

Priority (highest to lowest):
1. CLI flags (applied by the caller through ``apply_overrides``)
2. JSON config file
3. Environment variables (ROWFERRY_*), including a .env file
4. MigratorConfig dataclass defaults
"""

import os
import re
import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, fields

from core.errors import ConfigurationError, sanitize_error

logger = logging.getLogger(__name__)

ENV_PREFIX = 'ROWFERRY_'
_TRUE_VALUES = ('1', 'true', 'yes', 'on')

@dataclass
class MigratorConfig:
    """rowferry configuration settings"""

    # Connections
    source_url: Optional[str] = None
    target_url: Optional[str] = None

    # Artifacts
    schema_path: str = "schemas/complete-schema.json"
    id_mappings_path: str = "id-mappings.json"

    # Engine settings
    batch_size: int = 1000
    workers: int = 1
    max_failure_ratio: float = 0.1
    split_passes: bool = False

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    # Named ordered table groups, e.g. {"core": ["Users", "Accounts"]}
    phases: Dict[str, List[str]] = field(default_factory=dict)
    # Explicit modification-timestamp column per table
    timestamp_columns: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Load environment variables"""
        self.source_url = os.environ.get('ROWFERRY_SOURCE_URL', self.source_url)
        self.target_url = os.environ.get('ROWFERRY_TARGET_URL', self.target_url)
        self.schema_path = os.environ.get('ROWFERRY_SCHEMA_PATH', self.schema_path)
        self.id_mappings_path = os.environ.get('ROWFERRY_ID_MAPPINGS_PATH', self.id_mappings_path)

        self.batch_size = _env_number('ROWFERRY_BATCH_SIZE', self.batch_size, int)
        self.workers = _env_number('ROWFERRY_WORKERS', self.workers, int)
        self.max_failure_ratio = _env_number('ROWFERRY_MAX_FAILURE_RATIO', self.max_failure_ratio, float)
        if 'ROWFERRY_SPLIT_PASSES' in os.environ:
            self.split_passes = os.environ['ROWFERRY_SPLIT_PASSES'].lower() in _TRUE_VALUES

        self.log_level = os.environ.get('ROWFERRY_LOG_LEVEL', self.log_level).upper()
        self.log_dir = os.environ.get('ROWFERRY_LOG_DIR', self.log_dir)

    def apply_overrides(self, values: Dict[str, Any]) -> 'MigratorConfig':
        """Overlay non-None values onto the known fields"""
        known = {f.name for f in fields(self)}
        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {key}")
                continue
            if value is not None:
                setattr(self, key, value)
        return self

    def validate(self) -> 'MigratorConfig':
        """Check value ranges; raise ConfigurationError on the first problem"""
        try:
            self.batch_size = int(self.batch_size)
            self.workers = int(self.workers)
            self.max_failure_ratio = float(self.max_failure_ratio)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")
        if isinstance(self.split_passes, str):
            self.split_passes = self.split_passes.lower() in _TRUE_VALUES

        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")
        if not 0.0 <= self.max_failure_ratio <= 1.0:
            raise ConfigurationError(
                f"max_failure_ratio must be between 0 and 1, got {self.max_failure_ratio}")
        if not isinstance(self.phases, dict) or not all(isinstance(v, list) for v in self.phases.values()):
            raise ConfigurationError("phases must map phase names to lists of table names")
        return self

    def require_urls(self, *roles: str) -> None:
        for role in roles:
            if not getattr(self, f"{role}_url"):
                raise ConfigurationError(
                    f"No {role} database configured (set ROWFERRY_{role.upper()}_URL or --{role})")

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration as dict with credentials masked"""
        return {
            'source_url': sanitize_error(self.source_url) if self.source_url else None,
            'target_url': sanitize_error(self.target_url) if self.target_url else None,
            'schema_path': self.schema_path,
            'id_mappings_path': self.id_mappings_path,
            'batch_size': self.batch_size,
            'workers': self.workers,
            'max_failure_ratio': self.max_failure_ratio,
            'split_passes': self.split_passes,
            'log_level': self.log_level,
            'log_dir': self.log_dir,
            'phases': sorted(self.phases),
        }


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def resolve_environment_variables(config: Any) -> Any:
    """Resolve ${VAR} and ${VAR:default} references in string values"""
    pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

    def replace_env_var(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ''
        return os.environ.get(var_name, default_value)

    if isinstance(config, str):
        return re.sub(pattern, replace_env_var, config)
    elif isinstance(config, dict):
        return {k: resolve_environment_variables(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [resolve_environment_variables(item) for item in config]
    return config


def load_env_file(env_file: Path) -> None:
    """Load KEY=VALUE lines into os.environ without overriding exported variables"""
    with open(env_file, 'r') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, value = line.split('=', 1)
                key = key.strip()
                if key not in os.environ:
                    os.environ[key] = value.strip().strip('"').strip("'")


def load_config(config_file: Optional[str] = None, env_file: Optional[str] = '.env',
                overrides: Optional[Dict[str, Any]] = None) -> MigratorConfig:
    """
    Build the effective configuration.

    Args:
        config_file: Optional JSON file; its string values may reference
            environment variables
        env_file: .env file to load first, skipped when missing
        overrides: Highest-priority values, typically from CLI flags
    """
    if env_file and Path(env_file).exists():
        load_env_file(Path(env_file))

    config = MigratorConfig()

    if config_file:
        path = Path(config_file)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")
        try:
            with open(path, 'r') as f:
                file_values = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {config_file} is not valid JSON: {e}")
        if not isinstance(file_values, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a JSON object")
        config.apply_overrides(resolve_environment_variables(file_values))

    if overrides:
        config.apply_overrides(overrides)

    return config.validate()
