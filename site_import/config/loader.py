from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from site_import.models.config_models import (
    DatabaseConfig,
    ImportConfig,
    ImportSettings,
    PoolConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config (config/import.yml by default)
- Validate against the JSON schema shipped next to this module
- Apply defaults for the optional pool / import sections
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails schema validation (missing required keys, wrong
            types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    pool_raw = data.get("pool") or {}
    defaults = PoolConfig()
    pool = PoolConfig(
        min_size=pool_raw.get("min_size", defaults.min_size),
        max_size=pool_raw.get("max_size", defaults.max_size),
        acquire_timeout=float(pool_raw.get("acquire_timeout", defaults.acquire_timeout)),
    )
    if pool.min_size > pool.max_size:
        raise ConfigError(
            f"config validation failed: pool.min_size ({pool.min_size}) exceeds "
            f"pool.max_size ({pool.max_size})"
        )

    imp_raw = data.get("import") or {}
    imp_defaults = ImportSettings()
    pattern = imp_raw.get("site_code_pattern")
    if pattern:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"config validation failed: bad site_code_pattern: {e}") from e
    settings = ImportSettings(
        error_log_dir=imp_raw.get("error_log_dir", imp_defaults.error_log_dir),
        max_reported_errors=imp_raw.get("max_reported_errors", imp_defaults.max_reported_errors),
        site_code_pattern=pattern,
    )
    return ImportConfig(database=db, pool=pool, import_settings=settings)
