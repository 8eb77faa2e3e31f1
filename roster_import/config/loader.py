from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_MAX_FILE_BYTES,
    DatabaseConfig,
    DispatchPolicy,
    ImportConfig,
    PacingConfig,
    TargetConfig,
    TargetMode,
)

"""Config loader.

Responsibilities:
- Load YAML (config/import.yml by default)
- Validate against config_schema.json (shipped next to this module)
- Build the typed ImportConfig; dataclass-level rules (chunk_size range etc.)
  are reported as ConfigError too
- Resolve the PostgreSQL DSN (environment first, config as fallback)
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "build_config",
    "load_config",
    "resolve_dsn",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: Any) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails schema validation (missing required keys,
            wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        prefix = f"{where}: " if where else ""
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e


def build_config(data: Mapping[str, Any]) -> ImportConfig:
    """Turn an already parsed mapping into ImportConfig (schema checked first)."""
    _validate_config_schema(data)

    dispatch = data.get("dispatch", {})
    pacing_raw = dispatch.get("pacing", {})
    target_raw = data["target"]
    db_raw = data.get("database", {})

    try:
        pacing = PacingConfig(**pacing_raw)
        policy = DispatchPolicy(
            chunk_size=dispatch.get("chunk_size", DispatchPolicy.chunk_size),
            size_threshold_bytes=dispatch.get("size_threshold_bytes", DispatchPolicy.size_threshold_bytes),
            direct_record_limit=dispatch.get("direct_record_limit", DispatchPolicy.direct_record_limit),
            pacing_delay_seconds=pacing.delay_seconds,
            chunk_timeout_seconds=dispatch.get("chunk_timeout_seconds"),
        )
        target = TargetConfig(
            mode=TargetMode(target_raw["mode"]),
            table=target_raw.get("table", TargetConfig.table),
            url=target_raw.get("url"),
            api_key_env=target_raw.get("api_key_env"),
            timeout_seconds=target_raw.get("timeout_seconds", TargetConfig.timeout_seconds),
        )
    except ValueError as e:
        raise ConfigError(f"config validation failed: {e}") from e

    if target.mode is TargetMode.HTTP and not target.url:
        raise ConfigError("config validation failed: target.url is required for mode 'http'")

    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        target=target,
        policy=policy,
        pacing=pacing,
        database=db,
        max_file_bytes=data.get("max_file_bytes", DEFAULT_MAX_FILE_BYTES),
        log_dir=data.get("log_dir", "./logs"),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    return build_config(data)


def resolve_dsn(db_cfg: DatabaseConfig, environ: Mapping[str, str] | None = None) -> str:
    """Build the libpq DSN for ``db_cfg``.

    接続情報の優先順位:
        1. DATABASE_URL / PGDSN (DSN 全体)
        2. config の database.dsn
        3. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE、不足分は config の値
    """
    env = os.environ if environ is None else environ
    dsn = env.get("DATABASE_URL") or env.get("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn

    host = env.get("PGHOST", db_cfg.host or "localhost")
    port = env.get("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = env.get("PGUSER", db_cfg.user or "postgres")
    password = env.get("PGPASSWORD", db_cfg.password or "")
    database = env.get("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn
