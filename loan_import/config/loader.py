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
    CleaningConfig,
    DatabaseConfig,
    FieldMappings,
    ImportConfig,
    LoanDefaults,
    LoanFieldMappings,
    QuarantinePolicy,
)

"""Config loader for config/import.yml.

Responsibilities:
- Load YAML with yaml.safe_load (an empty file is an all-defaults config)
- Validate against the bundled config_schema.json (additionalProperties: false)
- Build the frozen ImportConfig, filling defaults for every omitted key
- Resolve environment overrides (database DSN, LLM API key)
"""

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "ConfigError",
    "build_config",
    "load_config",
    "resolve_api_key",
    "resolve_dsn",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: the schema file is missing or broken, or the data
            fails validation (unknown keys, wrong types, out-of-range values)
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
        suffix = f" (at {where})" if where else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def build_config(data: Mapping[str, Any]) -> ImportConfig:
    """Build ImportConfig from an already validated mapping."""
    q_raw = data.get("quarantine", {})
    country_code = str(data.get("phone", {}).get("country_code", "260"))
    base_policy = QuarantinePolicy()
    policy = QuarantinePolicy(
        enabled=q_raw.get("enabled", base_policy.enabled),
        required_fields=tuple(q_raw.get("required_fields", base_policy.required_fields)),
        min_confidence=float(q_raw.get("min_confidence", base_policy.min_confidence)),
        auto_approve_confidence=float(q_raw.get("auto_approve_confidence", base_policy.auto_approve_confidence)),
        max_warnings=int(q_raw.get("max_warnings", base_policy.max_warnings)),
        min_name_length=int(q_raw.get("min_name_length", base_policy.min_name_length)),
        auto_approve=q_raw.get("auto_approve", base_policy.auto_approve),
        country_code=country_code,
    )

    c_raw = data.get("cleaning", {})
    base_cleaning = CleaningConfig()
    cleaning = CleaningConfig(
        use_ai=c_raw.get("use_ai", base_cleaning.use_ai),
        endpoint=c_raw.get("endpoint", base_cleaning.endpoint),
        model=c_raw.get("model", base_cleaning.model),
        timeout_seconds=float(c_raw.get("timeout_seconds", base_cleaning.timeout_seconds)),
        group_size=int(c_raw.get("group_size", base_cleaning.group_size)),
        group_delay_seconds=float(c_raw.get("group_delay_seconds", base_cleaning.group_delay_seconds)),
    )

    d_raw = data.get("loan_defaults", {})
    base_defaults = LoanDefaults()
    loan_defaults = LoanDefaults(
        interest_rate=float(d_raw.get("interest_rate", base_defaults.interest_rate)),
        duration_months=int(d_raw.get("duration_months", base_defaults.duration_months)),
        loan_type=d_raw.get("loan_type", base_defaults.loan_type),
    )

    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    return ImportConfig(
        agency_id=data.get("agency_id", "default"),
        field_mappings=FieldMappings.from_mapping(data.get("field_mappings")),
        loan_field_mappings=LoanFieldMappings.from_mapping(data.get("loan_field_mappings")),
        quarantine=policy,
        cleaning=cleaning,
        loan_defaults=loan_defaults,
        fuzzy_threshold=float(data.get("orphan_matching", {}).get("fuzzy_threshold", 0.9)),
        database=db,
    )


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)
    return build_config(data)


def resolve_dsn(db_cfg: DatabaseConfig) -> str | None:
    """Connection string for the document store, or None when nothing is configured.

    接続情報の優先順位 (.env は CLI 起動時に上書きモードで読み込み済み):
        1. DATABASE_URL / PGDSN (DSN 全体)
        2. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. config/import.yml の database セクション
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    if not (db_cfg.configured or os.getenv("PGHOST") or os.getenv("PGDATABASE")):
        return None
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def resolve_api_key() -> str | None:
    return os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or None
