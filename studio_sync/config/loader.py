from __future__ import annotations

import json
import os
from collections.abc import Mapping
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DatabaseConfig,
    ShopifyConfig,
    SyncConfig,
    TableNames,
    TermConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config/sync.yml
- Validate against config_schema.json (additionalProperties: false)
- Apply defaults (timezone=UTC, recency_days=14, weeks_before=5, lock_id=7205)
- Overlay SHOPIFY_* environment variables on the shopify section
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "window_start",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/sync.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not valid JSON, or the config
            data fails validation (missing required keys, wrong types, extra keys).
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


def _normalize_dates(data: dict[str, Any]) -> None:
    # YAML turns an unquoted 2025-05-05 into a date
    term = data.get("term")
    if isinstance(term, dict) and isinstance(term.get("start_date"), date):
        term["start_date"] = term["start_date"].isoformat()


def _term(raw: Mapping[str, Any]) -> TermConfig:
    number = raw.get("number")
    block = raw.get("block")
    start = raw.get("start_date")
    try:
        start_date = date.fromisoformat(start) if start else None
    except ValueError as e:
        raise ConfigError(f"term.start_date is not a valid date: {start}") from e
    return TermConfig(
        name=raw["name"],
        number=str(number) if number is not None else None,
        block=block.upper() if block else None,
        start_date=start_date,
        weeks_before=raw.get("weeks_before", 5),
    )


def _shopify(raw: Mapping[str, Any], env: Mapping[str, str]) -> ShopifyConfig:
    return ShopifyConfig(
        store_url=env.get("SHOPIFY_STORE_URL") or raw.get("store_url"),
        api_token=env.get("SHOPIFY_API_TOKEN"),
        api_version=env.get("SHOPIFY_API_VERSION") or raw.get("api_version", "2024-01"),
        page_limit=raw.get("page_limit", 250),
        timeout_seconds=float(raw.get("timeout_seconds", 30.0)),
    )


def load_config(path: Path, env: Mapping[str, str] | None = None) -> SyncConfig:
    if env is None:
        env = os.environ
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    _normalize_dates(data)
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
    return SyncConfig(
        term=_term(data["term"]),
        shopify=_shopify(data.get("shopify") or {}, env),
        database=db,
        tables=TableNames(**data["tables"]),
        free_class_recency_days=(data.get("free_class") or {}).get("recency_days", 14),
        lock_id=(data.get("sync") or {}).get("lock_id", 7205),
        timezone=data.get("timezone", "UTC"),
    )


def window_start(term: TermConfig, today: date) -> datetime:
    """Earliest order creation time a sync looks at.

    `weeks_before` weeks before the term start, or before `today` when no
    term start is configured. Returned as midnight UTC.
    """
    anchor = term.start_date or today
    start = anchor - timedelta(weeks=term.weeks_before)
    return datetime.combine(start, time.min, tzinfo=UTC)
