from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Config loader.

Responsibilities:
- Load YAML config (default config/import.yml)
- Validate against config_schema.json (shipped next to this module)
- Apply defaults for every optional section

Secrets (API key, database password) are expected in the environment;
the config only names the variable holding the API key.
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class AIConfig:
    provider: str = "claude"
    model: str = "claude-sonnet-4-20250514"
    api_key_env: str = "ANTHROPIC_API_KEY"
    timeout_seconds: float = 120.0
    max_tokens: int = 16000
    temperature: float = 0.0
    default_confidence: float = 0.7
    rate_limit_retry_seconds: float = 5.0


@dataclass(frozen=True)
class ExtractionConfig:
    chunk_rows: int = 80
    max_parallel_chunks: int = 4
    min_confidence: float = 0.5
    fallback_contract_confidence: float = 0.75
    ai_fallback_for_unmapped_sheets: bool = True


@dataclass(frozen=True)
class ReconciliationConfig:
    duplicate_threshold: float = 0.85
    value_tolerance: float = 0.01  # relative
    contract_match_threshold: float = 0.8


@dataclass(frozen=True)
class ProgressConfig:
    ttl_seconds: float = 300.0


@dataclass(frozen=True)
class ImportConfig:
    source_directory: str
    team_id: str
    profession: str = "arquitetura"
    timezone: str = "America/Sao_Paulo"
    ai: AIConfig = field(default_factory=AIConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing/invalid, or the data violates it
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

    tz = data.get("timezone", "America/Sao_Paulo")
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone: {tz}") from e

    return ImportConfig(
        source_directory=data["source_directory"],
        team_id=data["team_id"],
        profession=data.get("profession", "arquitetura"),
        timezone=tz,
        ai=AIConfig(**data.get("ai", {})),
        extraction=ExtractionConfig(**data.get("extraction", {})),
        reconciliation=ReconciliationConfig(**data.get("reconciliation", {})),
        progress=ProgressConfig(**data.get("progress", {})),
        database=DatabaseConfig(**data.get("database", {})),
    )
