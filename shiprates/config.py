"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. Explicit path argument (or the SHIPRATES_CONFIG env var)
2. ./shiprates.yaml (working directory)
3. ~/.shiprates/config.yaml (user home)

Environment variables override YAML: SHIPRATES_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
When no file is found, defaults (plus env overrides) are used.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "SHIPRATES_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class DatabaseConfig(BaseModel):
    """Persistence collaborator settings."""

    url: str = "sqlite:///./shiprates.db"
    echo: bool = False


class CacheConfig(BaseModel):
    """Rate cache bounds."""

    max_entries: int = Field(default=1000, ge=1)
    default_ttl_seconds: float = Field(default=300.0, gt=0)


class BatchingConfig(BaseModel):
    """Progressive batcher thresholds."""

    batch_size: int = Field(default=50, ge=1)
    batch_timeout_seconds: float = Field(default=30.0, gt=0)


class AutoSaveConfig(BaseModel):
    """Auto-save debounce window."""

    debounce_seconds: float = Field(default=1.5, gt=0)


class PollingConfig(BaseModel):
    """Background job poller cadence (2-5 seconds)."""

    interval_seconds: float = Field(default=2.0, ge=2.0, le=5.0)


class WorkerConfig(BaseModel):
    """CSV worker chunking and cooperative-yield cadence."""

    chunk_size: int = Field(default=500, ge=1)
    map_yield_every: int = Field(default=100, ge=1)
    validate_yield_every: int = Field(default=50, ge=1)


class PipelineConfig(BaseModel):
    """Rate lookup fan-out."""

    concurrency: int = Field(default=5, ge=1)
    default_service_types: list[str] = Field(default_factory=list)


class ApiConfig(BaseModel):
    """HTTP surface settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    api_key: str | None = None
    log_level: str = "info"


class AppConfig(BaseModel):
    """Top-level shiprates configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    auto_save: AutoSaveConfig = Field(default_factory=AutoSaveConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


def _find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    candidates = [
        Path.cwd() / "shiprates.yaml",
        Path.cwd() / "shiprates.yml",
        Path.home() / ".shiprates" / "config.yaml",
        Path.home() / ".shiprates" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply SHIPRATES_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix so multi-word section names
    like ``auto_save`` are handled correctly: ``SHIPRATES_AUTO_SAVE_DEBOUNCE_SECONDS``
    maps to section ``auto_save``, field ``debounce_seconds``.
    """
    known_sections = sorted(AppConfig.model_fields.keys(), key=len, reverse=True)
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if matched_section not in data or data[matched_section] is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            # Coerce to int or bool; pydantic handles floats and strings
            try:
                data[matched_section][matched_field] = int(value)
            except ValueError:
                if value.lower() in ("true", "false"):
                    data[matched_section][matched_field] = value.lower() == "true"
                else:
                    data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> AppConfig:
    """Load shiprates configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, SHIPRATES_CONFIG
            and then the standard locations are searched.

    Returns:
        Parsed and validated AppConfig.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    config_path = config_path or os.environ.get("SHIPRATES_CONFIG") or None
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return AppConfig(**data)
