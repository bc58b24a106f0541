"""
TaskTrack Configuration — Load and validate tasktrack.yaml at startup.

Usage:
    from tasktrack.engine.config import load_config, get_config

Resolution order for the config file:
    1. Explicit ``config_path`` argument
    2. ``TASKTRACK_CONFIG`` environment variable
    3. ``tasktrack.yaml`` found by walking up from the CWD
    4. Built-in defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

CONFIG_FILE_NAME = "tasktrack.yaml"
CONFIG_ENV_VAR = "TASKTRACK_CONFIG"


# ---------------------------------------------------------------------------
# Pydantic models for tasktrack.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///tasktrack.db"
    echo: bool = False
    timeout_seconds: int = Field(default=30, ge=1)
    create_tables: bool = True


class StorageConfig(BaseModel):
    blob_root: str = ".tasktrack/blobs"
    max_upload_size_mb: int = Field(default=10, ge=1)
    max_files_per_upload: int = Field(default=5, ge=1)
    allowed_extensions: List[str] = Field(
        default_factory=lambda: ["jpeg", "jpg", "png", "gif", "pdf", "doc", "docx", "txt", "zip"]
    )

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [ext.lower().lstrip(".") for ext in v if ext.strip()]


class QueryConfig(BaseModel):
    default_limit: int = Field(default=10, ge=1)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".tasktrack/logs"
    structured: bool = True

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"level must be a logging level name, got '{v}'")
        return v


class TaskTrackConfig(BaseModel):
    """Root model for tasktrack.yaml."""
    name: str = "TaskTrack"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    storage: StorageConfig = StorageConfig()
    query: QueryConfig = QueryConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[TaskTrackConfig] = None


def _find_config_file() -> Optional[Path]:
    """Find tasktrack.yaml by walking up from the CWD."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Optional[str] = None) -> TaskTrackConfig:
    """
    Load and validate tasktrack.yaml.

    Args:
        config_path: Explicit path to the YAML file. If None, uses the
                     TASKTRACK_CONFIG env var, then auto-discovers.

    Returns:
        Validated TaskTrackConfig instance (defaults if no file exists).
    """
    global _config

    if config_path is None:
        config_path = os.getenv(CONFIG_ENV_VAR)

    path = Path(config_path) if config_path else _find_config_file()
    if path is None or not path.exists():
        _config = TaskTrackConfig()
        return _config

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    # Accept both a flat layout and one wrapped under "tasktrack:"
    data = raw.get("tasktrack", raw)
    _config = TaskTrackConfig(**data)
    return _config


def get_config() -> TaskTrackConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config (tests, reloads)."""
    global _config
    _config = None
