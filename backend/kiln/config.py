"""
Runtime settings for Kiln.

Settings come from three layers, lowest precedence first:
1. Defaults declared on KilnSettings
2. settings.json inside the user data directory (if present)
3. KILN_* environment variables

The data directory defaults to ~/.kiln and holds projects.json (the
project store) and settings.json.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

ENV_DATA_DIR = "KILN_DATA_DIR"
ENV_MAX_WORKERS = "KILN_MAX_WORKERS"
ENV_DEBOUNCE_SECONDS = "KILN_DEBOUNCE_SECONDS"
ENV_COMPILE_TIMEOUT = "KILN_COMPILE_TIMEOUT"

PROJECTS_FILENAME = "projects.json"
SETTINGS_FILENAME = "settings.json"

DEFAULT_DATA_DIR = Path.home() / ".kiln"


class ConfigError(Exception):
    """Settings file or environment override is invalid."""

    pass


class KilnSettings(BaseModel):
    """
    Kiln runtime settings.

    Paths are stored as strings so the model serializes cleanly back to
    settings.json.
    """

    model_config = ConfigDict(extra="forbid")

    data_dir: str = Field(default=str(DEFAULT_DATA_DIR))

    # Watcher
    watch_enabled: bool = True
    debounce_seconds: float = Field(default=0.3, ge=0.0)

    # Build pool
    max_workers: int = Field(default=4, ge=1)
    compile_timeout_seconds: float = Field(default=60.0, gt=0.0)

    # Directory names never descended into while listing project files
    ignored_dir_names: List[str] = Field(
        default_factory=lambda: [".git", ".hg", ".svn", "node_modules", "__pycache__"]
    )

    # Compiler executables, keyed by tool name
    compiler_executables: Dict[str, str] = Field(
        default_factory=lambda: {"less": "lessc", "sass": "sass", "coffee": "coffee"}
    )

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: str) -> str:
        """Expand ~ and make the data directory absolute."""
        return str(Path(v).expanduser().resolve())

    @property
    def projects_file(self) -> Path:
        return Path(self.data_dir) / PROJECTS_FILENAME

    @property
    def settings_file(self) -> Path:
        return Path(self.data_dir) / SETTINGS_FILENAME


def _env_overrides() -> Dict[str, object]:
    overrides: Dict[str, object] = {}
    if os.environ.get(ENV_MAX_WORKERS):
        overrides["max_workers"] = os.environ[ENV_MAX_WORKERS]
    if os.environ.get(ENV_DEBOUNCE_SECONDS):
        overrides["debounce_seconds"] = os.environ[ENV_DEBOUNCE_SECONDS]
    if os.environ.get(ENV_COMPILE_TIMEOUT):
        overrides["compile_timeout_seconds"] = os.environ[ENV_COMPILE_TIMEOUT]
    return overrides


def load_settings(data_dir: Optional[str] = None) -> KilnSettings:
    """
    Load settings for a data directory.

    Args:
        data_dir: Data directory. Falls back to KILN_DATA_DIR, then ~/.kiln.

    Returns:
        Validated KilnSettings

    Raises:
        ConfigError: If settings.json is unreadable or any value is invalid
    """
    data_dir = data_dir or os.environ.get(ENV_DATA_DIR) or str(DEFAULT_DATA_DIR)
    settings_path = Path(data_dir).expanduser() / SETTINGS_FILENAME

    values: Dict[str, object] = {}
    if settings_path.is_file():
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                values = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read settings file {settings_path}: {e}") from e
        if not isinstance(values, dict):
            raise ConfigError(f"Settings file {settings_path} must contain a JSON object")
        logger.debug(f"Loaded settings from {settings_path}")

    values.update(_env_overrides())
    values["data_dir"] = data_dir

    try:
        return KilnSettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e


def save_settings(settings: KilnSettings) -> Path:
    """Write settings back to settings.json, creating the data directory."""
    path = settings.settings_file
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(exclude={"data_dir"})
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path
