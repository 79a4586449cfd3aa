"""Settings management for Ethicrawler Shield.

Settings are read from a settings store at the moment they are needed, so a
site id or backend URL changed at runtime (for instance from an admin UI)
takes effect on the next request. Loaders build initial settings from files
and environment variables.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from copy import deepcopy
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Union

import toml
import yaml
from pydantic import BaseModel, Field

from ethicrawler_shield.consts import (
    DEFAULT_BACKEND_URL,
    FIRST_ATTEMPT_TIMEOUT_SECONDS,
    MAX_RECENT_ERRORS,
    MAX_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_RECORD_TTL_SECONDS,
    RETRY_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class ConfigFormat(str, Enum):
    """Settings file format enumeration."""
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"


class DetectorSettings(BaseModel):
    """Configuration for bot detection and event reporting."""

    # Site registration
    site_id: str = ""
    backend_url: str = DEFAULT_BACKEND_URL
    enabled: bool = True

    # Delivery
    first_attempt_timeout: float = Field(default=FIRST_ATTEMPT_TIMEOUT_SECONDS, gt=0)
    retry_timeout: float = Field(default=RETRY_TIMEOUT_SECONDS, gt=0)
    verify_ssl: bool = True

    # Retries
    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    retry_base_delay: float = Field(default=RETRY_BASE_DELAY_SECONDS, ge=0)
    retry_ttl: float = Field(default=RETRY_RECORD_TTL_SECONDS, gt=0)

    # Telemetry
    max_recent_errors: int = Field(default=MAX_RECENT_ERRORS, ge=1)
    debug: bool = False  # log successful deliveries at INFO

    # Request filtering
    excluded_path_prefixes: List[str] = Field(default_factory=list)
    debug_endpoint: bool = False


class SettingsStore(ABC):
    """Abstract base class for settings stores."""

    @abstractmethod
    def get(self) -> DetectorSettings:
        """Return the current settings."""
        pass

    @abstractmethod
    def update(self, **changes: Any) -> DetectorSettings:
        """Apply changes and return the new settings."""
        pass


class MemorySettingsStore(SettingsStore):
    """In-memory settings store."""

    def __init__(self, settings: Optional[DetectorSettings] = None, **overrides: Any):
        base = settings or DetectorSettings()
        if overrides:
            base = DetectorSettings.model_validate({**base.model_dump(), **overrides})
        self._settings = base
        self._lock = Lock()

    def get(self) -> DetectorSettings:
        with self._lock:
            return self._settings

    def update(self, **changes: Any) -> DetectorSettings:
        with self._lock:
            merged = {**self._settings.model_dump(), **changes}
            self._settings = DetectorSettings.model_validate(merged)
            logger.info(f"Settings updated: {sorted(changes)}")
            return self._settings


class SettingsLoader(ABC):
    """Abstract base class for settings loaders."""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def load(self) -> Dict[str, Any]:
        """Load raw settings values."""
        pass


class FileSettingsLoader(SettingsLoader):
    """File-based settings loader (JSON, YAML or TOML)."""

    def __init__(self, path: Union[str, Path], file_format: Optional[ConfigFormat] = None,
                 encoding: str = "utf-8"):
        super().__init__()
        self.file_path = Path(path)
        self.format = ConfigFormat(file_format or self._detect_format())
        self.encoding = encoding

    def _detect_format(self) -> str:
        """Detect file format from extension."""
        suffix = self.file_path.suffix.lower()
        format_map = {
            ".json": ConfigFormat.JSON,
            ".yaml": ConfigFormat.YAML,
            ".yml": ConfigFormat.YAML,
            ".toml": ConfigFormat.TOML,
        }
        return format_map.get(suffix, ConfigFormat.YAML).value

    def load(self) -> Dict[str, Any]:
        """Load settings from file; a missing file yields no values."""
        if not self.file_path.exists():
            self.logger.warning(f"Settings file not found: {self.file_path}")
            return {}

        content = self.file_path.read_text(encoding=self.encoding)
        try:
            if self.format == ConfigFormat.JSON:
                data = json.loads(content)
            elif self.format == ConfigFormat.TOML:
                data = toml.loads(content)
            else:
                data = yaml.safe_load(content)
        except Exception as e:
            self.logger.error(f"Failed to load settings from {self.file_path}: {e}")
            raise

        data = data or {}
        # Allow the settings to live under an `ethicrawler` section
        if isinstance(data.get("ethicrawler"), dict):
            data = data["ethicrawler"]
        return data


class EnvironmentSettingsLoader(SettingsLoader):
    """Environment variables settings loader."""

    def __init__(self, prefix: str = "ETHICRAWLER_", environ: Optional[Dict[str, str]] = None):
        super().__init__()
        self.prefix = prefix
        self.environ = environ if environ is not None else os.environ

    def load(self) -> Dict[str, Any]:
        """Load settings from environment variables."""
        config = {}
        known_fields = DetectorSettings.model_fields
        for key, value in self.environ.items():
            if not key.upper().startswith(self.prefix.upper()):
                continue
            name = key[len(self.prefix):].lower()
            if name not in known_fields:
                continue
            if name == "excluded_path_prefixes":
                config[name] = [item.strip() for item in value.split(",") if item.strip()]
            elif name in ("site_id", "backend_url"):
                config[name] = value
            else:
                config[name] = self._convert_type(value)
        return config

    def _convert_type(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        lowered = value.lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False
        if value.isdigit():
            return int(value)
        try:
            return float(value)
        except ValueError:
            return value


def load_settings(
    path: Optional[Union[str, Path]] = None,
    env_prefix: str = "ETHICRAWLER_",
    environ: Optional[Dict[str, str]] = None,
    **overrides: Any,
) -> DetectorSettings:
    """Build settings from defaults, an optional file, the environment and overrides.

    Later sources win: defaults < file < environment < explicit overrides.

    Examples:
        ```python
        settings = load_settings("ethicrawler.yaml")
        store = MemorySettingsStore(settings)
        ```
    """
    values: Dict[str, Any] = deepcopy(DetectorSettings().model_dump())
    if path is not None:
        values.update(FileSettingsLoader(path).load())
    values.update(EnvironmentSettingsLoader(env_prefix, environ).load())
    values.update(overrides)
    return DetectorSettings.model_validate(values)
