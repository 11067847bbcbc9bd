"""Configuration management for imgbudget."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from imgbudget.constants import (
    CONFIG_ENV_VAR,
    CONFIG_FILENAME,
    DEFAULT_BATCH_CHUNK_SIZE,
    DEFAULT_BYTE_BUDGET,
    DEFAULT_COMPRESSION_POLICY,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_RETENTION,
    DEFAULT_LOG_ROTATION,
    DEFAULT_NETWORK_CONCURRENCY,
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_THUMBNAIL_QUALITY,
    DEFAULT_THUMBNAIL_SIZE,
    DEFAULT_THUMBNAIL_TIMEOUT,
    DEFAULT_USER_AGENT,
    DEFAULT_USER_CONFIG_DIR,
    EMERGENCY_QUALITY,
    EMERGENCY_SCALE,
    RANGE_PROBE_BYTES,
)
from imgbudget.errors import ConfigError
from imgbudget.utils.format import parse_byte_size


class NetworkConfig(BaseModel):
    """Outbound network settings for size probes and image loads."""

    concurrency: int = Field(default=DEFAULT_NETWORK_CONCURRENCY, ge=1)
    timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT, gt=0)
    range_probe_bytes: int = Field(default=RANGE_PROBE_BYTES, ge=1)
    user_agent: str = DEFAULT_USER_AGENT


class ScanConfig(BaseModel):
    """Discovery scan settings."""

    chunk_size: int = Field(default=DEFAULT_BATCH_CHUNK_SIZE, ge=1)
    thumbnail_size: int = Field(default=DEFAULT_THUMBNAIL_SIZE, ge=1)
    thumbnail_timeout: float = Field(default=DEFAULT_THUMBNAIL_TIMEOUT, gt=0)
    thumbnail_quality: int = Field(default=DEFAULT_THUMBNAIL_QUALITY, ge=1, le=100)
    include_content: bool = True  # Scan the content repository phase


class PolicyEntryConfig(BaseModel):
    """A (scale, quality) pair for the compression search."""

    scale: float = Field(gt=0, le=1.0)
    quality: float = Field(gt=0, le=1.0)


def _default_policy() -> list[PolicyEntryConfig]:
    return [
        PolicyEntryConfig(scale=scale, quality=quality)
        for scale, quality in DEFAULT_COMPRESSION_POLICY
    ]


class CompressionConfig(BaseModel):
    """Compression search settings."""

    budget: int = Field(default=DEFAULT_BYTE_BUDGET, gt=0)
    format: Literal["webp", "jpeg"] = DEFAULT_OUTPUT_FORMAT
    policy: list[PolicyEntryConfig] = Field(default_factory=_default_policy)
    emergency: PolicyEntryConfig = Field(
        default_factory=lambda: PolicyEntryConfig(
            scale=EMERGENCY_SCALE, quality=EMERGENCY_QUALITY
        )
    )

    @field_validator("budget", mode="before")
    @classmethod
    def _parse_budget(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_byte_size(value)
        return value

    @property
    def mime_type(self) -> str:
        return f"image/{self.format}"


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = DEFAULT_LOG_LEVEL
    dir: str | None = None
    rotation: str = DEFAULT_LOG_ROTATION
    retention: str = DEFAULT_LOG_RETENTION


class ImgBudgetConfig(BaseModel):
    """Root configuration."""

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    log: LogConfig = Field(default_factory=LogConfig)


def _set_nested_value(data: dict[str, Any], key_path: str, value: Any) -> None:
    """Set a value in a nested dict using dot notation."""
    keys = key_path.split(".")
    current = data
    for key in keys[:-1]:
        if key not in current or not isinstance(current[key], dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


class ConfigManager:
    """Load, query and save imgbudget configuration."""

    DEFAULT_USER_CONFIG_DIR = Path(DEFAULT_USER_CONFIG_DIR).expanduser()

    def __init__(self) -> None:
        self._config: ImgBudgetConfig | None = None
        self._config_path: Path | None = None

    @property
    def config(self) -> ImgBudgetConfig:
        """Get the current configuration, loading defaults if needed."""
        if self._config is None:
            self._config = ImgBudgetConfig()
        return self._config

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def load(self, config_path: Path | str | None = None) -> ImgBudgetConfig:
        """Load configuration.

        Resolution order:
        1. Explicit ``config_path``
        2. ``IMGBUDGET_CONFIG`` environment variable
        3. ./imgbudget.json (current directory)
        4. ~/.imgbudget/config.json (user directory)
        5. Built-in defaults

        Raises:
            ConfigError: If the selected file is unreadable or invalid
        """
        resolved_path = self._resolve_config_path(config_path)
        if resolved_path is None:
            self._config = ImgBudgetConfig()
            self._config_path = None
            return self._config

        data = self._load_json(resolved_path)
        try:
            self._config = ImgBudgetConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(
                f"Invalid configuration in {resolved_path}: {e}",
                path=str(resolved_path),
            ) from e
        self._config_path = resolved_path
        return self._config

    def _resolve_config_path(self, config_path: Path | str | None) -> Path | None:
        if config_path:
            path = Path(config_path).expanduser()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}", path=str(path))
            return path

        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            path = Path(env_path).expanduser()
            if path.exists():
                return path

        local_config = Path.cwd() / CONFIG_FILENAME
        if local_config.exists():
            return local_config

        user_config = self.DEFAULT_USER_CONFIG_DIR / "config.json"
        if user_config.exists():
            return user_config

        return None

    def _load_json(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}", path=str(path)) from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be an object: {path}", path=str(path))
        return data

    def save(self, path: Path | str | None = None) -> Path:
        """Write the current configuration as JSON and return the path used."""
        if path is not None:
            save_path = Path(path).expanduser()
        elif self._config_path is not None:
            save_path = self._config_path
        else:
            save_path = self.DEFAULT_USER_CONFIG_DIR / "config.json"
        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, "w", encoding="utf-8") as f:
            json.dump(self.config.model_dump(mode="json"), f, indent=2)
        self._config_path = save_path
        return save_path

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key path (e.g. ``scan.chunk_size``)."""
        current: Any = self.config.model_dump()
        for part in key.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dotted key path, revalidating the tree.

        Raises:
            ConfigError: If the resulting configuration is invalid
        """
        data = self.config.model_dump()
        _set_nested_value(data, key, value)
        try:
            self._config = ImgBudgetConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid value for {key}: {e}") from e
