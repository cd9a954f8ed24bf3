"""
Configuration loader for vibe-checkpoint.

This module provides configuration management with:
- Multiple configuration sources (JSON, YAML, TOML, .env files, dicts)
- Environment variable overrides
- Schema validation via pydantic
- Configuration merging by priority
"""

import os
import json
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("vibe-checkpoint.config")

ENV_PREFIX = "VIBE_"
ENV_NESTING = "__"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".vibe" / "logs")
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 10

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        """File log format: ``json`` lines or plain ``text``."""
        if v.lower() not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}")
        return v.lower()


class CheckpointConfig(BaseModel):
    """Checkpoint system configuration."""
    # None means "<working directory>/.vibe"
    data_dir: Optional[Path] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    compression: str = "gzip"
    compression_level: int = 6
    include_header: bool = True

    @field_validator('compression')
    @classmethod
    def validate_compression(cls, v):
        """Validate compression kind."""
        valid = ["none", "gzip", "zstd"]
        if v.lower() not in valid:
            raise ValueError(f"Invalid compression: {v}")
        return v.lower()

    @field_validator('max_file_size')
    @classmethod
    def validate_max_file_size(cls, v):
        """Size ceiling must be positive."""
        if v <= 0:
            raise ValueError("max_file_size must be positive")
        return v

    def resolve_data_dir(self, working_directory: Path) -> Path:
        """Resolve the application data directory for a working tree."""
        if self.data_dir is not None:
            return Path(self.data_dir).expanduser().absolute()
        return Path(working_directory).absolute() / ".vibe"


class VibeConfig(BaseModel):
    """Main configuration."""
    app_name: str = "vibe-checkpoint"
    debug: bool = False

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, env_prefix: str = ENV_PREFIX):
        """Initialize configuration loader."""
        self.env_prefix = env_prefix
        self._sources: List[ConfigSource] = []
        self._config: Optional[VibeConfig] = None

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        elif suffix == ".env" or path.name == ".env":
            return "env"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    def load(self) -> VibeConfig:
        """
        Load configuration from all sources.

        Lower-priority sources are merged first so higher priorities win;
        environment variables are applied last.

        Returns:
            Merged configuration
        """
        merged_data: Dict[str, Any] = {}

        for source in sorted(self._sources, key=lambda s: s.priority):
            try:
                data = self._load_source(source)
            except (OSError, ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
                raise ConfigurationError(
                    f"Failed to load configuration from {source.path or 'dict'}: {e}",
                    cause=e
                ) from e
            merged_data = self._deep_merge(merged_data, data)

        merged_data = self._deep_merge(merged_data, self._load_env_vars())

        try:
            self._config = VibeConfig(**merged_data)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                errors.append(f"{field}: {error['msg']}")

            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}"
            ) from e

        logger.info("configuration_loaded", sources=len(self._sources))
        return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text(encoding="utf-8")

        if source.source_type == "json":
            return json.loads(content)
        elif source.source_type == "yaml":
            return yaml.safe_load(content) or {}
        elif source.source_type == "toml":
            return toml.loads(content)
        elif source.source_type == "env":
            return self._parse_env_file(content)
        else:
            raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _parse_env_file(self, content: str) -> Dict[str, Any]:
        """Parse .env file format (``VIBE_CHECKPOINT__COMPRESSION=zstd``)."""
        result: Dict[str, Any] = {}

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            if key.startswith(self.env_prefix):
                key = key[len(self.env_prefix):]
            self._set_nested(result, key, value.strip().strip('"').strip("'"))

        return result

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(result, key[len(self.env_prefix):], value)

        return result

    def _set_nested(self, target: Dict[str, Any], key: str, value: str) -> None:
        """Store ``value`` under a ``__``-separated key path."""
        parts = [p for p in key.lower().split(ENV_NESTING) if p]
        if not parts:
            return

        current = target
        for part in parts[:-1]:
            current = current.setdefault(part, {})
            if not isinstance(current, dict):
                return

        current[parts[-1]] = self._convert_value(value)

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        if value.startswith("/") or value.startswith("~"):
            return Path(value).expanduser()

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> VibeConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    working_directory: Optional[Path] = None
) -> VibeConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge
        working_directory: Project root searched for ``vibe.yaml`` / ``vibe.json``

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader()
    cwd = Path(working_directory) if working_directory else Path.cwd()

    default_paths = [
        Path.home() / ".vibe" / "config.yaml",
        Path.home() / ".vibe" / "config.json",
        cwd / "vibe.yaml",
        cwd / "vibe.json",
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return loader.load()


__all__ = [
    'VibeConfig',
    'LoggingConfig',
    'CheckpointConfig',
    'ConfigLoader',
    'ConfigSource',
    'load_config',
]
