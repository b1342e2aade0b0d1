"""Configuration loader for duckkv.

Supports two config sources:

1. **kind: Config YAML**, loaded via explicit path or ``DUCKKV_CONFIG_PATH``.
2. **pyproject.toml [tool.duckkv]**, auto-discovered from the working
   directory upwards.

Environment variables override file values.
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from duckkv.kernel.config.models import DuckKVConfig, LoggingConfig, StoreConfig
from duckkv.kernel.exceptions import ConfigurationError
from duckkv.kernel.logging import get_logger

logger = get_logger(__name__)

_STORE_ENV_OVERRIDES = {
    "DUCKKV_PATH": "path",
    "DUCKKV_TABLE": "table",
    "DUCKKV_ENCRYPTION_KEY": "encryption_key",
    "DUCKKV_KEY_SIZE": "key_size",
    "DUCKKV_NAMESPACE": "namespace",
}


class ConfigLoader:
    """Loads duckkv configuration from YAML or pyproject.toml."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

    def load(self, path: str | Path | None = None) -> DuckKVConfig:
        """Load configuration, falling back to defaults when no file is found.

        Parameters
        ----------
        path : str | Path | None
            Explicit config file. If None, searches using discovery order.

        Returns
        -------
        DuckKVConfig
            Parsed configuration with env substitution and overrides applied

        Raises
        ------
        ConfigurationError
            If an explicit path does not exist or the file is malformed
        """
        config_path = self._find_config_file(path)
        data: dict[str, Any] = {}
        if config_path is not None:
            logger.info("Loading configuration from {path}", path=config_path)
            data = self._read_file(config_path)
        data = self._substitute_env_vars(data)
        return self._parse_config(data)

    def _find_config_file(self, path: str | Path | None) -> Path | None:
        """Find configuration file.

        Discovery order:
        1. Explicit path argument
        2. ``DUCKKV_CONFIG_PATH`` env var
        3. ``pyproject.toml`` in CWD or a parent with ``[tool.duckkv]``
        """
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigurationError("loader", f"configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv("DUCKKV_CONFIG_PATH"):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from DUCKKV_CONFIG_PATH: {}", config_path)
                return config_path
            logger.warning("DUCKKV_CONFIG_PATH set but file not found: {}", config_path)

        current = Path.cwd()
        while True:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    data = tomllib.load(f)
                if "duckkv" in data.get("tool", {}):
                    return pyproject
            if current == current.parent:
                return None
            current = current.parent

    def _read_file(self, config_path: Path) -> dict[str, Any]:
        """Read the raw duckkv section of a YAML or TOML file."""
        if config_path.suffix in (".yaml", ".yml"):
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if not isinstance(data, dict):
                raise ConfigurationError(
                    "loader", f"expected a mapping, got {type(data).__name__}"
                )
            if data.get("kind") != "Config":
                raise ConfigurationError(
                    "loader",
                    f"YAML config must use 'kind: Config', got 'kind: {data.get('kind')}' "
                    f"in {config_path.name}",
                )
            spec = data.get("spec", {})
            if not isinstance(spec, dict):
                raise ConfigurationError("loader", "'spec' field must be a mapping")
            return spec

        with config_path.open("rb") as f:
            data = tomllib.load(f)
        if "tool" in data and "duckkv" in data["tool"]:
            return data["tool"]["duckkv"]
        if config_path.name == "pyproject.toml":
            logger.warning("No [tool.duckkv] section found in pyproject.toml, using defaults")
            return {}
        return data

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` placeholders with environment values."""
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                value = os.environ.get(match.group(1))
                if value is None:
                    logger.debug(
                        "Environment variable {} not found, keeping placeholder", match.group(0)
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any]) -> DuckKVConfig:
        """Build DuckKVConfig from raw data plus environment overrides."""
        store_data = {key: value for key, value in data.items() if key in StoreConfig.model_fields}
        for env_var, field_name in _STORE_ENV_OVERRIDES.items():
            if env_value := os.getenv(env_var):
                store_data[field_name] = env_value
                logger.debug("Overriding {} from env", field_name)

        try:
            store = StoreConfig(**store_data)
        except PydanticValidationError as e:
            raise ConfigurationError("store", str(e)) from e

        return DuckKVConfig(store=store, logging=self._parse_logging_config(data.get("logging", {})))

    def _parse_logging_config(self, logging_data: dict[str, Any]) -> LoggingConfig:
        """Parse logging settings; ``DUCKKV_LOG_LEVEL``/``DUCKKV_LOG_FORMAT`` win."""
        level = logging_data.get("level", "WARNING")
        format_type = logging_data.get("format", "structured")

        if env_level := os.getenv("DUCKKV_LOG_LEVEL"):
            level = env_level
        if env_format := os.getenv("DUCKKV_LOG_FORMAT"):
            format_type = env_format

        return LoggingConfig(
            level=level.upper(),
            format=format_type.lower(),
            output_file=logging_data.get("output_file"),
            use_color=logging_data.get("use_color", True),
            include_timestamp=logging_data.get("include_timestamp", True),
        )


def load_config(path: str | Path | None = None) -> DuckKVConfig:
    """Load duckkv configuration (see ConfigLoader.load)."""
    return ConfigLoader().load(path)


__all__ = ["ConfigLoader", "load_config"]
