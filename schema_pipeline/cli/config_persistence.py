"""
Configuration persistence for the Schema Pipeline.

Pipeline configurations are stored as YAML or TOML; the format is chosen
from the file extension. TOML is parsed with tomllib and written with toml.
"""

import os
import tomllib
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Union

import toml
import yaml
from pydantic import ValidationError as PydanticValidationError

from schema_pipeline.core.exceptions import ConfigurationError
from schema_pipeline.models.config import PipelineConfig

YAML_SUFFIXES = (".yaml", ".yml")
TOML_SUFFIXES = (".toml",)
TIMEOUT_ENV_VAR = "MIGRATION_TIMEOUT"


def _detect_format(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in YAML_SUFFIXES:
        return "yaml"
    if suffix in TOML_SUFFIXES:
        return "toml"
    raise ConfigurationError(f"Unsupported file format: {path.suffix}. Use .yaml, .yml or .toml")


def load_config(file_path: Union[str, Path]) -> PipelineConfig:
    """
    Load a pipeline configuration from file.

    Args:
        file_path: Path to a YAML or TOML configuration file

    Returns:
        Validated PipelineConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    path = Path(file_path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {file_path}")

    format = _detect_format(path)
    try:
        if format == 'yaml':
            with open(path, 'r', encoding='utf-8') as f:
                config_dict = yaml.safe_load(f)
        else:
            with open(path, 'rb') as f:
                config_dict = tomllib.load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML format: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read configuration: {e}") from e

    if not config_dict:
        raise ConfigurationError("Configuration file is empty")

    return config_from_dict(config_dict)


def config_from_dict(config_dict: Dict[str, Any]) -> PipelineConfig:
    """Validate a raw mapping into a PipelineConfig."""
    try:
        return PipelineConfig(**config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    except TypeError as e:
        raise ConfigurationError(f"Configuration must be a mapping: {e}") from e


def save_config(config: PipelineConfig, file_path: Union[str, Path]) -> str:
    """
    Save a pipeline configuration to file.

    Returns:
        Path of the written file
    """
    path = Path(file_path)
    format = _detect_format(path)
    config_dict = config.model_dump(mode="json", exclude_none=True)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            if format == "yaml":
                yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
            else:
                toml.dump(config_dict, f)
    except OSError as e:
        raise ConfigurationError(f"Failed to save configuration: {e}") from e

    return str(path)


def apply_environment_overrides(config: PipelineConfig) -> PipelineConfig:
    """Apply process environment overrides (``MIGRATION_TIMEOUT`` in seconds)."""
    raw = os.environ.get(TIMEOUT_ENV_VAR)
    if not raw:
        return config

    try:
        seconds = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{TIMEOUT_ENV_VAR} must be a number of seconds, got: {raw}") from e
    if seconds <= 0:
        raise ConfigurationError(f"{TIMEOUT_ENV_VAR} must be positive, got: {raw}")

    timeouts = config.timeouts.model_copy(update={"call_timeout": timedelta(seconds=seconds)})
    return config.model_copy(update={"timeouts": timeouts})
