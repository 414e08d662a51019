# provisioner/config_loader.py
# -*- coding: utf-8 -*-
"""
Configuration loader for the provisioner.

Handles loading settings from Pydantic model defaults, environment variables,
a YAML file and command-line arguments, applying this order of precedence:
1. Pydantic Model Defaults
2. Environment Variables (``PIPROV_`` prefix, ``__`` for nesting)
3. YAML Configuration File
4. Command-Line Arguments
"""

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel

from .config_models import AppSettings

module_logger = logging.getLogger(__name__)


def _deep_update(
    source: Dict[str, Any], overrides: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Recursively updates ``source`` with values from ``overrides``. Nested
    dictionaries are merged; None values in ``overrides`` never replace an
    existing value.

    Parameters:
        source: Dict[str, Any]
            The dictionary to be updated. Modified in place.
        overrides: Dict[str, Any]
            The values to apply.

    Returns:
        Dict[str, Any]: The updated dictionary.
    """
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and key in source
            and isinstance(source[key], dict)
        ):
            source[key] = _deep_update(source[key], value)
        elif value is not None:
            source[key] = value
        elif key not in source:
            source[key] = value
    return source


def _excluded_values(model: BaseModel) -> Dict[str, Any]:
    """Collects fields declared with ``exclude=True`` (secrets), which model_dump() omits."""
    values: Dict[str, Any] = {}
    for name, field in type(model).model_fields.items():
        value = getattr(model, name)
        if isinstance(value, BaseModel):
            nested = _excluded_values(value)
            if nested:
                values[name] = nested
        elif field.exclude and value is not None:
            values[name] = value
    return values


def _settings_as_dict(settings: AppSettings) -> Dict[str, Any]:
    return _deep_update(settings.model_dump(), _excluded_values(settings))


def _read_yaml(
    yaml_config_path: Path, logger_to_use: logging.Logger
) -> Dict[str, Any]:
    if not yaml_config_path.is_file():
        logger_to_use.debug(
            f"Configuration file '{yaml_config_path}' not found. Using defaults, environment variables, and CLI args."
        )
        return {}
    try:
        with open(yaml_config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger_to_use.warning(
            f"Could not parse YAML config file '{yaml_config_path}': {e}. Using defaults and environment variables."
        )
        return {}
    except OSError as e:
        logger_to_use.warning(
            f"Could not read config file '{yaml_config_path}': {e}. Using defaults and environment variables."
        )
        return {}

    if yaml_data is None:
        return {}
    if not isinstance(yaml_data, dict):
        logger_to_use.warning(
            f"Config file '{yaml_config_path}' does not contain a valid YAML dictionary. Ignoring."
        )
        return {}
    logger_to_use.debug(f"Loaded configuration from {yaml_config_path}")
    return yaml_data


def _cli_overrides(cli_args: argparse.Namespace) -> Dict[str, Any]:
    cli_arg_dict = vars(cli_args)
    overrides: Dict[str, Any] = {}
    paths: Dict[str, Any] = {}

    for cli_key, cli_value in cli_arg_dict.items():
        if cli_value is None:
            continue
        if cli_key == "non_interactive" and cli_value:
            overrides["non_interactive"] = True
        elif cli_key == "verbose" and cli_value:
            overrides["log_level"] = "DEBUG"
        elif cli_key in ("state_file", "log_file", "summary_file"):
            paths[cli_key] = str(cli_value)

    if paths:
        overrides["paths"] = paths
    return overrides


def load_app_settings(
    cli_args: Optional[argparse.Namespace] = None,
    config_file_path: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
) -> AppSettings:
    """
    Loads application settings.

    Args:
        cli_args: Parsed command-line arguments (from argparse).
        config_file_path: Path to the YAML configuration file. Defaults to
            ``config.yaml`` in the current directory.
        current_logger: Optional logger to use instead of the module logger.

    Returns:
        An instance of AppSettings with the fully resolved configuration.
    """
    logger_to_use = current_logger if current_logger else module_logger

    # BaseSettings reads the environment here, so this holds defaults < env.
    current_values_dict = _settings_as_dict(AppSettings())

    yaml_path = Path(config_file_path or "config.yaml").expanduser()
    current_values_dict = _deep_update(
        current_values_dict, _read_yaml(yaml_path, logger_to_use)
    )

    if cli_args is not None:
        current_values_dict = _deep_update(
            current_values_dict, _cli_overrides(cli_args)
        )

    return AppSettings(**current_values_dict)
