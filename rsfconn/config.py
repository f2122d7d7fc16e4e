#!/usr/bin/env python3
"""
Configuration loader for the resting-state connectivity pipeline.

Handles:
- Loading YAML configuration files
- Merging study configs with packaged defaults
- Environment variable substitution
- Configuration validation
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union
import yaml


DEFAULT_CONFIG_PATH = Path(__file__).parent / 'configs' / 'default.yaml'

VALID_INTERPOLATORS = ('genericLabel', 'nearestNeighbor')
VALID_FILTER_BACKENDS = ('ants', 'nilearn')
VALID_CORRELATION_METHODS = ('pearson', 'spearman')
VALID_CORRECTIONS = (None, 'fdr_bh')
PREPROCESS_OPTIONS = (
    'motion_correction', 'motion_transform', 'compcor_components', 'compcor_quantile',
    'frequency_low', 'frequency_high', 'smoothing_sigma', 'global_signal_regression',
    'motion_as_nuisance', 'fd_threshold', 'censor_high_motion', 'filter_backend',
    'ica_components', 'random_state',
)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required parameters."""
    pass


def load_yaml(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Parameters
    ----------
    file_path : Path
        Path to YAML file

    Returns
    -------
    dict
        Loaded configuration

    Raises
    ------
    ConfigurationError
        If file doesn't exist or YAML is invalid
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, 'r') as f:
            config = yaml.safe_load(f)
        return config if config is not None else {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}")


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two configuration dictionaries.

    Parameters
    ----------
    base : dict
        Base configuration (defaults)
    override : dict
        Override configuration (study-specific)

    Returns
    -------
    dict
        Merged configuration (override takes precedence)
    """
    merged = base.copy()

    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def substitute_variables(config: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Substitute environment variables and config references in strings.

    Supports:
    - ${ENV_VAR} - environment variables
    - ${section.key} - references to other config values

    Parameters
    ----------
    config : dict
        Configuration dictionary
    context : dict, optional
        Context for variable substitution (defaults to config itself)

    Returns
    -------
    dict
        Configuration with substituted values
    """
    if context is None:
        context = config

    def substitute_string(value: str) -> str:
        pattern = r'\$\{([^}]+)\}'

        def replacer(match):
            var_path = match.group(1)

            if var_path in os.environ:
                return os.environ[var_path]

            try:
                val = context
                for part in var_path.split('.'):
                    val = val[part]
                return str(val)
            except (KeyError, TypeError):
                # Unknown variable - leave as is
                return match.group(0)

        return re.sub(pattern, replacer, value)

    def process_value(value: Any) -> Any:
        if isinstance(value, str):
            return substitute_string(value)
        elif isinstance(value, dict):
            return {k: process_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [process_value(item) for item in value]
        else:
            return value

    return process_value(config)


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate pipeline parameters.

    Parameters
    ----------
    config : dict
        Configuration to validate

    Raises
    ------
    ConfigurationError
        If required parameters are missing or out of range
    """
    for section in ('registration', 'preprocess', 'connectivity', 'graph'):
        if section not in config:
            raise ConfigurationError(f"Missing required section: {section}")

    registration = config['registration']
    models = registration.get('transform_models')
    if not models or not isinstance(models, list):
        raise ConfigurationError("registration.transform_models must be a non-empty list")
    selected = registration.get('selected_model')
    if selected not in models:
        raise ConfigurationError(
            f"registration.selected_model '{selected}' not in transform_models {models}"
        )
    if registration.get('interpolator') not in VALID_INTERPOLATORS:
        raise ConfigurationError(
            f"registration.interpolator must be one of {VALID_INTERPOLATORS}"
        )

    preprocess = config['preprocess']
    unknown = sorted(set(preprocess) - set(PREPROCESS_OPTIONS))
    if unknown:
        raise ConfigurationError(f"Unknown preprocess options: {unknown}")
    low = preprocess.get('frequency_low')
    high = preprocess.get('frequency_high')
    if low is not None and high is not None and not 0 <= low < high:
        raise ConfigurationError(
            f"Band-pass limits must satisfy 0 <= low < high, got {low} - {high}"
        )
    if int(preprocess.get('compcor_components', 0)) < 0:
        raise ConfigurationError("preprocess.compcor_components must be >= 0")
    if int(preprocess.get('ica_components', 0)) < 0:
        raise ConfigurationError("preprocess.ica_components must be >= 0")
    if float(preprocess.get('smoothing_sigma', 0.0)) < 0:
        raise ConfigurationError("preprocess.smoothing_sigma must be >= 0")
    if preprocess.get('filter_backend', 'ants') not in VALID_FILTER_BACKENDS:
        raise ConfigurationError(
            f"preprocess.filter_backend must be one of {VALID_FILTER_BACKENDS}"
        )

    connectivity = config['connectivity']
    if connectivity.get('method', 'pearson') not in VALID_CORRELATION_METHODS:
        raise ConfigurationError(
            f"connectivity.method must be one of {VALID_CORRELATION_METHODS}"
        )
    if connectivity.get('correction') not in VALID_CORRECTIONS:
        raise ConfigurationError(
            f"connectivity.correction must be one of {VALID_CORRECTIONS}"
        )
    alpha = connectivity.get('alpha', 0.05)
    if not 0 < alpha < 1:
        raise ConfigurationError(f"connectivity.alpha must be in (0, 1), got {alpha}")

    density = config['graph'].get('density')
    if density is None or not 0 < density <= 1:
        raise ConfigurationError(f"graph.density must be in (0, 1], got {density}")


def load_config(config_path: Optional[Union[str, Path]] = None, validate: bool = True) -> Dict[str, Any]:
    """
    Load and process configuration file.

    This is the main entry point for loading configs. It:
    1. Loads the packaged default config
    2. Merges the study config on top (if given)
    3. Substitutes variables
    4. Validates the result

    Parameters
    ----------
    config_path : Path, optional
        Path to study-specific configuration file
    validate : bool
        Whether to validate the configuration

    Returns
    -------
    dict
        Processed configuration

    Raises
    ------
    ConfigurationError
        If configuration is invalid
    """
    config = load_yaml(DEFAULT_CONFIG_PATH)

    if config_path is not None:
        study_config = load_yaml(Path(config_path))
        config = merge_configs(config, study_config)

    config = substitute_variables(config)

    if validate:
        validate_config(config)

    return config


def get_config_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Get a value from config using dot notation.

    Examples
    --------
    >>> get_config_value(config, 'preprocess.compcor_components')
    6
    >>> get_config_value(config, 'missing.key', default=0.3)
    0.3
    """
    try:
        value = config
        for part in key_path.split('.'):
            value = value[part]
        return value
    except (KeyError, TypeError):
        return default
