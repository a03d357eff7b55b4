"""
Generation configuration - YAML file with built-in defaults.

The configuration is read from ``configs/generation_config.yaml`` inside the
package unless another path is given. Values from the file are laid over the
defaults section by section, so a file only needs the keys it changes.
"""

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from py2volgen.core.errors import ConfigurationError, ErrorCodes

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "configs" / "generation_config.yaml"


def get_default_generation_config() -> dict:
    """Return the default generation config used when no YAML is found."""
    return {
        'metadata': {
            'data_source': 'This file was created by py2volgen',
            'description': 'Synthetic volume for testing purposes.',
        },
        'histogram': {
            'max_buckets': 4096,
            'gradient_bins': 256,
        },
        'bricking': {
            'default_overlap': 2,
            'memory_budget_bytes': 1024 * 1024 * 1024,
            'allow_compression': False,
            'temp_suffix': '.bricks.tmp',
        },
        'mandelbulb': {
            'power': 8,
            'bailout': 4.0,
            'max_iterations': None,
        },
        'generation': {
            'row_workers': 1,
        },
    }


@dataclass
class GenerationConfig:
    """Typed view of the generation configuration."""
    data_source: str
    description: str
    max_histogram_buckets: int
    gradient_bins: int
    default_overlap: int
    memory_budget_bytes: int
    allow_compression: bool
    temp_suffix: str
    mandelbulb_power: int
    mandelbulb_bailout: float
    mandelbulb_max_iterations: Optional[int]
    row_workers: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GenerationConfig':
        """Build a config from a nested dict (missing keys take defaults)."""
        merged = _merge(get_default_generation_config(), data or {})
        try:
            max_iterations = merged['mandelbulb']['max_iterations']
            config = cls(
                data_source=str(merged['metadata']['data_source']),
                description=str(merged['metadata']['description']),
                max_histogram_buckets=int(merged['histogram']['max_buckets']),
                gradient_bins=int(merged['histogram']['gradient_bins']),
                default_overlap=int(merged['bricking']['default_overlap']),
                memory_budget_bytes=int(merged['bricking']['memory_budget_bytes']),
                allow_compression=bool(merged['bricking']['allow_compression']),
                temp_suffix=str(merged['bricking']['temp_suffix']),
                mandelbulb_power=int(merged['mandelbulb']['power']),
                mandelbulb_bailout=float(merged['mandelbulb']['bailout']),
                mandelbulb_max_iterations=None if max_iterations is None else int(max_iterations),
                row_workers=int(merged['generation']['row_workers']),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid generation config: {e}",
                error_code=ErrorCodes.CONFIG_INVALID,
                cause=e
            )

        config.validate()
        return config

    def validate(self) -> None:
        checks = [
            ('histogram.max_buckets', self.max_histogram_buckets > 0),
            ('histogram.gradient_bins', self.gradient_bins > 0),
            ('bricking.default_overlap', self.default_overlap >= 0),
            ('bricking.memory_budget_bytes', self.memory_budget_bytes > 0),
            ('mandelbulb.bailout', self.mandelbulb_bailout > 0),
            ('mandelbulb.max_iterations',
             self.mandelbulb_max_iterations is None or self.mandelbulb_max_iterations > 0),
            ('generation.row_workers', self.row_workers > 0),
        ]
        for name, ok in checks:
            if not ok:
                raise ConfigurationError(f"Invalid value for {name}",
                                         setting_name=name,
                                         error_code=ErrorCodes.CONFIG_INVALID)


def _merge(defaults: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(defaults)
    for section, values in overrides.items():
        if section not in merged:
            logger.warning(f"Ignoring unknown config section '{section}'")
            continue
        if not isinstance(values, dict):
            raise ConfigurationError(f"Config section '{section}' must be a mapping",
                                     setting_name=section,
                                     error_code=ErrorCodes.CONFIG_INVALID)
        for key, value in values.items():
            if key not in merged[section]:
                logger.warning(f"Ignoring unknown config key '{section}.{key}'")
                continue
            merged[section][key] = value
    return merged


def load_generation_config(config_path: Optional[Union[str, Path]] = None) -> GenerationConfig:
    """Load the generation config.

    Args:
        config_path: Path to a YAML config. Defaults to
            configs/generation_config.yaml inside the package.

    Raises:
        ConfigurationError: If an explicit path is missing or the file is invalid
    """
    explicit = config_path is not None
    config_path = Path(config_path) if explicit else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        if explicit:
            raise ConfigurationError(f"Config file not found: {config_path}",
                                     error_code=ErrorCodes.CONFIG_NOT_FOUND)
        logger.warning("Using default generation config")
        return GenerationConfig.from_dict({})

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {config_path}",
                                 error_code=ErrorCodes.CONFIG_INVALID, cause=e)

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping",
                                 error_code=ErrorCodes.CONFIG_INVALID)

    logger.info(f"Loaded generation config from {config_path}")
    return GenerationConfig.from_dict(data)
