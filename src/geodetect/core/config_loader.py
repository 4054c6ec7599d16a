"""
Configuration loader for GeoDetect CLI commands using OmegaConf and Pydantic.

Configuration is looked up in a fallback chain (user file, packaged
``config/<command>.yaml``, built-in defaults), merged with command-line
overrides and validated with the Pydantic models.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from omegaconf import DictConfig, ListConfig, OmegaConf
from omegaconf.errors import OmegaConfBaseException
from yaml import YAMLError

from .config import ROOT
from .config_models import (
    ConfigModel,
    config_model_to_dict,
    create_default_config,
    validate_config_dict,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Load and manage configuration files for GeoDetect CLI commands using OmegaConf."""

    def load_config(
        self,
        command_type: str,
        config_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Union[DictConfig, ListConfig]:
        """
        Load configuration for a specific command type.

        Args:
            command_type: The command type (detect, landcover)
            config_path: Optional path to custom config file
            overrides: Optional CLI overrides to merge, ``None`` values are ignored

        Returns:
            OmegaConf DictConfig with merged configuration
        """
        base_config = self._load_base_config(command_type, config_path)

        if overrides:
            base_config = self._merge_overrides(base_config, overrides)

        return base_config

    def _load_base_config(
        self, command_type: str, config_path: Optional[str] = None
    ) -> Union[DictConfig, ListConfig]:
        """Load base configuration with fallback chain."""
        try:
            # 1. user-specified config file
            if config_path is not None:
                if not Path(config_path).exists():
                    raise ConfigurationError(
                        f"Configuration file not found: {config_path}"
                    )
                logger.info(f"Loading user-specified config: {config_path}")
                return OmegaConf.load(config_path)

            # 2. command-specific default config
            default_config_path = ROOT / "config" / f"{command_type}.yaml"
            if default_config_path.exists():
                logger.info(f"Loading default config: {default_config_path}")
                return OmegaConf.load(str(default_config_path))
        except (YAMLError, OmegaConfBaseException) as e:
            raise ConfigurationError(f"Error parsing configuration: {e}") from e

        # 3. built-in defaults
        logger.info("Using built-in defaults")
        return OmegaConf.create(self._get_builtin_defaults(command_type))

    def _merge_overrides(
        self, base_config: Union[DictConfig, ListConfig], overrides: Dict[str, Any]
    ) -> Union[DictConfig, ListConfig]:
        """Merge CLI overrides with base configuration using OmegaConf."""
        cleaned = _drop_none(overrides)
        if not cleaned:
            return base_config
        return OmegaConf.merge(base_config, OmegaConf.create(cleaned))

    def _get_builtin_defaults(self, command_type: str) -> Dict[str, Any]:
        """Get built-in default configuration for a command type."""
        return config_model_to_dict(create_default_config(command_type))

    def load_config_with_pydantic(
        self,
        command_type: str,
        config_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> ConfigModel:
        """
        Load configuration with Pydantic validation.

        Raises:
            ConfigurationError: If the file cannot be read or fails validation
        """
        base_config = self.load_config(command_type, config_path, overrides)
        config_dict = OmegaConf.to_container(base_config, resolve=True)
        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(config_dict).__name__}"
            )
        return validate_config_dict(config_dict, command_type)

    def save_config_model(self, config_model: ConfigModel, output_path: str) -> str:
        """Save a Pydantic config model to YAML file."""
        config = OmegaConf.create(config_model_to_dict(config_model))
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        OmegaConf.save(config, output_path)
        logger.info(f"Saved configuration to: {output_path}")
        return output_path


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {}
    for key, value in values.items():
        if isinstance(value, dict):
            value = _drop_none(value)
            if not value:
                continue
        if value is None:
            continue
        cleaned[key] = value
    return cleaned


# Global config loader instance
config_loader = ConfigLoader()


def load_config_with_pydantic(
    command_type: str,
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ConfigModel:
    """Load configuration with Pydantic validation."""
    return config_loader.load_config_with_pydantic(command_type, config_path, overrides)


def save_config_model(config_model: ConfigModel, output_path: str) -> str:
    """Save a Pydantic config model to YAML file."""
    return config_loader.save_config_model(config_model, output_path)
