# src/convocore/config/loader.py
"""
Configuration loading for convocore.

Defaults are read from the packaged ``default_config.toml`` and layered
with an optional user TOML file, ``CONVOCORE_`` environment variables
and a runtime overrides dictionary by ``confy``. The merged engine
sections are validated into :class:`EngineConfig`; the ``[logging]``
section is handed to :mod:`convocore.logging_config` untouched.
"""

import importlib.resources
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigError
from .models import EngineConfig

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "CONVOCORE"


def load_default_config_dict() -> Dict[str, Any]:
    """Read the packaged default configuration as a plain dictionary."""
    default_config_path = importlib.resources.files("convocore.config").joinpath("default_config.toml")
    with default_config_path.open("rb") as f:
        return tomllib.load(f)


def _section_as_dict(section: Any) -> Dict[str, Any]:
    if hasattr(section, "as_dict"):
        return section.as_dict()
    if isinstance(section, dict):
        return dict(section)
    return {}


def load_confy_config(
    config_file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
) -> Any:
    """
    Build the layered confy ``Config`` object.

    Raises:
        ConfigError: If confy cannot load or merge the sources.
    """
    try:
        from confy.loader import Config as ConfyConfig

        return ConfyConfig(
            defaults=load_default_config_dict(),
            file_path=str(config_file_path) if config_file_path else None,
            prefix=env_prefix,
            overrides_dict=overrides,
        )
    except Exception as e:
        raise ConfigError(f"convocore configuration loading failed: {e}") from e


def load_config(
    config_file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
) -> EngineConfig:
    """
    Load and validate the engine configuration.

    Args:
        config_file_path: Optional user TOML file layered over the defaults.
        overrides: Dictionary merged last, e.g. ``{"sync.pool_size": 8}``.
        env_prefix: Environment variable prefix understood by confy.

    Returns:
        The validated EngineConfig.

    Raises:
        ConfigError: If loading fails or a value is out of range.
    """
    confy_config = load_confy_config(config_file_path, overrides, env_prefix)
    data = {
        key: _section_as_dict(confy_config.get(key, {}))
        for key in ("blocks", "relevance", "session", "sync", "upstream")
    }
    data["log_level"] = confy_config.get("log_level", "INFO")
    try:
        engine_config = EngineConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid convocore configuration: {e}") from e
    logger.debug("Engine configuration loaded (file=%s, env_prefix=%s)", config_file_path, env_prefix)
    return engine_config


def load_logging_section(
    config_file_path: Optional[Union[str, Path]] = None,
    env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
) -> Dict[str, Any]:
    """Return the merged ``[logging]`` section for the logging manager."""
    confy_config = load_confy_config(config_file_path, None, env_prefix)
    return _section_as_dict(confy_config.get("logging", {}))
