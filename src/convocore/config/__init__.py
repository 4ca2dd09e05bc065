# src/convocore/config/__init__.py
"""
Configuration module for the convocore library.

This package handles the loading and validation of engine settings,
leveraging the `confy` library and a default TOML configuration file.

Configuration files:
    - default_config.toml: Packaged defaults
    - Custom config: Specified via ConversationEngine.create(config_file_path=...)

Environment variables:
    - Prefix: CONVOCORE_
    - Nested keys use double underscores: CONVOCORE_SYNC__POOL_SIZE
"""

from .loader import load_config, load_default_config_dict, load_logging_section
from .models import (BlockLimitsConfig, EngineConfig, RelevanceConfig,
                     SessionConfig, StrategyWeights, SyncConfig,
                     UpstreamConfig)

__all__ = [
    "BlockLimitsConfig",
    "EngineConfig",
    "RelevanceConfig",
    "SessionConfig",
    "StrategyWeights",
    "SyncConfig",
    "UpstreamConfig",
    "load_config",
    "load_default_config_dict",
    "load_logging_section",
]
