from .config_loader import (
    EngineSettings,
    DEFAULT_ENGINE_CONFIG,
    flatten_engine_section,
    get_config_with_env_override,
    merge_configs,
)

__all__ = [
    'EngineSettings',
    'DEFAULT_ENGINE_CONFIG',
    'flatten_engine_section',
    'get_config_with_env_override',
    'merge_configs',
]
