"""Config subsystem public API.

Provides:
    get_config()      -> AggregatedConfig (cached)
    load_config(dir)  -> AggregatedConfig (fresh, uncached)
    as_dict()         -> dict representation (secrets masked)
    require_api_key() -> upstream key or ConfigError
    ConfigError       -> raised on validation / unknown key
"""

from .loader import (  # noqa: F401
    AggregatedConfig,
    get_config,
    load_config,
    as_dict,
    require_api_key,
    ConfigError,
    clear_config_cache,
)


def reset_for_tests() -> None:
    """Delegate to clear_config_cache(); kept for test fixtures."""
    clear_config_cache()


__all__ = [
    "AggregatedConfig",
    "get_config",
    "load_config",
    "as_dict",
    "require_api_key",
    "ConfigError",
    "clear_config_cache",
    "reset_for_tests",
]
