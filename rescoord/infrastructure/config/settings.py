"""Provides functions for loading and accessing configuration settings.

Supports loading from a YAML configuration file (~/.rescoord/config.yaml),
.env files and environment variables, plus typed accessors that turn the
raw values into CacheConfig, RateLimiterOptions and BackoffPolicy objects.

Example config.yaml::

    logging:
      level: DEBUG
    cache:
      api:
        max_size: 250
        default_ttl: 120
    rate_limit:
      news:
        max_requests: 100
        window_seconds: 86400
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from rescoord.domain.models.cache import CACHE_PRESETS, CacheConfig
from rescoord.domain.models.common import BackoffPolicy
from rescoord.domain.models.errors import ConfigurationError
from rescoord.domain.models.resilience import (
    DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_SECONDS, RateLimiterOptions
)

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".rescoord"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "RESCOORD_"

DEFAULT_BATCH_DELAY_SECONDS = 0.05

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False

def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE,
    env_file: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to the accessors

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.info("Configuration loading process completed.")

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None

def env_var_name(key: str) -> str:
    """Maps a dotted key to its environment variable, e.g. 'cache.api.max_size' -> 'RESCOORD_CACHE_API_MAX_SIZE'."""
    return ENV_PREFIX + key.upper().replace('.', '_')

def _coerce(value: str) -> Any:
    """Converts an environment string to bool/int/float where it looks like one."""
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except ValueError:
        return value

def _lookup_nested(data: Dict[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    node: Any = data
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node

def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key.

    Priority:
    1. Test configuration (if set)
    2. Environment variable (RESCOORD_ prefix, dots become underscores)
    3. YAML config (dotted keys walk nested mappings)
    4. Default value

    Args:
        key: The configuration key (e.g., 'cache.api.max_size')
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if not _loaded:
        load_configuration()

    value = _lookup_nested(_config, key)
    if value is not None:
        return value

    return default

def set_config(key: str, value: Any) -> None:
    """Sets a configuration value in memory for the running process."""
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values that override every other source."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")

# --- Typed Accessors ---

def _number(key: str, default: Any, kind: type) -> Any:
    value = get_config(key, default)
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Config key '{key}' must be of type {kind.__name__}, got {value!r}")

def get_cache_config(profile: str = "default") -> CacheConfig:
    """Builds the CacheConfig of a named profile (presets: default, api, image)."""
    base = CACHE_PRESETS.get(profile, CACHE_PRESETS["default"])
    prefix = f"cache.{profile}"
    try:
        return CacheConfig(
            max_size=_number(f"{prefix}.max_size", base.max_size, int),
            default_ttl=_number(f"{prefix}.default_ttl", base.default_ttl, float),
            cleanup_interval=_number(f"{prefix}.cleanup_interval", base.cleanup_interval, float),
            compression=bool(get_config(f"{prefix}.compression", base.compression)),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid cache profile '{profile}': {e}")

def get_rate_limiter_options(name: str = "default") -> RateLimiterOptions:
    """Builds RateLimiterOptions for a named limiter."""
    prefix = f"rate_limit.{name}"
    try:
        return RateLimiterOptions(
            max_requests=_number(f"{prefix}.max_requests", DEFAULT_MAX_REQUESTS, int),
            window_seconds=_number(f"{prefix}.window_seconds", DEFAULT_WINDOW_SECONDS, float),
            name=name,
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid rate limiter '{name}': {e}")

def get_batch_delay() -> float:
    return _number("batch.delay_seconds", DEFAULT_BATCH_DELAY_SECONDS, float)

def get_batch_max_wait() -> Optional[float]:
    value = get_config("batch.max_wait_seconds")
    return None if value is None else _number("batch.max_wait_seconds", value, float)

def get_backoff_policy() -> BackoffPolicy:
    return BackoffPolicy(
        max_retries=_number("retry.max_retries", 3, int),
        initial_delay=_number("retry.initial_delay", 1.0, float),
        factor=_number("retry.factor", 2.0, float),
        max_delay=_number("retry.max_delay", 60.0, float),
    )
