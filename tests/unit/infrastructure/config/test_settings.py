import pytest
import yaml

from rescoord.domain.models.errors import ConfigurationError
from rescoord.infrastructure.config import settings
from rescoord.infrastructure.config.settings import (
    env_var_name, get_backoff_policy, get_batch_delay, get_batch_max_wait, get_cache_config,
    get_config, get_rate_limiter_options, load_configuration, set_config_for_testing
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "logging": {"level": "DEBUG"},
        "cache": {"api": {"max_size": 250, "default_ttl": 120}},
        "rate_limit": {"news": {"max_requests": 100, "window_seconds": 86400}},
        "batch": {"delay_seconds": 0.2, "max_wait_seconds": 1},
    }))
    load_configuration(config_file=path, force=True)
    return path


def test_env_var_name():
    assert env_var_name("cache.api.max_size") == "RESCOORD_CACHE_API_MAX_SIZE"

def test_defaults_without_any_source():
    assert get_config("logging.level", "WARNING") == "WARNING"
    assert get_cache_config() == settings.CACHE_PRESETS["default"]
    assert get_batch_delay() == 0.05
    assert get_batch_max_wait() is None
    assert get_backoff_policy() == {"max_retries": 3, "initial_delay": 1.0, "factor": 2.0, "max_delay": 60.0}

def test_yaml_values_are_read_by_dotted_key(config_file):
    assert get_config("logging.level") == "DEBUG"
    cache_config = get_cache_config("api")
    assert cache_config.max_size == 250
    assert cache_config.default_ttl == 120
    # Not overridden: taken from the preset
    assert cache_config.cleanup_interval == 30

    options = get_rate_limiter_options("news")
    assert options.max_requests == 100
    assert options.window_seconds == 86400
    assert options.name == "news"
    assert get_batch_delay() == 0.2
    assert get_batch_max_wait() == 1.0

def test_environment_overrides_yaml(config_file, monkeypatch):
    monkeypatch.setenv("RESCOORD_CACHE_API_MAX_SIZE", "42")
    monkeypatch.setenv("RESCOORD_CACHE_API_COMPRESSION", "true")
    cache_config = get_cache_config("api")
    assert cache_config.max_size == 42
    assert cache_config.compression is True

def test_test_config_overrides_everything(config_file, monkeypatch):
    monkeypatch.setenv("RESCOORD_LOGGING_LEVEL", "ERROR")
    set_config_for_testing({"logging.level": "INFO"})
    assert get_config("logging.level") == "INFO"

def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("RESCOORD_RETRY_MAX_RETRIES=7\n")
    # Registered so monkeypatch removes what load_dotenv sets
    monkeypatch.setenv("RESCOORD_RETRY_MAX_RETRIES", "placeholder")
    monkeypatch.delenv("RESCOORD_RETRY_MAX_RETRIES")

    load_configuration(config_file=tmp_path / "none.yaml", env_file=env_file, force=True)
    assert get_backoff_policy()["max_retries"] == 7

def test_unknown_profile_uses_default_preset():
    assert get_cache_config("custom") == settings.CACHE_PRESETS["default"]

def test_invalid_numbers_raise_configuration_error():
    set_config_for_testing({"rate_limit.default.max_requests": "lots"})
    with pytest.raises(ConfigurationError, match="must be of type int"):
        get_rate_limiter_options()

def test_invalid_values_raise_configuration_error():
    set_config_for_testing({"cache.default.max_size": 0})
    with pytest.raises(ConfigurationError, match="Invalid cache profile"):
        get_cache_config()

def test_malformed_yaml_is_logged_not_raised(tmp_path, caplog):
    path = tmp_path / "broken.yaml"
    path.write_text("cache: [unclosed")
    load_configuration(config_file=path, force=True)
    assert "Failed to load or parse YAML config" in caplog.text
    assert get_config("cache.api.max_size", 1) == 1
