"""
Tests for self-healing configuration loading.
"""

import pytest
import yaml

from selfheal.core.config import Settings
from selfheal.core.config_loader import (
    ConfigurationError, SelfHealingConfigLoader, build_default_config
)
from selfheal.core.models import HealingConfiguration, HealingMode


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config" / "self_healing.yaml"


@pytest.fixture
def loader(config_path):
    return SelfHealingConfigLoader(str(config_path), source=Settings(_env_file=None))


def write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestDefaults:
    """Test defaults derived from environment settings."""

    def test_missing_file_uses_defaults(self, loader):
        config = loader.load_config()

        assert config.enabled is True
        assert config.healing_mode == HealingMode.AGGRESSIVE
        assert config.max_healing_attempts == 3
        assert config.healing_timeout_ms == 30000
        assert config.rerun_after_healing is False
        assert config.pattern_store_backend == "json"

    def test_settings_flow_into_defaults(self):
        source = Settings(_env_file=None, HEALING_MODE="Conservative", MODEL_PROVIDER="local", LOCAL_MODEL="llama3.1")
        defaults = build_default_config(source)["self_healing"]

        assert defaults["healing_mode"] == "conservative"
        assert defaults["ai"]["model_provider"] == "local"
        assert defaults["ai"]["model_name"] == "llama3.1"

    def test_invalid_setting_rejected(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, HEALING_MODE="reckless")


class TestYamlOverrides:
    """Test merging YAML overrides over defaults."""

    def test_partial_override_is_merged(self, loader, config_path):
        write_yaml(config_path, {
            "self_healing": {
                "healing_mode": "learning",
                "ui": {"retry_delay_ms": 250},
                "strategy_selection": {"max_attempts": 5}
            }
        })

        config = loader.load_config()

        assert config.healing_mode == HealingMode.LEARNING
        assert config.ui_retry_delay_ms == 250
        assert config.ui_max_wait_time_ms == 10000
        assert config.max_attempts == 5
        assert config.conservative_min_score == 70.0

    def test_invalid_mode(self, loader, config_path):
        write_yaml(config_path, {"self_healing": {"healing_mode": "reckless"}})

        with pytest.raises(ConfigurationError, match="Invalid healing mode"):
            loader.load_config()

    def test_invalid_yaml(self, loader, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text("self_healing: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            loader.load_config()

    def test_non_mapping_yaml(self, loader, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text("- one\n- two\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="mapping"):
            loader.load_config()

    @pytest.mark.parametrize("section,values,message", [
        ("self_healing", {"max_healing_attempts": 0}, "max_healing_attempts"),
        ("self_healing", {"healing_timeout_ms": 10}, "healing_timeout_ms"),
        ("strategy_selection", {"learning_prune_below": 2.0}, "learning_prune_below"),
        ("pattern_store", {"backend": "redis"}, "pattern_store.backend"),
        ("ui", {"retry_delay_ms": 0}, "ui wait times"),
    ])
    def test_validation_errors(self, loader, config_path, section, values, message):
        body = values if section == "self_healing" else {section: values}
        write_yaml(config_path, {"self_healing": body})

        with pytest.raises(ConfigurationError, match=message):
            loader.load_config()


class TestSaveAndCache:
    """Test saving and cached reloads."""

    def test_save_then_reload(self, loader, config_path):
        config = HealingConfiguration(
            healing_mode=HealingMode.CONSERVATIVE,
            max_attempts=5,
            rerun_after_healing=True,
            pattern_store_backend="sqlite",
            pattern_store_path="data/patterns.db"
        )

        loader.save_config(config)
        reloaded = SelfHealingConfigLoader(str(config_path), source=Settings(_env_file=None)).load_config()

        assert reloaded == config

    def test_save_rejects_invalid_config(self, loader, config_path):
        with pytest.raises(ConfigurationError):
            loader.save_config(HealingConfiguration(max_healing_attempts=99))
        assert not config_path.exists()

    def test_cached_until_forced(self, loader):
        first = loader.load_config()

        assert loader.load_config() is first
        assert loader.load_config(force_reload=True) is not first
