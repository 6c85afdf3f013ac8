"""Configuration loading and validation utilities for self-healing."""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .models.healing_models import HealingConfiguration, HealingMode
from .config import settings, Settings

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


def build_default_config(source: Settings = settings) -> Dict[str, Any]:
    """Build the nested default configuration from environment settings."""
    model_name = source.LOCAL_MODEL if source.MODEL_PROVIDER == "local" else source.ONLINE_MODEL
    return {
        "self_healing": {
            "enabled": source.ENABLE_HEALING,
            "healing_mode": source.HEALING_MODE,
            "max_healing_attempts": source.MAX_HEALING_ATTEMPTS,
            "healing_timeout_ms": source.HEALING_TIMEOUT_MS,
            "enable_learning": source.ENABLE_LEARNING,
            "rerun_after_healing": source.RERUN_AFTER_HEALING,
            "ai": {
                "enabled": source.ENABLE_AI,
                "model_provider": source.MODEL_PROVIDER,
                "model_name": model_name,
                "temperature": source.AI_TEMPERATURE,
                "max_tokens": source.AI_MAX_TOKENS
            },
            "strategy_selection": {
                "max_attempts": source.MAX_ATTEMPTS,
                "conservative_min_score": 70.0,
                "learning_min_samples": 3,
                "learning_prune_below": 0.25
            },
            "pattern_store": {
                "backend": source.PATTERN_STORE_BACKEND,
                "path": source.PATTERN_STORE_PATH,
                "history_limit": 1000
            },
            "ui": {
                "max_wait_time_ms": source.UI_MAX_WAIT_TIME_MS,
                "retry_delay_ms": source.UI_RETRY_DELAY_MS,
                "enable_ai_locator_generation": source.ENABLE_AI_LOCATOR_GENERATION,
                "enable_smart_waits": source.ENABLE_SMART_WAITS
            },
            "api": {
                "timeout_ms": source.API_TIMEOUT_MS
            }
        }
    }


class SelfHealingConfigLoader:
    """Reads the self_healing YAML section and merges it over env-derived defaults."""

    def __init__(self, config_path: Optional[str] = None, source: Settings = settings):
        """Falls back to SELF_HEALING_CONFIG_PATH when no path is given."""
        self.config_path = Path(
            config_path or source.SELF_HEALING_CONFIG_PATH)
        self.default_config = build_default_config(source)
        self._config_cache: Optional[HealingConfiguration] = None
        self._config_file_mtime: Optional[float] = None

    def load_config(self, force_reload: bool = False) -> HealingConfiguration:
        """Load and validate self-healing configuration.

        Args:
            force_reload: Force reload even if cached config exists

        Returns:
            HealingConfiguration: Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not force_reload and self._config_cache and self._is_config_current():
            return self._config_cache

        try:
            config_data = self._load_config_file()
            healing_config = self._parse_healing_config(config_data)
            self._validate_config(healing_config)

            self._config_cache = healing_config
            if self.config_path.exists():
                self._config_file_mtime = self.config_path.stat().st_mtime

            logger.info(
                f"Loaded self-healing configuration from {self.config_path}")
            return healing_config

        except ConfigurationError as e:
            logger.error(f"Failed to load self-healing configuration: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load self-healing configuration: {e}")
            raise ConfigurationError(
                f"Configuration loading failed: {e}") from e

    def save_config(self, config: HealingConfiguration) -> None:
        """Save configuration to file.

        Args:
            config: Configuration to save

        Raises:
            ConfigurationError: If saving fails
        """
        try:
            self._validate_config(config)

            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            config_data = {
                "self_healing": self._config_to_dict(config)
            }

            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_data, f, default_flow_style=False, indent=2)

            self._config_cache = config
            self._config_file_mtime = self.config_path.stat().st_mtime

            logger.info(
                f"Saved self-healing configuration to {self.config_path}")

        except Exception as e:
            logger.error(f"Failed to save self-healing configuration: {e}")
            raise ConfigurationError(
                f"Configuration saving failed: {e}") from e

    def _load_config_file(self) -> Dict[str, Any]:
        """Return the merged raw mapping, or a copy of the defaults if the file is absent."""
        if not self.config_path.exists():
            logger.info(
                f"Config file {self.config_path} not found, using defaults")
            return copy.deepcopy(self.default_config)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}")

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        # Merge with defaults to ensure all keys exist
        return self._deep_merge(copy.deepcopy(self.default_config), config_data)

    def _parse_healing_config(self, config_data: Dict[str, Any]) -> HealingConfiguration:
        """Flatten the nested sections into a HealingConfiguration."""
        healing_section = config_data.get("self_healing", {})

        ai = healing_section.get("ai", {})
        selection = healing_section.get("strategy_selection", {})
        store = healing_section.get("pattern_store", {})
        ui = healing_section.get("ui", {})
        api = healing_section.get("api", {})

        try:
            healing_mode = HealingMode(str(healing_section.get("healing_mode", "aggressive")).lower())
        except ValueError as e:
            raise ConfigurationError(f"Invalid healing mode: {e}")

        return HealingConfiguration(
            enabled=healing_section.get("enabled", True),
            enable_ai=ai.get("enabled", True),
            healing_mode=healing_mode,
            max_healing_attempts=healing_section.get("max_healing_attempts", 3),
            max_attempts=selection.get("max_attempts", 3),
            healing_timeout_ms=healing_section.get("healing_timeout_ms", 30000),
            enable_learning=healing_section.get("enable_learning", True),
            rerun_after_healing=healing_section.get("rerun_after_healing", False),
            conservative_min_score=float(selection.get("conservative_min_score", 70.0)),
            learning_min_samples=selection.get("learning_min_samples", 3),
            learning_prune_below=float(selection.get("learning_prune_below", 0.25)),
            pattern_store_backend=str(store.get("backend", "json")).lower(),
            pattern_store_path=store.get("path", "data/patterns.json"),
            history_limit=store.get("history_limit", 1000),
            ui_max_wait_time_ms=ui.get("max_wait_time_ms", 10000),
            ui_retry_delay_ms=ui.get("retry_delay_ms", 1000),
            enable_ai_locator_generation=ui.get("enable_ai_locator_generation", True),
            enable_smart_waits=ui.get("enable_smart_waits", True),
            api_timeout_ms=api.get("timeout_ms", 10000),
            model_provider=str(ai.get("model_provider", "online")).lower(),
            model_name=ai.get("model_name", "gemini/gemini-2.5-flash"),
            ai_temperature=float(ai.get("temperature", 0.3)),
            ai_max_tokens=ai.get("max_tokens", 1000)
        )

    def _config_to_dict(self, config: HealingConfiguration) -> Dict[str, Any]:
        """Inverse of _parse_config_data, used when saving."""
        return {
            "enabled": config.enabled,
            "healing_mode": config.healing_mode.value,
            "max_healing_attempts": config.max_healing_attempts,
            "healing_timeout_ms": config.healing_timeout_ms,
            "enable_learning": config.enable_learning,
            "rerun_after_healing": config.rerun_after_healing,
            "ai": {
                "enabled": config.enable_ai,
                "model_provider": config.model_provider,
                "model_name": config.model_name,
                "temperature": config.ai_temperature,
                "max_tokens": config.ai_max_tokens
            },
            "strategy_selection": {
                "max_attempts": config.max_attempts,
                "conservative_min_score": config.conservative_min_score,
                "learning_min_samples": config.learning_min_samples,
                "learning_prune_below": config.learning_prune_below
            },
            "pattern_store": {
                "backend": config.pattern_store_backend,
                "path": config.pattern_store_path,
                "history_limit": config.history_limit
            },
            "ui": {
                "max_wait_time_ms": config.ui_max_wait_time_ms,
                "retry_delay_ms": config.ui_retry_delay_ms,
                "enable_ai_locator_generation": config.enable_ai_locator_generation,
                "enable_smart_waits": config.enable_smart_waits
            },
            "api": {
                "timeout_ms": config.api_timeout_ms
            }
        }

    def _validate_config(self, config: HealingConfiguration) -> None:
        """Validate configuration values.

        Args:
            config: Configuration to validate

        Raises:
            ConfigurationError: If validation fails
        """
        errors = []

        if config.max_healing_attempts < 1 or config.max_healing_attempts > 10:
            errors.append("max_healing_attempts must be between 1 and 10")

        if config.max_attempts < 1 or config.max_attempts > 50:
            errors.append("max_attempts must be between 1 and 50")

        if config.healing_timeout_ms < 1000 or config.healing_timeout_ms > 300000:
            errors.append(
                "healing_timeout_ms must be between 1000 and 300000 ms")

        if config.conservative_min_score < 0 or config.conservative_min_score > 100:
            errors.append("conservative_min_score must be between 0 and 100")

        if config.learning_min_samples < 1:
            errors.append("learning_min_samples must be at least 1")

        if config.learning_prune_below < 0.0 or config.learning_prune_below > 1.0:
            errors.append("learning_prune_below must be between 0.0 and 1.0")

        if config.history_limit < 1:
            errors.append("history_limit must be at least 1")

        if config.pattern_store_backend not in ("json", "sqlite"):
            errors.append("pattern_store.backend must be 'json' or 'sqlite'")

        if config.model_provider not in ("online", "local"):
            errors.append("ai.model_provider must be 'online' or 'local'")

        if config.ui_retry_delay_ms <= 0 or config.ui_max_wait_time_ms <= 0:
            errors.append("ui wait times must be positive")

        if config.api_timeout_ms <= 0:
            errors.append("api.timeout_ms must be positive")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed: " + "; ".join(errors))

    def _is_config_current(self) -> bool:
        """Check if cached config is still current."""
        if not self.config_path.exists():
            return self._config_file_mtime is None

        current_mtime = self.config_path.stat().st_mtime
        return self._config_file_mtime == current_mtime

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


# Global config loader instance
config_loader = SelfHealingConfigLoader()


def get_healing_config(force_reload: bool = False) -> HealingConfiguration:
    """Get the current self-healing configuration.

    Args:
        force_reload: Force reload from file

    Returns:
        HealingConfiguration: Current configuration
    """
    config = config_loader.load_config(force_reload)
    if not settings.ENABLE_HEALING:
        config.enabled = False
    return config

