"""
Configuration Management System for SlackBridge

Handles loading configuration from environment variables, config files,
and provides validation and runtime updates.
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


class ConfigurationManager:
    """
    Manages system configuration with support for multiple sources,
    validation, and runtime updates.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.watchers: Dict[str, List[Callable]] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "SlackBridge",
                "version": "1.0.0",
                "debug": False
            },
            "storage": {
                "path": "data/slackbridge.db",
                "key_file": "data/.storage_key"
            },
            "web": {
                "enabled": True,
                "host": "127.0.0.1",
                "port": 8080
            },
            "logging": {
                "level": "INFO",
                "file": "logs/slackbridge.log",
                "max_size": "10MB",
                "backup_count": 5
            },
            "plugins": {
                "enabled_plugins": ["slack_bridge"],
                "disabled_plugins": []
            },
            "plugin_config": {
                "slack_bridge": {
                    "enabled": True,
                    "allow_get_post": True,
                    "relay_mentions": True,
                    "channel_types": "public_channel,private_channel",
                    "request_timeout": 30
                }
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        # Built-in defaults (lowest priority)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config = {}

        # Lowest priority first so later sources override
        for source in sorted(self.sources, key=lambda x: x.priority):
            try:
                source_config = source.loader()
                if source_config:
                    merged_config = self._deep_merge(merged_config, source_config)
                    self.logger.debug(f"Loaded configuration from {source.name}")
            except Exception as e:
                self.logger.warning(f"Failed to load config from {source.name}: {e}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        env_mappings = {
            "SLACKBRIDGE_DEBUG": "app.debug",
            "SLACKBRIDGE_LOG_LEVEL": "logging.level",
            "SLACKBRIDGE_DB_PATH": "storage.path",
            "SLACKBRIDGE_WEB_HOST": "web.host",
            "SLACKBRIDGE_WEB_PORT": "web.port",
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit():
                    value = int(value)

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except Exception as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        for section in ['app', 'storage', 'plugins']:
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        web_port = self.get('web.port')
        if web_port is not None and (not isinstance(web_port, int) or web_port < 1 or web_port > 65535):
            errors.append(f"Invalid web port: {web_port}")

        log_level = self.get('logging.level', 'INFO')
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(log_level).upper() not in valid_levels:
            errors.append(f"Invalid log level: {log_level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        current = self.config

        try:
            for k in key.split('.'):
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

        for callback in self.watchers.get(key, []):
            try:
                callback(key, value)
            except Exception as e:
                self.logger.error(f"Error in config watcher for {key}: {e}")

    def watch(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Watch for configuration changes"""
        self.watchers.setdefault(key, []).append(callback)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})

    def get_enabled_plugins(self) -> List[str]:
        """Get list of explicitly enabled plugins"""
        return self.get('plugins.enabled_plugins', [])

    def get_disabled_plugins(self) -> List[str]:
        """Get list of explicitly disabled plugins"""
        return self.get('plugins.disabled_plugins', [])

    def is_plugin_enabled(self, plugin_name: str) -> bool:
        """
        Check if a specific plugin is enabled.

        A plugin in disabled_plugins is never enabled; otherwise it must be
        listed in enabled_plugins and not switched off in its own section.
        """
        if plugin_name in self.get_disabled_plugins():
            return False

        if plugin_name not in self.get_enabled_plugins():
            return False

        return bool(self.get_plugin_config(plugin_name).get('enabled', True))

    def get_plugin_config(self, plugin_name: str) -> Dict[str, Any]:
        """Get the configuration section of a plugin"""
        return dict(self.get(f'plugin_config.{plugin_name}', {}) or {})
