"""
Plugin Management System for SlackBridge

Provides dynamic loading, lifecycle management and call dispatch for
plugins, together with the settings store and publish bus the host
exposes to them.
"""

import importlib
import inspect
import sys
import traceback
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

import jsonschema
from cryptography.fernet import Fernet

from .config import ConfigurationManager
from .logging import get_logger
from .plugin_core_services import PublishBus
from .plugin_interfaces import PluginCall, PluginResponse, error_result
from .plugin_storage import PluginLocalStorage, StorageError, load_or_create_key


SETTINGS_KEY = "__settings__"


class PluginStatus(Enum):
    """Plugin status enumeration"""
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class PluginPriority(Enum):
    """Plugin priority levels for startup order"""
    CRITICAL = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4


@dataclass
class PluginMetadata:
    """Plugin metadata and configuration"""
    name: str
    version: str
    description: str
    author: str
    priority: PluginPriority = PluginPriority.NORMAL
    enabled: bool = True
    config_schema: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        """Validate metadata after initialization"""
        if not self.name or not isinstance(self.name, str):
            raise ValueError("Plugin name must be a non-empty string")
        if not self.version or not isinstance(self.version, str):
            raise ValueError("Plugin version must be a non-empty string")


@dataclass
class PluginInfo:
    """Complete plugin information"""
    metadata: PluginMetadata
    status: PluginStatus = PluginStatus.UNLOADED
    instance: Optional['BasePlugin'] = None
    module: Optional[Any] = None
    load_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    config: Dict[str, Any] = field(default_factory=dict)
    call_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def record_failure(self, error: str):
        self.last_error = error
        self.last_error_time = datetime.utcnow()

    def get_uptime(self) -> Optional[timedelta]:
        """Get plugin uptime"""
        if self.start_time and self.status == PluginStatus.RUNNING:
            return datetime.utcnow() - self.start_time
        return None

    def get_metrics(self) -> Dict[str, Any]:
        """Get plugin metrics"""
        uptime = self.get_uptime()
        return {
            'name': self.metadata.name,
            'version': self.metadata.version,
            'description': self.metadata.description,
            'status': self.status.value,
            'uptime_seconds': uptime.total_seconds() if uptime else 0,
            'load_time': self.load_time.isoformat() if self.load_time else None,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'call_count': self.call_count,
            'last_error': self.last_error,
        }


class BasePlugin(ABC):
    """
    Abstract base class for all SlackBridge plugins.

    All plugins must inherit from this class and implement
    the required abstract methods.
    """

    def __init__(self, name: str, config: Dict[str, Any], plugin_manager: 'PluginManager'):
        self.name = name
        self.config = config
        self.plugin_manager = plugin_manager
        self.logger = get_logger(f'plugin_{name}')
        self.is_running = False

    @abstractmethod
    async def initialize(self) -> bool:
        """
        Initialize the plugin.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        pass

    @abstractmethod
    async def start(self) -> bool:
        """
        Start the plugin.

        Returns:
            bool: True if start successful, False otherwise
        """
        pass

    @abstractmethod
    async def stop(self) -> bool:
        """
        Stop the plugin.

        Returns:
            bool: True if stop successful, False otherwise
        """
        pass

    @abstractmethod
    async def cleanup(self) -> bool:
        """
        Clean up plugin resources.

        Returns:
            bool: True if cleanup successful, False otherwise
        """
        pass

    @abstractmethod
    def get_metadata(self) -> PluginMetadata:
        """
        Get plugin metadata.

        Returns:
            PluginMetadata: Plugin metadata
        """
        pass

    async def health_check(self) -> bool:
        """
        Perform health check.

        Returns:
            bool: True if healthy, False otherwise
        """
        return self.is_running


class PluginManager:
    """
    Manages the lifecycle of plugins and dispatches host calls,
    settings updates and published topics.
    """

    def __init__(self, config_manager: ConfigurationManager,
                 storage_path: Optional[str] = None,
                 cipher: Optional[Fernet] = None):
        self.config_manager = config_manager
        self.logger = get_logger('plugin_manager')

        self.plugins: Dict[str, PluginInfo] = {}
        self.plugin_paths: List[Path] = []
        self.publish_bus = PublishBus()

        # Settings storage
        self.storage_path = storage_path or self.config_manager.get('storage.path')
        self._cipher = cipher
        if self._cipher is None:
            key_file = self.config_manager.get('storage.key_file')
            if key_file:
                self._cipher = Fernet(load_or_create_key(key_file))
        self._storages: Dict[str, PluginLocalStorage] = {}

        self._setup_plugin_paths()

        self.logger.info("Plugin manager initialized")

    def _setup_plugin_paths(self):
        """Set up plugin discovery paths"""
        base_path = Path(__file__).parent.parent.parent
        self.plugin_paths = [base_path / "plugins"]

        for path_str in self.config_manager.get('plugins.paths', []) or []:
            path = Path(path_str).expanduser()
            if path.exists():
                self.plugin_paths.append(path)
                self.logger.debug(f"Added plugin path: {path}")

    def get_local_storage(self, plugin_name: str) -> PluginLocalStorage:
        """Get (or create) the key-value store of a plugin"""
        if plugin_name not in self._storages:
            self._storages[plugin_name] = PluginLocalStorage(
                plugin_name,
                database_path=self.storage_path,
                cipher=self._cipher
            )
        return self._storages[plugin_name]

    async def load_plugin(self, plugin_name: str, config: Optional[Dict[str, Any]] = None,
                          plugin_class: Optional[Type[BasePlugin]] = None) -> bool:
        """
        Load a plugin by name.

        Args:
            plugin_name: Name of the plugin to load
            config: Plugin configuration, taken from the configuration
                manager when omitted
            plugin_class: Plugin class to use instead of importing one

        Returns:
            bool: True if loaded successfully, False otherwise
        """
        if plugin_name in self.plugins and self.plugins[plugin_name].status != PluginStatus.FAILED:
            self.logger.warning(f"Plugin {plugin_name} already loaded")
            return True

        self.logger.info(f"Loading plugin: {plugin_name}")

        if config is None:
            config = self.config_manager.get_plugin_config(plugin_name)

        plugin_info = PluginInfo(
            metadata=PluginMetadata(
                name=plugin_name,
                version="unknown",
                description="",
                author=""
            ),
            config=config
        )

        try:
            plugin_info.status = PluginStatus.LOADING
            self.plugins[plugin_name] = plugin_info

            if plugin_class is None:
                module = self._import_plugin_module(plugin_name)
                if not module:
                    raise ImportError(f"Could not import plugin module: {plugin_name}")
                plugin_info.module = module

                plugin_class = self._find_plugin_class(module)
                if not plugin_class:
                    raise ValueError(f"No valid plugin class found in {plugin_name}")

            plugin_instance = plugin_class(plugin_name, plugin_info.config, self)
            plugin_info.instance = plugin_instance
            plugin_info.metadata = plugin_instance.get_metadata()

            errors = self.validate_plugin_config(plugin_info.metadata, plugin_info.config)
            if errors:
                raise ValueError(f"Invalid configuration for {plugin_name}: {'; '.join(errors)}")

            if not await plugin_instance.initialize():
                raise RuntimeError(f"Plugin {plugin_name} initialization failed")

            plugin_info.status = PluginStatus.LOADED
            plugin_info.load_time = datetime.utcnow()

            self.logger.info(f"Successfully loaded plugin: {plugin_name}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to load plugin {plugin_name}: {e}")
            self.logger.debug(traceback.format_exc())

            plugin_info.status = PluginStatus.FAILED
            plugin_info.record_failure(str(e))
            return False

    def validate_plugin_config(self, metadata: PluginMetadata,
                               config: Dict[str, Any]) -> List[str]:
        """Validate a plugin configuration against its JSON schema"""
        if not metadata.config_schema:
            return []

        validator = jsonschema.Draft7Validator(metadata.config_schema)
        return [
            f"{'.'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
            for error in validator.iter_errors(config)
        ]

    def _import_plugin_module(self, plugin_name: str):
        """Import plugin module dynamically"""
        for plugin_path in self.plugin_paths:
            module_path = plugin_path / plugin_name
            if module_path.exists() and (module_path / "__init__.py").exists():
                try:
                    if str(plugin_path) not in sys.path:
                        sys.path.insert(0, str(plugin_path))

                    return importlib.import_module(plugin_name)

                except Exception as e:
                    self.logger.error(f"Error importing {plugin_name} from {plugin_path}: {e}")
                    continue

        return None

    def _find_plugin_class(self, module) -> Optional[Type[BasePlugin]]:
        """Find the plugin class in the module"""
        for name, obj in inspect.getmembers(module):
            if (inspect.isclass(obj) and
                    issubclass(obj, BasePlugin) and
                    not inspect.isabstract(obj)):
                return obj
        return None

    async def unload_plugin(self, plugin_name: str) -> bool:
        """
        Unload a plugin.

        Args:
            plugin_name: Name of the plugin to unload

        Returns:
            bool: True if unloaded successfully, False otherwise
        """
        if plugin_name not in self.plugins:
            self.logger.warning(f"Plugin {plugin_name} not found")
            return False

        plugin_info = self.plugins[plugin_name]

        try:
            if plugin_info.status == PluginStatus.RUNNING:
                await self.stop_plugin(plugin_name)

            if plugin_info.instance:
                await plugin_info.instance.cleanup()

            del self.plugins[plugin_name]

            self.logger.info(f"Successfully unloaded plugin: {plugin_name}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to unload plugin {plugin_name}: {e}")
            return False

    async def start_plugin(self, plugin_name: str) -> bool:
        """
        Start a plugin.

        Args:
            plugin_name: Name of the plugin to start

        Returns:
            bool: True if started successfully, False otherwise
        """
        if plugin_name not in self.plugins:
            self.logger.error(f"Plugin {plugin_name} not found")
            return False

        plugin_info = self.plugins[plugin_name]

        if plugin_info.status == PluginStatus.RUNNING:
            self.logger.warning(f"Plugin {plugin_name} already running")
            return True

        if plugin_info.status not in (PluginStatus.LOADED, PluginStatus.STOPPED):
            self.logger.error(f"Plugin {plugin_name} not in loaded state (current: {plugin_info.status})")
            return False

        try:
            plugin_info.status = PluginStatus.STARTING

            if not await plugin_info.instance.start():
                raise RuntimeError(f"Plugin {plugin_name} start method returned False")

            plugin_info.status = PluginStatus.RUNNING
            plugin_info.start_time = datetime.utcnow()

            self.logger.info(f"Successfully started plugin: {plugin_name}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to start plugin {plugin_name}: {e}")
            plugin_info.status = PluginStatus.FAILED
            plugin_info.record_failure(str(e))
            return False

    async def stop_plugin(self, plugin_name: str) -> bool:
        """
        Stop a plugin.

        Args:
            plugin_name: Name of the plugin to stop

        Returns:
            bool: True if stopped successfully, False otherwise
        """
        if plugin_name not in self.plugins:
            self.logger.error(f"Plugin {plugin_name} not found")
            return False

        plugin_info = self.plugins[plugin_name]

        if plugin_info.status != PluginStatus.RUNNING:
            self.logger.warning(f"Plugin {plugin_name} not running (current: {plugin_info.status})")
            return True

        try:
            plugin_info.status = PluginStatus.STOPPING

            if not await plugin_info.instance.stop():
                self.logger.warning(f"Plugin {plugin_name} stop method returned False")

            plugin_info.status = PluginStatus.STOPPED
            plugin_info.start_time = None

            self.logger.info(f"Successfully stopped plugin: {plugin_name}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to stop plugin {plugin_name}: {e}")
            plugin_info.status = PluginStatus.FAILED
            plugin_info.record_failure(str(e))
            return False

    def _startup_order(self) -> List[str]:
        return sorted(
            self.plugins,
            key=lambda name: self.plugins[name].metadata.priority.value
        )

    async def start_all_plugins(self) -> bool:
        """Start every loaded plugin in priority order"""
        results = []
        for plugin_name in self._startup_order():
            if self.plugins[plugin_name].status in (PluginStatus.LOADED, PluginStatus.STOPPED):
                results.append(await self.start_plugin(plugin_name))
        return all(results)

    async def stop_all_plugins(self) -> bool:
        """Stop every running plugin in reverse priority order"""
        results = []
        for plugin_name in reversed(self._startup_order()):
            if self.plugins[plugin_name].status == PluginStatus.RUNNING:
                results.append(await self.stop_plugin(plugin_name))
        return all(results)

    async def call_plugin(self, plugin_name: str, method: str, path: str = "",
                          args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Dispatch a host call to a plugin.

        Never raises: unknown plugins and plugin failures come back
        as {'error': ...} result objects.
        """
        plugin_info = self.plugins.get(plugin_name)
        if plugin_info is None or plugin_info.instance is None:
            return error_result(f"Plugin {plugin_name} is not loaded.")

        if plugin_info.status not in (PluginStatus.LOADED, PluginStatus.RUNNING):
            return error_result(
                f"Plugin {plugin_name} is not available (status: {plugin_info.status.value})."
            )

        call = PluginCall(method=method, path=path or "", args=dict(args or {}))
        plugin_info.call_count += 1

        try:
            result = await plugin_info.instance.on_call(call.method, call.path, call.args)
        except Exception as e:
            self.logger.error(f"Plugin {plugin_name} failed handling {call.method} {call.path}: {e}")
            self.logger.debug(traceback.format_exc())
            plugin_info.record_failure(str(e))
            return error_result(str(e))

        if result is None:
            return {}
        return result

    async def set_plugin_settings(self, plugin_name: str,
                                  settings: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Run a plugin's settings hook and persist the record it returns.

        Returns:
            The persisted settings record, or None for unknown plugins
        """
        plugin_info = self.plugins.get(plugin_name)
        if plugin_info is None or plugin_info.instance is None:
            self.logger.warning(f"Settings update for unknown plugin {plugin_name}")
            return None

        to_save = await plugin_info.instance.on_ui_set_settings(dict(settings))
        try:
            self.get_local_storage(plugin_name).set_item(SETTINGS_KEY, to_save)
        except StorageError as e:
            self.logger.error(f"Failed to persist settings for {plugin_name}: {e}")
            raise

        self.logger.info(f"Updated settings for plugin {plugin_name}")
        return to_save

    def get_plugin_settings(self, plugin_name: str) -> Dict[str, Any]:
        """Get the persisted UI settings record of a plugin"""
        return self.get_local_storage(plugin_name).get_item(SETTINGS_KEY, {})

    async def publish(self, source_plugin: str, topic: str, payload: Any) -> List[PluginResponse]:
        """Publish a topic on the host bus on behalf of a plugin"""
        return await self.publish_bus.publish(source_plugin, topic, payload)

    def get_plugin_info(self, plugin_name: str) -> Optional[PluginInfo]:
        """Get plugin information"""
        return self.plugins.get(plugin_name)

    def get_all_plugins(self) -> Dict[str, PluginInfo]:
        """Get all plugin information"""
        return self.plugins.copy()

    def get_running_plugins(self) -> List[str]:
        """Get list of running plugins"""
        return [
            name for name, info in self.plugins.items()
            if info.status == PluginStatus.RUNNING
        ]

    def close(self):
        """Close plugin storages"""
        for storage in self._storages.values():
            storage.close()
        self._storages.clear()
