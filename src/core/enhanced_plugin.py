"""
Enhanced Plugin Base Class

Provides developer-friendly helper methods for creating SlackBridge plugins:
configuration access, the host key-value store, the publish bus and the
default call/settings handlers.
"""

from abc import abstractmethod
from typing import Any, Dict, List, Optional

from .plugin_manager import BasePlugin, PluginManager, PluginMetadata
from .plugin_interfaces import PluginCallInterface, PluginResponse, error_result
from .plugin_storage import PluginLocalStorage


class EnhancedPlugin(BasePlugin, PluginCallInterface):
    """
    Enhanced base class for plugins with developer-friendly helper methods.

    This class extends BasePlugin with convenient methods for:
    - Configuration management
    - Key-value settings storage
    - Publishing topics on the host bus
    - Handling host calls and UI settings updates
    """

    # Storage keys encrypted at rest by the host store
    secure_storage_keys: tuple = ()

    def __init__(self, name: str, config: Dict[str, Any], plugin_manager: PluginManager):
        super().__init__(name, config, plugin_manager)

        if hasattr(plugin_manager, 'get_local_storage'):
            self.local_storage = plugin_manager.get_local_storage(name)
        else:
            self.logger.warning("Host provides no settings store, using in-memory storage")
            self.local_storage = PluginLocalStorage(name)

        if self.secure_storage_keys:
            self.local_storage.mark_secure(*self.secure_storage_keys)

    @abstractmethod
    async def initialize(self) -> bool:
        pass

    @abstractmethod
    def get_metadata(self) -> PluginMetadata:
        pass

    def get_config(self, key: str, default: Any = None, value_type: Optional[type] = None) -> Any:
        """
        Get configuration value with optional type safety.

        Args:
            key: Configuration key (dot notation supported)
            default: Default value if key not found
            value_type: Expected type for validation (optional)

        Returns:
            Configuration value

        Raises:
            TypeError: If value type doesn't match expected type

        Example:
            timeout = self.get_config("request_timeout", 30, int)
        """
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        if value_type is not None and value is not None:
            if not isinstance(value, value_type):
                raise TypeError(
                    f"Configuration value for {key} has type {type(value).__name__}, "
                    f"expected {value_type.__name__}"
                )

        return value

    async def publish(self, topic: str, payload: Any) -> List[PluginResponse]:
        """
        Publish a topic on the host bus.

        Args:
            topic: Topic name
            payload: Message data

        Example:
            await self.publish("weather", {"params": "tokyo"})
        """
        if hasattr(self.plugin_manager, 'publish'):
            return await self.plugin_manager.publish(self.name, topic, payload)
        self.logger.warning(f"No publish bus available, dropping topic {topic}")
        return []

    async def on_call(self, method: str, path: str,
                      args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Override to handle host calls"""
        return error_result(f"The specified method {method} is not implemented in {self.name} plugin.")

    async def on_ui_set_settings(self, new_settings: Dict[str, Any]) -> Dict[str, Any]:
        """Override to rewrite settings before the host saves them"""
        return new_settings

    async def start(self) -> bool:
        """Start the plugin"""
        self.is_running = True
        self.logger.info(f"Plugin {self.name} started")
        return True

    async def stop(self) -> bool:
        """Stop the plugin"""
        self.is_running = False
        self.logger.info(f"Plugin {self.name} stopped")
        return True

    async def cleanup(self) -> bool:
        """
        Clean up plugin resources.

        Override this method to add custom cleanup logic.
        """
        return True


__all__ = [
    'EnhancedPlugin',
]
