"""
Core module for SlackBridge

Contains the plugin manager, settings storage, publish bus, configuration
management and the HTTP front end.
"""

from .enhanced_plugin import EnhancedPlugin
from .plugin_core_services import PublishBus
from .plugin_storage import PluginLocalStorage

__all__ = [
    'EnhancedPlugin',
    'PublishBus',
    'PluginLocalStorage',
]
