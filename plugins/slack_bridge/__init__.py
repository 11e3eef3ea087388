"""
Slack Bridge Plugin

Posts host messages into Slack channels and relays bot mentions back to
the host publish bus.

Features:
- Capability discovery with GET ''
- Fan-out posting to every channel the bot is a member of
- Token management through the settings hook
- Direct message and mention relay over Socket Mode
"""

__version__ = "1.0.0"
__author__ = "SlackBridge Team"

from .plugin import SlackBridgePlugin, create_plugin

__all__ = ["SlackBridgePlugin", "create_plugin"]
