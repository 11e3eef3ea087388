"""
Plugin Communication Interfaces for SlackBridge

Defines the call contract between the host and its plugins and the
message structures carried by the publish bus.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import uuid


class CallMethod(Enum):
    """Methods a host call can carry"""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


@dataclass
class PluginCall:
    """A single host call into a plugin"""
    method: str
    path: str = ""
    args: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_root(self) -> bool:
        return self.path == ""


@dataclass
class PluginMessage:
    """Message published on the bus"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    topic: str = ""
    source_plugin: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    data: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginResponse:
    """Response of one subscriber to a published message"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str = ""
    success: bool = True
    data: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def error_result(message: str, **extra) -> Dict[str, Any]:
    """Build the error-shaped result object returned across the plugin boundary"""
    result: Dict[str, Any] = {'error': message}
    result.update(extra)
    return result


class PluginCallInterface(ABC):
    """Interface the host uses to reach a plugin"""

    @abstractmethod
    async def on_call(self, method: str, path: str,
                      args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Handle a host call.

        Args:
            method: GET, POST, PUT or DELETE
            path: Plugin-relative path, '' for the plugin root
            args: Call parameters

        Returns:
            Result object; failures are returned as {'error': ...}
        """
        pass

    @abstractmethod
    async def on_ui_set_settings(self, new_settings: Dict[str, Any]) -> Dict[str, Any]:
        """
        Rewrite settings edited in the UI before the host saves them.

        Args:
            new_settings: Settings submitted by the UI

        Returns:
            Settings record the host should persist
        """
        pass
