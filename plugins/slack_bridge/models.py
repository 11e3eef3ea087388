"""
Data models and errors for the Slack Bridge plugin.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class MessageKind(Enum):
    """Classes of inbound messages the bot listens to"""
    DIRECT_MESSAGE = "direct_message"
    DIRECT_MENTION = "direct_mention"
    MENTION = "mention"


@dataclass
class Channel:
    """A Slack channel the bot can post into"""
    id: str
    name: str
    purpose: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'purpose': self.purpose}


@dataclass
class InboundMessage:
    """A message addressed to the bot"""
    text: str
    kind: MessageKind
    channel: str = ""
    user: str = ""
    ts: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


class ErrorKind(Enum):
    """Where a failure originated"""
    VALIDATION = "validation"
    CONFIG = "config"
    CONNECT = "connect"
    UPSTREAM = "upstream"


class SlackBridgeError(Exception):
    """Base error of the Slack Bridge plugin"""

    kind = ErrorKind.UPSTREAM

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_result(self) -> Dict[str, Any]:
        """Result object returned across the plugin boundary"""
        return {'error': self.message}

    def to_status(self) -> Dict[str, Any]:
        """Result object carrying the error kind and the underlying cause"""
        status = {'error': self.message, 'kind': self.kind.value}
        if self.cause is not None:
            status['cause'] = str(self.cause)
        return status


class TokenNotSetError(SlackBridgeError):
    kind = ErrorKind.CONFIG


class SlackConnectError(SlackBridgeError):
    kind = ErrorKind.CONNECT


class BotNotReadyError(SlackBridgeError):
    kind = ErrorKind.CONFIG


class ChannelListError(SlackBridgeError):
    kind = ErrorKind.UPSTREAM


def filter_member_channels(raw_channels: Iterable[Dict[str, Any]]) -> List[Channel]:
    """
    Keep the channels the bot belongs to and that are not archived.

    Projects each channel to (id, name, purpose) and keeps the order the
    SDK returned them in.
    """
    return [
        Channel(id=ch.get('id'), name=ch.get('name'), purpose=ch.get('purpose'))
        for ch in raw_channels
        if ch.get('is_member') and not ch.get('is_archived')
    ]


_WHITESPACE = re.compile(r'\s+')


def split_command(text: str) -> Tuple[str, str]:
    """
    Split message text into a command and its parameters.

    The command is everything before the first whitespace boundary, the
    parameters are the trimmed remainder.

    >>> split_command("weather  tokyo tomorrow ")
    ('weather', 'tokyo tomorrow')
    """
    parts = _WHITESPACE.split(text.strip(), maxsplit=1)
    command = parts[0]
    params = parts[1].strip() if len(parts) > 1 else ""
    return command, params
