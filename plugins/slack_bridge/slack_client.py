"""
Slack Client Wrapper for the Slack Bridge Plugin

Wraps slack_sdk / slack_bolt behind the small surface the plugin needs:
connect, say, list_channels and hears. Inbound messages arrive over Socket
Mode when an app-level token is configured.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Pattern

import aiohttp
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackClientError
from slack_sdk.web.async_client import AsyncWebClient

from .models import InboundMessage, MessageKind, SlackConnectError


MessageListener = Callable[[InboundMessage], Awaitable[None]]

DEFAULT_CHANNEL_TYPES = "public_channel,private_channel"

# Message subtypes that still carry text written by a user
RELAYED_SUBTYPES = frozenset({"file_share", "thread_broadcast"})

SLACK_ERRORS = (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError)


def describe_error(exc: BaseException) -> str:
    """Slack error code of an API failure (e.g. 'invalid_auth'), else the exception text"""
    response = getattr(exc, "response", None)
    if response is not None and hasattr(response, "get"):
        code = response.get("error")
        if code:
            return str(code)
    return str(exc) or exc.__class__.__name__


class ConnectionState(Enum):
    """Slack session states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class _Listener:
    patterns: List[Pattern]
    kinds: frozenset
    handler: MessageListener

    def matches(self, message: InboundMessage) -> bool:
        if message.kind not in self.kinds:
            return False
        return any(p.search(message.text) for p in self.patterns)


class SlackSession:
    """
    A live bot session.

    Provides:
    - Token verification on connect (auth.test)
    - Posting text to a channel
    - Paginated channel listing
    - Inbound message listeners filtered by message kind and text pattern
    """

    def __init__(self, bot_token: str, app_token: Optional[str] = None,
                 request_timeout: int = 30,
                 channel_types: str = DEFAULT_CHANNEL_TYPES,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize a Slack session.

        Args:
            bot_token: Bot user OAuth token (xoxb-...)
            app_token: App-level token (xapp-...) enabling Socket Mode, optional
            request_timeout: Timeout of each Web API call in seconds
            channel_types: Conversation types included in channel listings
            logger: Logger instance (optional)
        """
        self.bot_token = bot_token
        self.app_token = app_token or None
        self.request_timeout = request_timeout
        self.channel_types = channel_types
        self.logger = logger or logging.getLogger(__name__)

        self.state = ConnectionState.DISCONNECTED
        self.bot_user_id = ""
        self.team = ""

        self._client: Optional[AsyncWebClient] = None
        self._app: Optional[AsyncApp] = None
        self._handler: Optional[AsyncSocketModeHandler] = None
        self._listeners: List[_Listener] = []

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def receives_events(self) -> bool:
        return self._handler is not None

    async def connect(self) -> 'SlackSession':
        """
        Verify the token and, with an app token, open the Socket Mode connection.

        Raises:
            SlackConnectError: If Slack rejects the token or cannot be reached
        """
        self.state = ConnectionState.CONNECTING
        self._client = AsyncWebClient(token=self.bot_token, timeout=self.request_timeout)

        try:
            auth = await self._client.auth_test()
        except SLACK_ERRORS as e:
            self.state = ConnectionState.DISCONNECTED
            self.logger.error(f"Slack auth.test failed: {e}")
            raise SlackConnectError("Could not connect to Slack", cause=e) from e

        self.bot_user_id = auth.get("user_id", "")
        self.team = auth.get("team", "")

        if self.app_token:
            self._app = AsyncApp(client=self._client)
            self._register_event_listeners()
            self._handler = AsyncSocketModeHandler(self._app, self.app_token)
            try:
                await self._handler.connect_async()
            except SLACK_ERRORS as e:
                self.state = ConnectionState.DISCONNECTED
                self._handler = None
                self.logger.error(f"Slack Socket Mode connection failed: {e}")
                raise SlackConnectError("Could not connect to Slack", cause=e) from e
        else:
            self.logger.info("No app token set, inbound messages will not be received")

        self.state = ConnectionState.CONNECTED
        self.logger.info(f"Connected to Slack team {self.team} as {self.bot_user_id}")
        return self

    def _register_event_listeners(self):
        app = self._app

        @app.event("app_mention")
        async def _on_app_mention(event: Dict[str, Any]):
            await self.dispatch_event(event)

        @app.event("message")
        async def _on_message(event: Dict[str, Any]):
            # Channel mentions arrive as app_mention, only DMs are taken here
            if event.get("channel_type") == "im":
                await self.dispatch_event(event)

    def to_inbound(self, event: Dict[str, Any]) -> Optional[InboundMessage]:
        """Classify a Slack event, None for events the bot must ignore"""
        if event.get("bot_id"):
            return None
        if event.get("subtype") and event["subtype"] not in RELAYED_SUBTYPES:
            return None

        text = event.get("text") or ""
        mention = f"<@{self.bot_user_id}>" if self.bot_user_id else None

        if event.get("channel_type") == "im":
            kind = MessageKind.DIRECT_MESSAGE
        elif mention and text.lstrip().startswith(mention):
            kind = MessageKind.DIRECT_MENTION
            text = text.lstrip()[len(mention):].lstrip(" :,\t\n")
        else:
            kind = MessageKind.MENTION

        return InboundMessage(
            text=text,
            kind=kind,
            channel=event.get("channel", ""),
            user=event.get("user", ""),
            ts=event.get("ts", ""),
            raw=event
        )

    async def dispatch_event(self, event: Dict[str, Any]):
        """Deliver a Slack event to every matching listener"""
        message = self.to_inbound(event)
        if message is None:
            return

        for listener in list(self._listeners):
            if not listener.matches(message):
                continue
            try:
                await listener.handler(message)
            except Exception as e:
                self.logger.error(f"Error in inbound message listener: {e}", exc_info=True)

    def hears(self, patterns: Iterable[str], kinds: Iterable[MessageKind],
              handler: MessageListener):
        """
        Register an inbound message listener.

        Args:
            patterns: Regular expressions searched in the message text,
                '' matches every message
            kinds: Message kinds the listener receives
            handler: Async function that takes an InboundMessage
        """
        self._listeners.append(_Listener(
            patterns=[re.compile(p) for p in patterns],
            kinds=frozenset(kinds),
            handler=handler
        ))

    async def say(self, channel: str, text: str) -> Optional[str]:
        """
        Post text to a channel.

        Returns:
            Timestamp of the posted message
        """
        if self._client is None:
            raise SlackConnectError("Slack session is not connected")
        response = await self._client.chat_postMessage(channel=channel, text=text)
        return response.get("ts")

    async def list_channels(self) -> List[Dict[str, Any]]:
        """
        Fetch every conversation of the configured types, following
        pagination cursors.

        Raises:
            SlackClientError: If the Web API call fails
        """
        if self._client is None:
            raise SlackConnectError("Slack session is not connected")

        channels: List[Dict[str, Any]] = []
        cursor = None
        while True:
            kwargs: Dict[str, Any] = {
                "types": self.channel_types,
                "exclude_archived": False,
                "limit": 200,
            }
            if cursor:
                kwargs["cursor"] = cursor
            response = await self._client.conversations_list(**kwargs)
            channels.extend(response.get("channels", []))
            cursor = (response.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break
        return channels

    async def close(self):
        """Close the Socket Mode connection and drop listeners"""
        if self._handler is not None:
            try:
                await self._handler.close_async()
            except SLACK_ERRORS as e:
                self.logger.warning(f"Error closing Slack Socket Mode connection: {e}")
        self._handler = None
        self._app = None
        self._listeners.clear()
        self.state = ConnectionState.CLOSED
        self.logger.info("Slack session closed")


class SessionSlot:
    """Owned optional slot for the single active session"""

    def __init__(self):
        self._session: Optional[SlackSession] = None

    @property
    def current(self) -> Optional[SlackSession]:
        return self._session

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def replace(self, new: Optional[SlackSession]) -> Optional[SlackSession]:
        """Install a new session and hand back the previous one for disposal"""
        old = self._session
        self._session = new
        return old
