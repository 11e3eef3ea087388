"""
Slack Bridge Plugin for SlackBridge

Posts text into every Slack channel the bot belongs to and relays bot
mentions back onto the host publish bus as topics.

Author: SlackBridge Team
Version: 1.0.0
"""

import sys
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, List

# Add src directory to path for imports
src_path = Path(__file__).parent.parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from core.enhanced_plugin import EnhancedPlugin
from core.logging import get_structured_logger
from core.plugin_interfaces import CallMethod, error_result
from core.plugin_manager import PluginMetadata, PluginPriority

from .models import (
    BotNotReadyError,
    Channel,
    ChannelListError,
    ErrorKind,
    InboundMessage,
    MessageKind,
    SlackBridgeError,
    TokenNotSetError,
    filter_member_channels,
    split_command,
)
from .slack_client import (
    DEFAULT_CHANNEL_TYPES,
    SLACK_ERRORS,
    SessionSlot,
    SlackSession,
    describe_error,
)


BOT_TOKEN_KEY = "bottoken"
APP_TOKEN_KEY = "apptoken"

POST_PATH = "post"

TOKEN_NOT_SET = "Please set Slack bot API token first."

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "allow_get_post": {"type": "boolean"},
        "relay_mentions": {"type": "boolean"},
        "channel_types": {"type": "string", "minLength": 1},
        "request_timeout": {"type": "integer", "minimum": 1},
    },
}


class SlackBridgePlugin(EnhancedPlugin):
    """
    Slack Bridge Plugin

    Holds at most one bot session and exposes:
    - GET '' : capability descriptor
    - POST post : say text in every channel the bot is a member of
    - settings hook storing the bot (and app) token and reconnecting
    - relay of direct messages and mentions to the publish bus
    """

    secure_storage_keys = (BOT_TOKEN_KEY, APP_TOKEN_KEY)

    # Replaced in tests with a factory returning a fake session
    session_factory = SlackSession

    def __init__(self, name: str, config: Dict[str, Any], plugin_manager):
        """
        Initialize the Slack Bridge plugin.

        Args:
            name: Plugin name
            config: Plugin configuration dictionary
            plugin_manager: Reference to the plugin manager
        """
        super().__init__(name, config, plugin_manager)

        self.session_slot = SessionSlot()
        self.connection_status: Dict[str, Any] = {}
        self.event_log = get_structured_logger(f'plugin_{name}')

        self._init_lock = asyncio.Lock()
        self._stopped = False

        self.stats = {
            'posts': 0,
            'messages_sent': 0,
            'send_failures': 0,
            'messages_relayed': 0,
            'connect_attempts': 0,
            'last_connect_time': None,
        }

    async def initialize(self) -> bool:
        """
        Initialize the plugin and try to connect with the stored token.

        A missing token or a failed connection does not fail the plugin;
        it stays loaded and reconnects once a token is set.
        """
        self.logger.info("Initializing Slack Bridge plugin")

        if not self.get_config("enabled", True, bool):
            self.logger.info("Slack Bridge is disabled in configuration")
            return False

        status = await self.init_slack()
        if 'error' in status:
            self.logger.warning(f"Slack Bridge loaded without a Slack connection: {status['error']}")

        return True

    async def start(self) -> bool:
        if self._stopped and not self.session_slot.has_session:
            await self.init_slack()
        self._stopped = False
        return await super().start()

    async def stop(self) -> bool:
        # Waits for an in-flight init_slack so its session is closed too
        async with self._init_lock:
            await self._install_session(None)
            self._stopped = True
        return await super().stop()

    async def cleanup(self) -> bool:
        async with self._init_lock:
            await self._install_session(None)
        return True

    # Host calls

    async def on_call(self, method: str, path: str,
                      args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Handle a host call.

        GET '' describes the plugin, POST post says text in every member
        channel. Failures are returned as {'error': ...}.
        """
        args = args or {}
        path = path or ""

        if method == CallMethod.GET.value:
            if path == "":
                return self._describe(args)
            if not self.get_config("allow_get_post", True, bool):
                return error_result(f"path {path} is not supported.")
            # GET on a sub path is handled as a post
            return await self._handle_post(path, args)

        if method == CallMethod.POST.value:
            return await self._handle_post(path, args)

        return error_result(f"The specified method {method} is not implemented in admin plugin.")

    def _describe(self, args: Dict[str, Any]) -> Dict[str, Any]:
        descriptor: Dict[str, Any] = {'post': {'text': '[TEXT TO SAY]'}}
        if args.get('info') == 'true':
            descriptor['_info'] = {'doc': {'short': 'Bot to say something'}}
        return descriptor

    async def _handle_post(self, path: str, args: Dict[str, Any]) -> Dict[str, Any]:
        if path != POST_PATH:
            return error_result(f"path {path} is not supported.")

        text = args.get('text')
        if not isinstance(text, str) or text == "":
            return error_result('No text to say.')

        session = self.session_slot.current
        if session is None:
            return error_result('Slack token is not properly set.')

        try:
            channels = await self.get_channels_list(session)
        except SlackBridgeError as e:
            self.logger.warning(f"Could not list Slack channels: {e.message}")
            return e.to_result()

        return await self._post_to_channels(session, channels, text)

    async def get_channels_list(self, session: Optional[SlackSession] = None) -> List[Channel]:
        """
        Fetch the channels the bot can post into.

        Raises:
            BotNotReadyError: If no session is open
            ChannelListError: If Slack returns an error
        """
        session = session or self.session_slot.current
        if session is None:
            raise BotNotReadyError('Bot is not defined yet')

        try:
            raw_channels = await session.list_channels()
        except SLACK_ERRORS as e:
            raise ChannelListError(describe_error(e), cause=e) from e

        return filter_member_channels(raw_channels)

    async def _post_to_channels(self, session: SlackSession, channels: List[Channel],
                                text: str) -> Dict[str, Any]:
        self.stats['posts'] += 1

        results = await asyncio.gather(
            *(session.say(channel.id, text) for channel in channels),
            return_exceptions=True
        )

        posted: List[str] = []
        failed: Dict[str, str] = {}
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                failed[channel.name] = describe_error(result)
                self.logger.warning(f"Failed to post to channel {channel.name} ({channel.id}): {result}")
            else:
                posted.append(channel.name)

        self.stats['messages_sent'] += len(posted)
        self.stats['send_failures'] += len(failed)

        if channels and not posted:
            return error_result('Could not post to any channel', failed=failed)

        result: Dict[str, Any] = {'success': f"Successfully posted to channels [{','.join(posted)}]"}
        if failed:
            result['failed'] = failed
        return result

    # Connection

    async def init_slack(self) -> Dict[str, Any]:
        """
        (Re)connect to Slack with the stored token.

        The previous session, if any, is replaced and closed whatever the
        outcome.

        Returns:
            {'success': ..., 'bot_user_id': ...} or {'error': ..., 'kind': ...}
        """
        async with self._init_lock:
            self.stats['connect_attempts'] += 1
            try:
                session = await self._open_session()
            except SlackBridgeError as e:
                await self._install_session(None)
                self.logger.warning(f"Slack connection not established: {e.message}")
                status = e.to_status()
            except Exception as e:
                await self._install_session(None)
                self.logger.error(f"Slack initialization failed: {e}", exc_info=True)
                status = error_result(TOKEN_NOT_SET, kind=ErrorKind.CONNECT.value, cause=str(e))
            else:
                await self._install_session(session)
                self.stats['last_connect_time'] = datetime.utcnow()
                status = {'success': 'Connected to Slack', 'bot_user_id': session.bot_user_id}

            self.connection_status = status
            return status

    async def _open_session(self) -> SlackSession:
        bot_token = self.local_storage.get_item(BOT_TOKEN_KEY)
        if not bot_token:
            raise TokenNotSetError(TOKEN_NOT_SET)

        session = self.session_factory(
            bot_token=bot_token,
            app_token=self.local_storage.get_item(APP_TOKEN_KEY) or None,
            request_timeout=self.get_config("request_timeout", 30, int),
            channel_types=self.get_config("channel_types", DEFAULT_CHANNEL_TYPES, str),
            logger=self.logger
        )

        if self.get_config("relay_mentions", True, bool):
            session.hears([''], list(MessageKind), self._relay_message)

        try:
            await session.connect()
        except Exception:
            await self._close_session(session)
            raise

        return session

    async def _install_session(self, session: Optional[SlackSession]):
        old = self.session_slot.replace(session)
        if old is not None and old is not session:
            await self._close_session(old)

    async def _close_session(self, session: SlackSession):
        try:
            await session.close()
        except Exception as e:
            self.logger.warning(f"Error closing Slack session: {e}")

    # Inbound relay

    async def _relay_message(self, message: InboundMessage):
        """Publish '<command> <params>' messages as topic <command>"""
        if not message.text.strip():
            return

        command, params = split_command(message.text)
        self.logger.info(f"Publish to topic {command} : {params}")

        responses = await self.publish(command, {'params': params})
        self.stats['messages_relayed'] += 1
        self.event_log.info(
            "topic_published",
            topic=command,
            kind=message.kind.value,
            channel=message.channel,
            user=message.user,
            subscribers=len(responses)
        )

    # Settings

    async def on_ui_set_settings(self, new_settings: Dict[str, Any]) -> Dict[str, Any]:
        """
        Store tokens out of a UI settings update and reconnect.

        Token values are blanked in the returned record so they are never
        shown back to the UI.
        """
        token_changed = False
        for key in (BOT_TOKEN_KEY, APP_TOKEN_KEY):
            if new_settings.get(key) is not None:
                self.local_storage.set_item(key, new_settings[key])
                new_settings[key] = ''
                token_changed = True
                self.logger.info(f"Updated Slack credential {key}")

        # A stopped plugin connects with the new token on its next start
        if token_changed and not self._stopped:
            await self.init_slack()

        return new_settings

    # Status

    async def health_check(self) -> bool:
        return self.is_running and self.session_slot.has_session

    def get_status(self) -> Dict[str, Any]:
        """Connection status and counters"""
        session = self.session_slot.current
        return {
            'connected': session is not None,
            'receives_events': bool(session and session.receives_events),
            'bot_user_id': session.bot_user_id if session else None,
            'connection_status': dict(self.connection_status),
            'posts': self.stats['posts'],
            'messages_sent': self.stats['messages_sent'],
            'send_failures': self.stats['send_failures'],
            'messages_relayed': self.stats['messages_relayed'],
            'connect_attempts': self.stats['connect_attempts'],
            'last_connect_time': (self.stats['last_connect_time'].isoformat()
                                  if self.stats['last_connect_time'] else None),
        }

    def get_metadata(self) -> PluginMetadata:
        return PluginMetadata(
            name=self.name,
            version="1.0.0",
            description="Posts messages to Slack channels and relays bot mentions to the publish bus",
            author="SlackBridge Team",
            priority=PluginPriority.NORMAL,
            config_schema=CONFIG_SCHEMA
        )


def create_plugin(name: str, config: dict, plugin_manager):
    """Factory function to create plugin instance"""
    return SlackBridgePlugin(name, config, plugin_manager)
