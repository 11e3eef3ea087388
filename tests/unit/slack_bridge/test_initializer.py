"""
Unit tests for the Slack Bridge connection initializer (init_slack)
"""

import asyncio

import pytest

from plugins.slack_bridge.models import MessageKind, SlackConnectError
from plugins.slack_bridge.plugin import SlackBridgePlugin

from mocks.slack_mocks import FakeSessionFactory, slack_api_error


@pytest.fixture
def plugin(mock_plugin_manager, session_factory):
    plugin = SlackBridgePlugin("slack_bridge", {}, mock_plugin_manager)
    plugin.session_factory = session_factory
    return plugin


class TestMissingToken:
    """No credential stored"""

    @pytest.mark.asyncio
    async def test_no_token(self, plugin, session_factory):
        result = await plugin.init_slack()

        assert result == {'error': 'Please set Slack bot API token first.', 'kind': 'config'}
        assert not plugin.session_slot.has_session
        assert session_factory.sessions == []

    @pytest.mark.asyncio
    async def test_empty_token_counts_as_missing(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "")

        result = await plugin.init_slack()

        assert result['error'] == 'Please set Slack bot API token first.'
        assert session_factory.sessions == []

    @pytest.mark.asyncio
    async def test_initialize_succeeds_without_token(self, plugin):
        assert await plugin.initialize() is True
        assert plugin.connection_status['kind'] == 'config'


class TestConnect:
    """Successful connections"""

    @pytest.mark.asyncio
    async def test_connects_with_stored_token(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        result = await plugin.init_slack()

        assert result == {'success': 'Connected to Slack', 'bot_user_id': 'UBOT'}
        session = session_factory.last
        assert session.bot_token == "xoxb-test"
        assert session.app_token is None
        assert session.connected
        assert plugin.session_slot.current is session
        assert plugin.connection_status == result

    @pytest.mark.asyncio
    async def test_passes_app_token_and_config(self, mock_plugin_manager, session_factory):
        plugin = SlackBridgePlugin("slack_bridge", {
            'request_timeout': 5,
            'channel_types': 'public_channel',
        }, mock_plugin_manager)
        plugin.session_factory = session_factory
        plugin.local_storage.set_item("bottoken", "xoxb-test")
        plugin.local_storage.set_item("apptoken", "xapp-test")

        await plugin.init_slack()

        session = session_factory.last
        assert session.app_token == "xapp-test"
        assert session.request_timeout == 5
        assert session.channel_types == 'public_channel'

    @pytest.mark.asyncio
    async def test_registers_one_listener_for_all_kinds(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        await plugin.init_slack()

        listeners = session_factory.last.listeners
        assert len(listeners) == 1
        patterns, kinds, _ = listeners[0]
        assert patterns == ['']
        assert kinds == {MessageKind.DIRECT_MESSAGE, MessageKind.DIRECT_MENTION, MessageKind.MENTION}

    @pytest.mark.asyncio
    async def test_relay_can_be_disabled(self, mock_plugin_manager, session_factory):
        plugin = SlackBridgePlugin("slack_bridge", {'relay_mentions': False}, mock_plugin_manager)
        plugin.session_factory = session_factory
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        await plugin.init_slack()

        assert session_factory.last.listeners == []


class TestConnectFailures:
    """Failed connections leave no usable session"""

    @pytest.mark.asyncio
    async def test_connect_error(self, mock_plugin_manager):
        error = SlackConnectError("Could not connect to Slack", cause=slack_api_error('invalid_auth'))
        factory = FakeSessionFactory(connect_error=error)
        plugin = SlackBridgePlugin("slack_bridge", {}, mock_plugin_manager)
        plugin.session_factory = factory
        plugin.local_storage.set_item("bottoken", "xoxb-bad")

        result = await plugin.init_slack()

        assert result['error'] == 'Could not connect to Slack'
        assert result['kind'] == 'connect'
        assert 'invalid_auth' in result['cause']
        assert not plugin.session_slot.has_session
        assert factory.last.closed

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_generic_message(self, mock_plugin_manager):
        factory = FakeSessionFactory(connect_error=RuntimeError("boom"))
        plugin = SlackBridgePlugin("slack_bridge", {}, mock_plugin_manager)
        plugin.session_factory = factory
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        result = await plugin.init_slack()

        assert result == {
            'error': 'Please set Slack bot API token first.',
            'kind': 'connect',
            'cause': 'boom',
        }
        assert not plugin.session_slot.has_session

    @pytest.mark.asyncio
    async def test_initialize_succeeds_when_connect_fails(self, mock_plugin_manager):
        plugin = SlackBridgePlugin("slack_bridge", {}, mock_plugin_manager)
        plugin.session_factory = FakeSessionFactory(connect_error=RuntimeError("boom"))
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        assert await plugin.initialize() is True


class TestReinitialization:
    """Each initialization replaces and closes the previous session"""

    @pytest.mark.asyncio
    async def test_previous_session_closed(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-one")
        await plugin.init_slack()
        plugin.local_storage.set_item("bottoken", "xoxb-two")
        await plugin.init_slack()

        first, second = session_factory.sessions
        assert first.closed
        assert not second.closed
        assert plugin.session_slot.current is second

    @pytest.mark.asyncio
    async def test_failed_reinit_drops_previous_session(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-one")
        await plugin.init_slack()
        plugin.local_storage.set_item("bottoken", "")

        result = await plugin.init_slack()

        assert result['kind'] == 'config'
        assert session_factory.last.closed
        assert not plugin.session_slot.has_session

    @pytest.mark.asyncio
    async def test_concurrent_inits_leave_one_live_session(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        await asyncio.gather(plugin.init_slack(), plugin.init_slack())

        open_sessions = [s for s in session_factory.sessions if not s.closed]
        assert len(session_factory.sessions) == 2
        assert open_sessions == [plugin.session_slot.current]


class TestLifecycle:
    """Stopping the plugin closes the session"""

    @pytest.mark.asyncio
    async def test_stop_closes_session(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-test")
        await plugin.initialize()
        await plugin.start()

        await plugin.stop()

        assert session_factory.last.closed
        assert not plugin.session_slot.has_session

    @pytest.mark.asyncio
    async def test_restart_reconnects(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-test")
        await plugin.initialize()
        await plugin.start()
        await plugin.stop()

        await plugin.start()

        assert len(session_factory.sessions) == 2
        assert plugin.session_slot.current is session_factory.last
        assert await plugin.health_check() is True

    @pytest.mark.asyncio
    async def test_status(self, plugin):
        plugin.local_storage.set_item("bottoken", "xoxb-test")
        await plugin.initialize()

        status = plugin.get_status()

        assert status['connected'] is True
        assert status['bot_user_id'] == 'UBOT'
        assert status['receives_events'] is False
        assert status['connection_status'] == {'success': 'Connected to Slack', 'bot_user_id': 'UBOT'}

    @pytest.mark.asyncio
    async def test_stop_waits_for_connect_in_flight(self, mock_plugin_manager):
        plugin = SlackBridgePlugin("slack_bridge", {}, mock_plugin_manager)
        plugin.session_factory = FakeSessionFactory(connect_delay=0.05)
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        init = asyncio.create_task(plugin.init_slack())
        await asyncio.sleep(0)
        await plugin.stop()
        await init

        assert plugin.session_factory.last.closed
        assert not plugin.session_slot.has_session

    @pytest.mark.asyncio
    async def test_cleanup_waits_for_connect_in_flight(self, mock_plugin_manager):
        plugin = SlackBridgePlugin("slack_bridge", {}, mock_plugin_manager)
        plugin.session_factory = FakeSessionFactory(connect_delay=0.05)
        plugin.local_storage.set_item("bottoken", "xoxb-test")

        init = asyncio.create_task(plugin.init_slack())
        await asyncio.sleep(0)
        await plugin.cleanup()
        await init

        assert plugin.session_factory.last.closed
        assert not plugin.session_slot.has_session

    @pytest.mark.asyncio
    async def test_token_update_while_stopped_connects_on_start(self, plugin, session_factory):
        plugin.local_storage.set_item("bottoken", "xoxb-one")
        await plugin.initialize()
        await plugin.start()
        await plugin.stop()

        await plugin.on_ui_set_settings({'bottoken': 'xoxb-two'})

        assert len(session_factory.sessions) == 1
        assert not plugin.session_slot.has_session

        await plugin.start()

        assert session_factory.last.bot_token == "xoxb-two"
        assert plugin.session_slot.current is session_factory.last
