"""
Unit tests for the Plugin Management System
"""

import pytest
import pytest_asyncio

from core.enhanced_plugin import EnhancedPlugin
from core.plugin_manager import (
    PluginManager, BasePlugin, PluginStatus, PluginPriority, PluginMetadata, SETTINGS_KEY
)


class MockPlugin(EnhancedPlugin):
    """Mock plugin for testing"""

    secure_storage_keys = ('secret',)

    def __init__(self, name: str, config: dict, plugin_manager):
        super().__init__(name, config, plugin_manager)
        self.initialized = False
        self.cleaned_up = False

    async def initialize(self) -> bool:
        if self.config.get('fail_init'):
            return False
        self.initialized = True
        return True

    async def cleanup(self) -> bool:
        self.cleaned_up = True
        return True

    async def on_call(self, method, path, args=None):
        if path == 'boom':
            raise RuntimeError("plugin exploded")
        if path == 'none':
            return None
        return {'method': method, 'path': path, 'args': args}

    async def on_ui_set_settings(self, new_settings):
        if 'secret' in new_settings:
            self.local_storage.set_item('secret', new_settings['secret'])
            new_settings['secret'] = ''
        return new_settings

    def get_metadata(self) -> PluginMetadata:
        return PluginMetadata(
            name=self.name,
            version="1.0.0",
            description="Mock plugin for testing",
            author="Test Author",
            priority=self.config.get('priority', PluginPriority.NORMAL),
            config_schema={
                "type": "object",
                "properties": {"timeout": {"type": "integer", "minimum": 1}},
            }
        )


class DefaultsPlugin(EnhancedPlugin):
    """Plugin relying on the default call and settings handlers"""

    async def initialize(self) -> bool:
        return True

    def get_metadata(self) -> PluginMetadata:
        return PluginMetadata(name=self.name, version="0.1.0", description="", author="")


@pytest.fixture
def plugin_manager(config_manager):
    manager = PluginManager(config_manager)
    yield manager
    manager.close()


@pytest_asyncio.fixture
async def loaded_manager(plugin_manager):
    assert await plugin_manager.load_plugin("mock", {}, plugin_class=MockPlugin)
    return plugin_manager


class TestPluginMetadata:
    """Metadata validation"""

    def test_requires_name(self):
        with pytest.raises(ValueError):
            PluginMetadata(name="", version="1.0.0", description="", author="")

    def test_requires_version(self):
        with pytest.raises(ValueError):
            PluginMetadata(name="p", version="", description="", author="")


class TestLoading:
    """Plugin loading and lifecycle"""

    @pytest.mark.asyncio
    async def test_load_plugin_class(self, loaded_manager):
        info = loaded_manager.get_plugin_info("mock")

        assert info.status == PluginStatus.LOADED
        assert info.instance.initialized
        assert info.metadata.version == "1.0.0"

    @pytest.mark.asyncio
    async def test_failed_initialize(self, plugin_manager):
        assert not await plugin_manager.load_plugin("mock", {'fail_init': True}, plugin_class=MockPlugin)

        info = plugin_manager.get_plugin_info("mock")
        assert info.status == PluginStatus.FAILED
        assert "initialization failed" in info.last_error

    @pytest.mark.asyncio
    async def test_invalid_config_rejected(self, plugin_manager):
        assert not await plugin_manager.load_plugin("mock", {'timeout': 0}, plugin_class=MockPlugin)

        info = plugin_manager.get_plugin_info("mock")
        assert info.status == PluginStatus.FAILED
        assert "timeout" in info.last_error

    @pytest.mark.asyncio
    async def test_missing_plugin_module(self, plugin_manager):
        assert not await plugin_manager.load_plugin("does_not_exist")
        assert plugin_manager.get_plugin_info("does_not_exist").status == PluginStatus.FAILED

    @pytest.mark.asyncio
    async def test_imports_bundled_plugin(self, plugin_manager):
        assert await plugin_manager.load_plugin("slack_bridge")

        info = plugin_manager.get_plugin_info("slack_bridge")
        assert type(info.instance).__name__ == "SlackBridgePlugin"
        assert isinstance(info.instance, BasePlugin)

    @pytest.mark.asyncio
    async def test_start_stop_unload(self, loaded_manager):
        assert await loaded_manager.start_plugin("mock")
        assert loaded_manager.get_running_plugins() == ["mock"]

        assert await loaded_manager.stop_plugin("mock")
        assert loaded_manager.get_plugin_info("mock").status == PluginStatus.STOPPED

        instance = loaded_manager.get_plugin_info("mock").instance
        assert await loaded_manager.unload_plugin("mock")
        assert instance.cleaned_up
        assert loaded_manager.get_plugin_info("mock") is None

    @pytest.mark.asyncio
    async def test_start_all_in_priority_order(self, plugin_manager):
        await plugin_manager.load_plugin("low", {'priority': PluginPriority.LOW}, plugin_class=MockPlugin)
        await plugin_manager.load_plugin("high", {'priority': PluginPriority.HIGH}, plugin_class=MockPlugin)

        assert plugin_manager._startup_order() == ["high", "low"]
        assert await plugin_manager.start_all_plugins()
        assert sorted(plugin_manager.get_running_plugins()) == ["high", "low"]
        assert await plugin_manager.stop_all_plugins()
        assert plugin_manager.get_running_plugins() == []


class TestCallPlugin:
    """Call dispatch never raises"""

    @pytest.mark.asyncio
    async def test_dispatch(self, loaded_manager):
        result = await loaded_manager.call_plugin("mock", "POST", "post", {'text': 'hi'})

        assert result == {'method': 'POST', 'path': 'post', 'args': {'text': 'hi'}}
        assert loaded_manager.get_plugin_info("mock").call_count == 1

    @pytest.mark.asyncio
    async def test_unknown_plugin(self, plugin_manager):
        result = await plugin_manager.call_plugin("nope", "GET")
        assert result == {'error': 'Plugin nope is not loaded.'}

    @pytest.mark.asyncio
    async def test_plugin_exception_becomes_error(self, loaded_manager):
        result = await loaded_manager.call_plugin("mock", "GET", "boom")

        assert result == {'error': 'plugin exploded'}
        assert loaded_manager.get_plugin_info("mock").last_error == 'plugin exploded'

    @pytest.mark.asyncio
    async def test_none_result(self, loaded_manager):
        assert await loaded_manager.call_plugin("mock", "GET", "none") == {}

    @pytest.mark.asyncio
    async def test_failed_plugin_not_available(self, plugin_manager):
        await plugin_manager.load_plugin("mock", {'fail_init': True}, plugin_class=MockPlugin)

        result = await plugin_manager.call_plugin("mock", "GET")

        assert result == {'error': 'Plugin mock is not available (status: failed).'}

    @pytest.mark.asyncio
    async def test_default_on_call(self, plugin_manager):
        await plugin_manager.load_plugin("plain", {}, plugin_class=DefaultsPlugin)

        result = await plugin_manager.call_plugin("plain", "GET")

        assert result == {'error': 'The specified method GET is not implemented in plain plugin.'}


class TestSettings:
    """Settings hook and persistence"""

    @pytest.mark.asyncio
    async def test_hook_result_persisted(self, loaded_manager):
        saved = await loaded_manager.set_plugin_settings("mock", {'secret': 's3', 'name': 'x'})

        assert saved == {'secret': '', 'name': 'x'}
        assert loaded_manager.get_plugin_settings("mock") == {'secret': '', 'name': 'x'}
        assert loaded_manager.get_local_storage("mock").get_item('secret') == 's3'

    @pytest.mark.asyncio
    async def test_secret_encrypted_in_database(self, loaded_manager):
        await loaded_manager.set_plugin_settings("mock", {'secret': 's3'})

        storage = loaded_manager.get_local_storage("mock")
        raw = storage._conn.execute(
            "SELECT value FROM plugin_storage WHERE plugin_name = 'mock' AND key = 'secret'"
        ).fetchone()['value']
        assert raw.startswith("fernet:")

    @pytest.mark.asyncio
    async def test_unknown_plugin(self, plugin_manager):
        assert await plugin_manager.set_plugin_settings("nope", {'a': 1}) is None

    @pytest.mark.asyncio
    async def test_default_hook_is_identity(self, plugin_manager):
        await plugin_manager.load_plugin("plain", {}, plugin_class=DefaultsPlugin)

        saved = await plugin_manager.set_plugin_settings("plain", {'a': 1})

        assert saved == {'a': 1}
        assert plugin_manager.get_local_storage("plain").get_item(SETTINGS_KEY) == {'a': 1}

    def test_settings_default_empty(self, plugin_manager):
        assert plugin_manager.get_plugin_settings("anything") == {}


class TestPublish:
    """Publishing on behalf of plugins"""

    @pytest.mark.asyncio
    async def test_plugin_publish_reaches_bus(self, loaded_manager):
        received = []

        async def handler(message):
            received.append((message.source_plugin, message.topic, message.data))

        loaded_manager.publish_bus.subscribe("weather", handler)
        instance = loaded_manager.get_plugin_info("mock").instance

        responses = await instance.publish("weather", {'params': 'tokyo'})

        assert received == [("mock", "weather", {'params': 'tokyo'})]
        assert len(responses) == 1
