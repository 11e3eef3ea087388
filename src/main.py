"""
SlackBridge Main Application Entry Point

Loads configuration and logging, starts the enabled plugins and serves
the HTTP front end until a shutdown signal arrives.
"""

import asyncio
import signal
import sys
import traceback
from pathlib import Path
from typing import Optional

import uvicorn

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent))

from core.config import ConfigurationManager
from core.logging import initialize_logging, get_logger
from core.plugin_manager import PluginManager
from core.web_api import create_app


class SlackBridgeApplication:
    """Main SlackBridge application class"""

    def __init__(self, config_dir: str = "config"):
        self.config_dir = config_dir
        self.config_manager: Optional[ConfigurationManager] = None
        self.plugin_manager: Optional[PluginManager] = None
        self.server: Optional[uvicorn.Server] = None
        self.logger = None

        self.running = False
        self.shutdown_event = asyncio.Event()
        self._server_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Initialize all application components"""
        try:
            self.config_manager = ConfigurationManager(self.config_dir)
            self.config_manager.load_config()

            initialize_logging(self.config_manager.config)
            self.logger = get_logger('main')

            self.logger.info("SlackBridge starting up...")
            self.logger.info(f"Version: {self.config_manager.get('app.version', '1.0.0')}")
            self.logger.info(f"Debug mode: {self.config_manager.get('app.debug', False)}")

            self.plugin_manager = PluginManager(self.config_manager)
            await self._load_plugins()

            self.logger.info("Core systems initialized successfully")

        except Exception as e:
            if self.logger:
                self.logger.error(f"Failed to initialize application: {e}", exc_info=True)
            else:
                print(f"Failed to initialize application: {e}")
                traceback.print_exc()
            raise

    async def _load_plugins(self):
        """Load every enabled plugin that is not explicitly disabled"""
        for plugin_name in self.config_manager.get_enabled_plugins():
            if not self.config_manager.is_plugin_enabled(plugin_name):
                self.logger.info(f"Skipping disabled plugin {plugin_name}")
                continue
            if not await self.plugin_manager.load_plugin(plugin_name):
                self.logger.error(f"Plugin {plugin_name} failed to load")

    async def _start_web_server(self):
        if not self.config_manager.get('web.enabled', True):
            self.logger.info("Web front end disabled")
            return

        host = self.config_manager.get('web.host', '127.0.0.1')
        port = self.config_manager.get('web.port', 8080)
        debug = self.config_manager.get('app.debug', False)

        config = uvicorn.Config(
            app=create_app(self.plugin_manager, debug=debug),
            host=host,
            port=port,
            # Access and error lines go through the root handlers
            log_config=None,
            log_level=None
        )
        self.server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self.server.serve())
        # uvicorn takes over SIGINT/SIGTERM while serving; its exit ends the application
        self._server_task.add_done_callback(lambda _: self.shutdown_event.set())
        self.logger.info(f"Web front end started on http://{host}:{port}")

    async def start(self):
        """Start the application and run until shutdown"""
        await self.initialize()

        self.running = True

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler, sig)

        try:
            await self.plugin_manager.start_all_plugins()
            self.logger.info(f"Running plugins: {self.plugin_manager.get_running_plugins()}")

            await self._start_web_server()

            self.logger.info("SlackBridge is now running")
            await self.shutdown_event.wait()
            self.logger.info("Shutdown signal received")

        except Exception as e:
            self.logger.error(f"Application error: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown()

    def _signal_handler(self, signum):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}")
        self.shutdown_event.set()

    async def shutdown(self):
        """Shutdown the application gracefully"""
        if not self.running:
            return

        self.logger.info("Shutting down SlackBridge...")
        self.running = False

        try:
            if self.server is not None:
                self.server.should_exit = True
            if self._server_task is not None:
                await self._server_task

            await self.plugin_manager.stop_all_plugins()
            for plugin_name in list(self.plugin_manager.get_all_plugins()):
                await self.plugin_manager.unload_plugin(plugin_name)
            self.plugin_manager.close()

            self.logger.info("SlackBridge shutdown complete")

        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}")


async def run():
    app = SlackBridgeApplication()

    try:
        await app.start()
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        print(f"Application failed to start: {e}")
        sys.exit(1)


def main():
    """Console script entry point"""
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\nApplication interrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
