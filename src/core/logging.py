"""
Logging setup for SlackBridge

Installs the rotating file and console handlers on the root logger,
applies per-plugin levels from ``logging.plugins`` and keeps the Slack
SDK and uvicorn loggers quiet. Relay events go through structlog as
JSON lines on the same handlers.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog


ROOT_NAME = 'slackbridge'

LINE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# uvicorn runs with log_config=None so its loggers propagate to the root
LIBRARY_LEVELS = {
    'asyncio': logging.WARNING,
    'aiohttp.access': logging.WARNING,
    'slack_sdk': logging.WARNING,
    'slack_bolt': logging.WARNING,
    'uvicorn.error': logging.INFO,
    'uvicorn.access': logging.WARNING,
}

_SIZE_UNITS = (('KB', 1024), ('MB', 1024 ** 2), ('GB', 1024 ** 3))


def parse_size(value) -> int:
    """Parse '10MB' style sizes into bytes"""
    text = str(value).strip().upper()
    for suffix, factor in _SIZE_UNITS:
        if text.endswith(suffix):
            return int(text[:-len(suffix)]) * factor
    return int(text)


def level_value(name) -> int:
    """Numeric level for a name such as 'debug'; ValueError when unknown"""
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def _configure_structlog():
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class SlackBridgeLogger:
    """
    Handlers and levels built from the ``logging`` config section.

    Installing a new instance removes the handlers of the one it replaces,
    so reloading configuration never duplicates output.
    """

    def __init__(self, config: Dict[str, Any]):
        settings = config.get('logging') or {}

        self.level = level_value(settings.get('level', 'INFO'))
        self.plugin_levels = {
            plugin: level_value(level)
            for plugin, level in (settings.get('plugins') or {}).items()
        }
        self.handlers = self._build_handlers(settings)

    def _build_handlers(self, settings: Dict[str, Any]) -> List[logging.Handler]:
        handlers: List[logging.Handler] = []

        log_file = settings.get('file')
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=parse_size(settings.get('max_size', '10MB')),
                backupCount=settings.get('backup_count', 5),
                encoding='utf-8'
            )
            file_handler.setFormatter(logging.Formatter(LINE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            handlers.append(file_handler)

        if settings.get('console', True):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(logging.Formatter(LINE_FORMAT, datefmt='%H:%M:%S'))
            console_handler.setLevel(level_value(settings.get('console_level', settings.get('level', 'INFO'))))
            handlers.append(console_handler)

        return handlers

    def install(self, previous: Optional['SlackBridgeLogger'] = None):
        root = logging.getLogger()
        if previous is not None:
            previous.remove()

        root.setLevel(self.level)
        for handler in self.handlers:
            root.addHandler(handler)

        for name, level in LIBRARY_LEVELS.items():
            logging.getLogger(name).setLevel(level)
        for plugin, level in self.plugin_levels.items():
            logging.getLogger(f'{ROOT_NAME}.plugin_{plugin}').setLevel(level)

        _configure_structlog()

    def remove(self):
        root = logging.getLogger()
        for handler in self.handlers:
            root.removeHandler(handler)
            handler.close()


_logger_instance: Optional[SlackBridgeLogger] = None


def initialize_logging(config: Dict[str, Any]) -> SlackBridgeLogger:
    """Install logging for the given configuration, replacing any earlier setup"""
    global _logger_instance
    instance = SlackBridgeLogger(config)
    instance.install(_logger_instance)
    _logger_instance = instance
    return instance


def get_logger(name: str) -> logging.Logger:
    """Logger named ``slackbridge.<name>``; plugins use ``plugin_<plugin name>``"""
    if name == ROOT_NAME or name.startswith(f'{ROOT_NAME}.'):
        return logging.getLogger(name)
    return logging.getLogger(f'{ROOT_NAME}.{name}')


def get_structured_logger(name: str) -> structlog.stdlib.BoundLogger:
    if not structlog.is_configured():
        _configure_structlog()
    return structlog.get_logger(f'{ROOT_NAME}.{name}')
