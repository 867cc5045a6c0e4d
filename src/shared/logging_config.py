"""
Logging configuration for the recipe engine.

Every record emitted while a recipe runs carries the run id and recipe
mode, bound by RunContext. Console output is colored or plain; the
optional log file is always JSON lines.
"""

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
from uuid import uuid4


run_id: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
recipe_mode: ContextVar[Optional[str]] = ContextVar('recipe_mode', default=None)

ENGINE_LOGGERS = ['src.engine', 'src.inference', 'src.browser', 'src.shared']
# Chatty libraries kept at WARNING whatever the engine level
QUIET_LOGGERS = ['httpx', 'httpcore', 'playwright', 'asyncio']

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class RunContextFilter(logging.Filter):
    """Stamp records with the active run id, recipe mode and component."""

    def filter(self, record):
        record.run_id = run_id.get() or 'no-run'
        record.recipe_mode = recipe_mode.get() or '-'
        record.component = record.name.split('.')[-1]
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including any `extra` fields."""

    RESERVED = set(logging.LogRecord(
        'x', logging.INFO, __file__, 0, '', None, None
    ).__dict__) | {'message', 'asctime'}

    def format(self, record):
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'run_id': getattr(record, 'run_id', 'no-run'),
            'recipe_mode': getattr(record, 'recipe_mode', '-'),
            'component': getattr(record, 'component', record.name.split('.')[-1]),
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in entry and key not in self.RESERVED and not key.startswith('_'):
                entry[key] = value

        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Level-colored console lines suffixed with the short run id and mode."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        line = super().format(record)
        short_run = getattr(record, 'run_id', 'no-run')[:8]
        return f"{color}{line}{self.RESET} [{short_run}] [{getattr(record, 'recipe_mode', '-')}]"


class LoggingConfig:
    """Installs the engine's handlers on the root logger."""

    @staticmethod
    def _console_formatter(format_type: str) -> logging.Formatter:
        if format_type == 'json':
            return JSONFormatter()
        if format_type == 'colored':
            return ColoredFormatter(DEFAULT_FORMAT)
        return logging.Formatter(DEFAULT_FORMAT)

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'colored',
        log_file: Optional[str] = None,
        console_output: bool = True,
    ):
        """
        Replace the root handlers.

        Args:
            level: Level for the root and engine loggers
            format_type: 'json', 'colored' or 'standard' console output
            log_file: Optional JSON-lines log file
            console_output: Write to stdout
        """
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        handlers = []
        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(cls._console_formatter(format_type))
            handlers.append(console_handler)
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(JSONFormatter())
            handlers.append(file_handler)

        run_filter = RunContextFilter()
        for handler in handlers:
            handler.setLevel(level)
            handler.addFilter(run_filter)
            root_logger.addHandler(handler)

        for name in ENGINE_LOGGERS:
            logging.getLogger(name).setLevel(level)
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        logging.getLogger(__name__).debug(f"Logging initialized (format={format_type}, file={log_file})")


class RunContext:
    """Binds a run id, and optionally the recipe mode, for the enclosed block."""

    def __init__(self, run_id_value: str = None, mode_value: str = None):
        self.run_id_value = run_id_value or str(uuid4())
        self.mode_value = mode_value
        self._tokens = []

    def __enter__(self):
        self._tokens.append((run_id, run_id.set(self.run_id_value)))
        if self.mode_value:
            self._tokens.append((recipe_mode, recipe_mode.set(self.mode_value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def get_run_id() -> Optional[str]:
    return run_id.get()


def initialize_logging():
    """Configure logging from the RECIPE_LOG_* settings."""
    from .config import get_settings

    log_settings = get_settings().logging
    LoggingConfig.setup_logging(
        level=log_settings.level.value,
        format_type=log_settings.format,
        log_file=log_settings.file,
    )


if os.getenv('RECIPE_LOG_AUTOCONFIG') and not os.getenv('TESTING'):
    initialize_logging()
