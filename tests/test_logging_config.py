"""
Tests for the logging system.

Tests run context propagation, formatters, filters and setup.
"""

import json
import logging
import os
import tempfile

import pytest

from src.shared.logging_config import (
    ColoredFormatter, JSONFormatter, LoggingConfig, RunContext, RunContextFilter, get_run_id,
)


def make_record(level=logging.INFO, msg='Test message'):
    return logging.LogRecord(
        name='src.engine.recipe_runner',
        level=level,
        pathname='recipe_runner.py',
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None
    )


@pytest.fixture
def restore_root_logger():
    """Put the root logger back after setup_logging replaced its handlers."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLoggingConfig:
    """Test logging configuration."""

    def test_run_context(self):
        """Test run context management."""
        with RunContext('run-123', 'listing'):
            assert get_run_id() == 'run-123'
            with RunContext('run-nested'):
                assert get_run_id() == 'run-nested'
            assert get_run_id() == 'run-123'

        # Context should be cleared after exiting
        assert get_run_id() is None

    def test_run_context_generates_id(self):
        """A run id is generated when none is given."""
        with RunContext() as context:
            assert get_run_id() == context.run_id_value
            assert len(context.run_id_value) == 36

    def test_run_context_filter(self):
        """Test run context filter."""
        record = make_record()

        with RunContext('run-456', 'detail'):
            assert RunContextFilter().filter(record) is True

        assert record.run_id == 'run-456'
        assert record.recipe_mode == 'detail'
        assert record.component == 'recipe_runner'

    def test_json_formatter(self):
        """Test JSON formatter."""
        record = make_record()
        record.run_id = 'run-789'
        record.recipe_mode = 'listing'
        record.component = 'recipe_runner'
        record.step_index = 3

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed['level'] == 'INFO'
        assert parsed['message'] == 'Test message'
        assert parsed['run_id'] == 'run-789'
        assert parsed['recipe_mode'] == 'listing'
        assert parsed['step_index'] == 3
        assert 'timestamp' in parsed

    def test_colored_formatter(self):
        """Test colored formatter."""
        record = make_record(logging.ERROR, 'Step failed')
        record.run_id = 'abcdef123456'
        record.recipe_mode = 'listing'

        formatted = ColoredFormatter('%(levelname)s - %(message)s').format(record)

        assert '\033[31m' in formatted  # Red color for ERROR
        assert 'Step failed' in formatted
        assert '[abcdef12]' in formatted  # Truncated run ID
        assert '[listing]' in formatted

    def test_logging_setup(self, restore_root_logger):
        """Test logging setup with a JSON log file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = os.path.join(temp_dir, 'engine.log')

            LoggingConfig.setup_logging(
                level=logging.DEBUG,
                format_type='json',
                log_file=log_file,
                console_output=False,
            )

            logger = logging.getLogger('src.engine.recipe_runner')
            with RunContext('run-file', 'listing'):
                logger.info('Test log message', extra={'step_index': 2})

            for handler in logging.getLogger().handlers:
                handler.flush()

            with open(log_file, 'r') as f:
                lines = [json.loads(line) for line in f.read().splitlines() if line.strip()]

            entry = lines[-1]
            assert entry['message'] == 'Test log message'
            assert entry['step_index'] == 2
            assert entry['run_id'] == 'run-file'
            assert entry['recipe_mode'] == 'listing'
            assert entry['component'] == 'recipe_runner'

            assert logging.getLogger('httpx').level == logging.WARNING

