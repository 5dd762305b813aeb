"""Unit tests for logging setup."""

import logging

import pytest

from pagegather.logging_config import configure_logging


@pytest.fixture
def restore_level():
    logger = logging.getLogger("pagegather")
    level = logger.level
    yield logger
    logger.setLevel(level)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_numeric_level(self, restore_level):
        configure_logging(logging.DEBUG)
        assert restore_level.level == logging.DEBUG

    def test_level_name(self, restore_level):
        configure_logging("warning")
        assert restore_level.level == logging.WARNING

    def test_module_loggers_inherit(self, restore_level):
        configure_logging("ERROR")
        assert logging.getLogger("pagegather.gather.navigation").getEffectiveLevel() == logging.ERROR
