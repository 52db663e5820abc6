"""Tests for configuration and logging setup."""

import json
import logging
import sys

import pytest

from banksync.config import SyncConfig
from banksync.domain.errors import ValidationError
from banksync.logging import JsonFormatter, setup_logging


class TestSyncConfig:
    """Tests for SyncConfig."""

    def test_defaults(self):
        config = SyncConfig()
        assert config.base_delay == 30
        assert config.max_attempts == 5
        assert config.hourly_call_limit == 1000
        assert config.safety_margin == 50

    def test_from_env(self):
        config = SyncConfig.from_env(
            {
                "BANKSYNC_MAX_ATTEMPTS": "8",
                "BANKSYNC_BASE_DELAY": "2.5",
                "BANKSYNC_OWNER_ID": "alice",
                "UNRELATED": "x",
            }
        )
        assert config.max_attempts == 8
        assert config.base_delay == 2.5
        assert config.owner_id == "alice"

    def test_from_env_bad_value(self):
        with pytest.raises(ValidationError, match="BANKSYNC_MAX_ATTEMPTS"):
            SyncConfig.from_env({"BANKSYNC_MAX_ATTEMPTS": "many"})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"base_delay": 0},
            {"base_delay": 10, "max_delay": 5},
            {"jitter_ratio": 1.5},
            {"max_attempts": 0},
            {"lease_timeout": 0},
            {"batch_size": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            SyncConfig(**overrides)

    def test_with_overrides_ignores_none(self):
        config = SyncConfig().with_overrides(batch_size=10, max_attempts=None)
        assert config.batch_size == 10
        assert config.max_attempts == 5


class TestLogging:
    """Tests for log setup."""

    def test_json_formatter(self):
        record = logging.LogRecord("banksync.test", logging.WARNING, __file__, 1, "Item %d failed", (7,), None)
        data = json.loads(JsonFormatter().format(record))
        assert data["level"] == "WARNING"
        assert data["logger"] == "banksync.test"
        assert data["message"] == "Item 7 failed"

    def test_json_formatter_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("banksync", logging.ERROR, __file__, 1, "crashed", (), sys.exc_info())
        data = json.loads(JsonFormatter().format(record))
        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "boom"

    def test_json_formatter_includes_extra(self):
        record = logging.LogRecord("banksync", logging.INFO, __file__, 1, "claimed", (), None)
        record.item_id = 7
        data = json.loads(JsonFormatter().format(record))
        assert data["extra"] == {"item_id": 7}

    def test_setup_logging_sets_level(self):
        root = logging.getLogger()
        saved_level, saved_handlers = root.level, root.handlers[:]
        try:
            setup_logging("DEBUG", json_format=True)
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
