"""
Tests for configuration validation
"""

import pytest
from unittest.mock import patch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from config.validators import validate_settings, get_config_summary
from utils.exceptions import ConfigurationError


class TestValidateSettings:

    def test_defaults_are_valid(self):
        assert validate_settings() is True

    def test_bad_service(self):
        with patch.object(settings, "DEFAULT_SERVICE", "bsky.social"):
            with pytest.raises(ConfigurationError) as exc_info:
                validate_settings()
        assert "DEFAULT_SERVICE" in str(exc_info.value)

    def test_collects_all_errors(self):
        """Every problem is reported in one error."""
        with patch.object(settings, "MAX_ATTEMPTS", 0), \
             patch.object(settings, "TIMELINE_PAGE_SIZE", 500), \
             patch.object(settings, "BACKOFF_BASE", 20):
            with pytest.raises(ConfigurationError) as exc_info:
                validate_settings()

        message = str(exc_info.value)
        assert "MAX_ATTEMPTS" in message
        assert "TIMELINE_PAGE_SIZE" in message
        assert "BACKOFF_BASE" in message

    def test_public_feed_must_be_at_uri(self):
        with patch.object(settings, "ALLOW_PUBLIC_TIMELINE", True), \
             patch.object(settings, "PUBLIC_TIMELINE_FEED", "https://feed"):
            with pytest.raises(ConfigurationError):
                validate_settings()


class TestConfigSummary:

    def test_no_secrets(self):
        with patch.object(settings, "AT_PROTOCOL_PASSWORD", "hunter2"):
            summary = get_config_summary()

        assert "hunter2" not in repr(summary)
        assert summary["service"] == settings.DEFAULT_SERVICE
