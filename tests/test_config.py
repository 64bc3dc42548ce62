"""Test configuration system."""

import os
import pytest
from unittest.mock import patch

from typeflow.config import Settings, get_settings, settings


@pytest.mark.unit
def test_settings_creation():
    """Test settings object creation."""
    test_settings = Settings()

    assert test_settings.app_name == "TypeFlow"
    assert test_settings.app_version == "0.1.0"
    assert test_settings.queue_name == "workflow-queue"
    assert test_settings.webhook_rate_limit == 100
    assert test_settings.execution_rate_limit == 0


@pytest.mark.unit
def test_settings_environment_properties():
    """Test environment detection properties."""
    dev_settings = Settings(environment="development")
    assert dev_settings.is_development is True
    assert dev_settings.is_production is False

    prod_settings = Settings(environment="production")
    assert prod_settings.is_production is True
    assert prod_settings.is_testing is False

    test_settings = Settings(environment="testing")
    assert test_settings.is_testing is True


@pytest.mark.unit
def test_settings_from_environment():
    """Test loading settings from environment variables."""
    with patch.dict(os.environ, {
        "APP_NAME": "TestApp",
        "DEBUG": "true",
        "MAX_EXECUTION_TIME": "120",
        "WEBHOOK_RATE_LIMIT": "5",
        "WEBHOOK_QUEUE_ENABLED": "1",
    }):
        test_settings = Settings()

        assert test_settings.app_name == "TestApp"
        assert test_settings.debug is True
        assert test_settings.max_execution_time == 120
        assert test_settings.webhook_rate_limit == 5
        assert test_settings.webhook_queue_enabled is True


@pytest.mark.unit
def test_get_settings_cached():
    """Test settings caching."""
    assert get_settings() is get_settings()
    assert settings is get_settings()
