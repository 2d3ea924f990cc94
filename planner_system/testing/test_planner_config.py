"""
Configuration and Status CLI Tests
"""

import json
import logging
from unittest.mock import patch

import pytest

from check_providers import check_provider, main
from planner_config import (
    DevelopmentConfig, PlannerConfig, ProductionConfig, TestConfig, configure_logging, get_config
)
from realtime_session import RealtimeSessionManager


class TestPlannerConfig:

    @pytest.mark.parametrize("env, expected", [
        ("development", DevelopmentConfig),
        ("production", ProductionConfig),
        ("test", TestConfig),
        ("staging", DevelopmentConfig),
    ])
    def test_get_config(self, env, expected):
        assert get_config(env) is expected

    def test_provider_settings(self):
        settings = TestConfig.get_provider_settings("Deepseek")
        assert settings['api_key'] == "test-deepseek-key"
        assert settings['model'] == TestConfig.DEEPSEEK_MODEL

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            PlannerConfig.get_provider_settings("claude")

    def test_validate_config_flags_bad_values(self):
        """
        EDGE: Negative retry counts and unknown default providers are reported.
        """
        class BrokenConfig(TestConfig):
            AI_MAX_RETRIES = -1
            DEFAULT_PROVIDER = "openai"

        issues = BrokenConfig.validate_config()

        assert any("AI_MAX_RETRIES" in issue for issue in issues)
        assert any("AI_PROVIDER" in issue for issue in issues)

    def test_manager_from_config(self):
        session = RealtimeSessionManager.from_config(TestConfig, user_id="u1")

        assert session.reconnect_delay == TestConfig.COLLAB_RECONNECT_DELAY
        assert session.max_reconnect_attempts == TestConfig.COLLAB_MAX_RECONNECT_ATTEMPTS
        assert session.build_url("u1", "p1").startswith(f"ws://{TestConfig.COLLAB_WS_HOST}/collaboration?")

    def test_configure_logging_adds_handlers_once(self):
        root = logging.getLogger()
        saved, saved_level = root.handlers[:], root.level
        root.handlers = []
        try:
            configure_logging(TestConfig)
            configure_logging(TestConfig)
            assert len(root.handlers) == 1
            assert root.level == logging.DEBUG
        finally:
            root.handlers = saved
            root.setLevel(saved_level)


class TestCheckProviders:

    def test_check_provider_without_live_test(self):
        status = check_provider("gemini", TestConfig)

        assert status['provider'] == "gemini"
        assert status['is_initialized'] is True
        assert status['live_ok'] is None

    def test_missing_key_is_reported(self):
        class NoKeys(TestConfig):
            DEEPSEEK_API_KEY = None

        status = check_provider("deepseek", NoKeys)

        assert status['is_initialized'] is False
        assert "Missing" in status['detail']

    def test_json_output(self, capsys):
        """
        HAPPY PATH: --json prints every provider and exits 0 when the default is usable.
        """
        exit_code = main(["--json", "--env", "test"])

        report = json.loads(capsys.readouterr().out)
        assert {p['provider'] for p in report['providers']} == {"deepseek", "gemini"}
        assert exit_code == (0 if not report['issues'] else 1)

    def test_live_test_uses_connection_prompt(self):
        with patch('check_providers.PlanningAssistant') as assistant_cls:
            assistant_cls.return_value.test_connection.return_value.success = True
            status = check_provider("deepseek", TestConfig, live=True)

        assert status['live_ok'] is True
        assert status['detail'] == "Responding"
