"""
Planning Assistant Tests

Prompt construction and per-operation sampling settings. The AI client is a
MagicMock, so nothing leaves the process.
"""

from unittest.mock import MagicMock

import pytest

from ai_connector import AIRequestClient
from planner_datashapes import AIFailure, AISuccess, ErrorKind, MessageRole
from planning_assistant import (
    CHAT_CONFIG, IMAGE_ANALYSIS_CONFIG, STORY_CONFIG, VISION_BOARD_CONFIG,
    CoupleInfo, PlanningAssistant, UserContext, VisionPreferences
)


@pytest.fixture
def client():
    mock = MagicMock(spec=AIRequestClient)
    mock.adapter = MagicMock()
    mock.adapter.name = "gemini"
    mock.send.return_value = AISuccess(payload={"status": "connected"})
    return mock


@pytest.fixture
def assistant(client):
    return PlanningAssistant(client)


def sent(client):
    messages, config = client.send.call_args[0]
    return messages, config


class TestPlanningAssistant:

    def test_wedding_story(self, assistant, client):
        """
        HAPPY PATH: Story prompt carries couple details and story sampling settings.
        """
        assistant.generate_wedding_story(CoupleInfo(names="Ana & Ben", style="formal", venue="Lakeside Barn"))

        messages, config = sent(client)
        assert messages[0].role == MessageRole.SYSTEM
        assert "Couple Names: Ana & Ben" in messages[1].content
        assert "Venue: Lakeside Barn" in messages[1].content
        assert "Wedding Date: Not specified" in messages[1].content
        assert config == STORY_CONFIG
        assert (config.temperature, config.max_output_tokens) == (0.9, 1024)

    def test_story_style_is_validated(self, assistant, client):
        """
        EDGE: Unsupported writing styles are rejected before any request.
        """
        with pytest.raises(ValueError):
            assistant.generate_wedding_story(CoupleInfo(names="Ana & Ben", style="gothic"))
        client.send.assert_not_called()

    def test_vision_board(self, assistant, client):
        prefs = VisionPreferences(aesthetic="boho", venue="garden", colors=["sage", "blush"], season="spring")

        assistant.generate_vision_board_content(prefs)

        messages, config = sent(client)
        assert "Color Palette: sage, blush" in messages[1].content
        assert "Elements to Avoid: None specified" in messages[1].content
        assert config == VISION_BOARD_CONFIG

    def test_image_analysis(self, assistant, client):
        assistant.analyze_wedding_image("A-line gown under string lights")

        messages, config = sent(client)
        assert "Image Description: A-line gown under string lights" in messages[1].content
        assert config == IMAGE_ANALYSIS_CONFIG

    def test_chat_response_with_context(self, assistant, client):
        context = UserContext(name="Ana", style_profile={"aesthetic": "modern"})

        assistant.generate_chat_response("How early should we book a DJ?", context)

        messages, config = sent(client)
        assert 'User Message: "How early should we book a DJ?"' in messages[1].content
        assert '- Style Profile: {"aesthetic": "modern"}' in messages[1].content
        assert "- Wedding Date: Not provided" in messages[1].content
        assert config == CHAT_CONFIG

    def test_prompts_are_dedented(self, assistant, client):
        assistant.analyze_wedding_image("veil")
        messages, _ = sent(client)
        assert messages[1].content.startswith("Analyze this wedding-related image")

    def test_connection_test_returns_envelope(self, assistant, client):
        result = assistant.test_connection()

        assert result.success
        messages, _ = sent(client)
        assert "gemini API is working correctly" in messages[1].content

    def test_failures_pass_through(self, assistant, client):
        """
        EDGE: Classified failures come back unchanged.
        """
        failure = AIFailure(ErrorKind.QUOTA_EXCEEDED, "quota", attempts=1)
        client.send.return_value = failure

        assert assistant.analyze_wedding_image("veil") is failure

    def test_status_delegates_to_client(self, assistant, client):
        client.is_ready.return_value = False
        client.get_config.return_value = {"provider": "gemini"}

        assert assistant.is_ready() is False
        assert assistant.get_config() == {"provider": "gemini"}
