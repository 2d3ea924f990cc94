#!/usr/bin/env python3
"""
Planning Assistant - Wedding prompts on top of AIRequestClient

Each operation builds a system + user message pair asking for a JSON answer
and sends it with its own sampling settings. Results are the client's
envelopes, unchanged.
"""

import json
import logging
from dataclasses import dataclass, field
from textwrap import dedent
from typing import Any, Dict, List, Optional

from ai_connector import AIRequestClient
from planner_datashapes import ChatMessage, GenerationConfig, ResponseEnvelope, utc_now

logger = logging.getLogger(__name__)

STORY_STYLES = ("romantic", "casual", "formal")

STORY_CONFIG = GenerationConfig(temperature=0.9, max_output_tokens=1024)
VISION_BOARD_CONFIG = GenerationConfig(temperature=0.8, max_output_tokens=1536)
IMAGE_ANALYSIS_CONFIG = GenerationConfig(temperature=0.7, max_output_tokens=2048)
CHAT_CONFIG = GenerationConfig(temperature=0.8, max_output_tokens=1024)


@dataclass
class CoupleInfo:
    names: str
    style: str = "romantic"
    wedding_date: Optional[str] = None
    venue: Optional[str] = None
    additional_info: Optional[str] = None


@dataclass
class VisionPreferences:
    aesthetic: str
    venue: str
    colors: List[str]
    season: str
    must_have: Optional[str] = None
    avoid: Optional[str] = None


@dataclass
class UserContext:
    name: Optional[str] = None
    wedding_date: Optional[str] = None
    style_profile: Optional[Dict[str, Any]] = None
    recent_activity: Optional[str] = None


@dataclass
class _Exchange:
    system: str
    prompt: str
    config: GenerationConfig = field(default_factory=GenerationConfig)

    def messages(self) -> List[ChatMessage]:
        return [ChatMessage.system(self.system), ChatMessage.user(dedent(self.prompt).strip())]


class PlanningAssistant:
    """Wedding planning operations for one AI provider"""

    def __init__(self, client: AIRequestClient):
        self.client = client

    def is_ready(self) -> bool:
        return self.client.is_ready()

    def get_config(self) -> Dict[str, Any]:
        return self.client.get_config()

    def _send(self, operation: str, exchange: _Exchange) -> ResponseEnvelope:
        result = self.client.send(exchange.messages(), exchange.config)
        if not result.success:
            logger.warning(f"{operation} failed: [{result.error_kind.value}] {result.message}")
        return result

    def test_connection(self) -> ResponseEnvelope:
        logger.info(f"Testing {self.client.adapter.name} API connection...")
        result = self._send("test_connection", _Exchange(
            system="You are a helpful assistant. Respond only with valid JSON.",
            prompt=f"""
                Please respond with a simple JSON object containing:
                {{
                  "status": "connected",
                  "message": "{self.client.adapter.name} API is working correctly",
                  "timestamp": "{utc_now().isoformat()}"
                }}
            """,
        ))

        if result.success:
            logger.info(f"{self.client.adapter.name} API connection test successful")
        return result

    def generate_wedding_story(self, couple: CoupleInfo) -> ResponseEnvelope:
        if couple.style not in STORY_STYLES:
            raise ValueError(f"Story style must be one of {', '.join(STORY_STYLES)}")

        return self._send("generate_wedding_story", _Exchange(
            system=("You are a professional wedding story writer. Create beautiful, personalized wedding "
                    "stories based on the provided information. Always respond with valid JSON."),
            prompt=f"""
                Generate a beautiful wedding story for a couple's website based on the following information:

                Couple Names: {couple.names}
                Writing Style: {couple.style}
                Wedding Date: {couple.wedding_date or 'Not specified'}
                Venue: {couple.venue or 'Not specified'}
                Additional Info: {couple.additional_info or 'None'}

                Please create a {couple.style} wedding story that is approximately 150-200 words long.

                Return the response in this JSON format:
                {{
                  "story": "The complete wedding story text",
                  "style": "{couple.style}",
                  "wordCount": number,
                  "suggestions": ["suggestion1", "suggestion2", "suggestion3"]
                }}
            """,
            config=STORY_CONFIG,
        ))

    def generate_vision_board_content(self, preferences: VisionPreferences) -> ResponseEnvelope:
        return self._send("generate_vision_board_content", _Exchange(
            system=("You are a professional wedding designer and stylist. Create detailed vision board "
                    "recommendations based on wedding preferences. Always respond with valid JSON."),
            prompt=f"""
                Generate vision board content for a wedding based on these preferences:

                Aesthetic: {preferences.aesthetic}
                Venue Type: {preferences.venue}
                Color Palette: {', '.join(preferences.colors)}
                Season: {preferences.season}
                Must-Have Elements: {preferences.must_have or 'None specified'}
                Elements to Avoid: {preferences.avoid or 'None specified'}

                Please provide detailed recommendations in this JSON format:
                {{
                  "moodDescription": "A detailed description of the overall mood and aesthetic",
                  "colorPalette": ["#hex1", "#hex2", "#hex3", "#hex4", "#hex5"],
                  "keywords": ["keyword1", "keyword2", "keyword3", "keyword4", "keyword5"],
                  "decorElements": ["element1", "element2", "element3", "element4", "element5"],
                  "flowerSuggestions": ["flower1", "flower2", "flower3"],
                  "venueFeatures": ["feature1", "feature2", "feature3"],
                  "lightingIdeas": ["idea1", "idea2", "idea3"],
                  "textileTextures": ["texture1", "texture2", "texture3"]
                }}
            """,
            config=VISION_BOARD_CONFIG,
        ))

    def analyze_wedding_image(self, image_description: str) -> ResponseEnvelope:
        return self._send("analyze_wedding_image", _Exchange(
            system=("You are a professional wedding stylist and image analyst. Analyze wedding-related "
                    "images and provide detailed insights. Always respond with valid JSON."),
            prompt=f"""
                Analyze this wedding-related image and provide detailed insights:

                Image Description: {image_description}

                Please provide a comprehensive analysis in this JSON format:
                {{
                  "overallStyle": {{"aesthetic": "", "keywords": [], "mood": "", "colorScheme": []}},
                  "weddingDress": {{"silhouette": "", "neckline": "", "fabric": "", "embellishments": [], "styleCategory": ""}},
                  "florals": {{"mainFlowers": [], "colorPalette": [], "arrangementStyle": "", "season": ""}},
                  "venue": {{"settingType": "", "keyFeatures": [], "lighting": "", "searchTerms": []}}
                }}
            """,
            config=IMAGE_ANALYSIS_CONFIG,
        ))

    def generate_chat_response(self, message: str, context: Optional[UserContext] = None) -> ResponseEnvelope:
        context = context or UserContext()
        style_profile = json.dumps(context.style_profile) if context.style_profile else 'Not provided'

        return self._send("generate_chat_response", _Exchange(
            system=("You are a helpful AI wedding planning assistant. Provide personalized, friendly advice "
                    "for wedding planning questions. Always respond with valid JSON."),
            prompt=f"""
                Respond to this user message with helpful, personalized advice:

                User Message: "{message}"

                User Context:
                - Name: {context.name or 'Not provided'}
                - Wedding Date: {context.wedding_date or 'Not provided'}
                - Style Profile: {style_profile}
                - Recent Activity: {context.recent_activity or 'Not provided'}

                Please provide a helpful, friendly response in this JSON format:
                {{
                  "response": "Your helpful response to the user",
                  "suggestions": ["actionable suggestion 1", "actionable suggestion 2"],
                  "relatedTopics": ["topic1", "topic2", "topic3"],
                  "confidence": 0.95
                }}

                Keep responses conversational, helpful, and specific to wedding planning.
            """,
            config=CHAT_CONFIG,
        ))
