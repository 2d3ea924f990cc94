#!/usr/bin/env python3
"""
Planner Configuration
Environment-driven settings for the AI providers and the collaboration socket.

Values are read once at import time, after .env has been loaded. Use
get_config() to pick the environment profile.
"""
import logging
import os

from dotenv import load_dotenv

load_dotenv()


class PlannerConfig:
    """Configuration for the planner services"""

    # AI Providers
    DEEPSEEK_API_KEY = os.getenv('DEEPSEEK_API_KEY')
    DEEPSEEK_BASE_URL = os.getenv('DEEPSEEK_BASE_URL', 'https://api.deepseek.com/v1')
    DEEPSEEK_MODEL = os.getenv('DEEPSEEK_MODEL', 'deepseek-chat')

    GEMINI_API_KEY = os.getenv('GEMINI_API_KEY')
    GEMINI_BASE_URL = os.getenv('GEMINI_BASE_URL', 'https://generativelanguage.googleapis.com/v1beta')
    GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-1.5-flash')

    DEFAULT_PROVIDER = os.getenv('AI_PROVIDER', 'deepseek')

    # Retry policy (seconds)
    AI_REQUEST_TIMEOUT = float(os.getenv('AI_REQUEST_TIMEOUT', 60))
    AI_MAX_RETRIES = int(os.getenv('AI_MAX_RETRIES', 3))
    AI_RETRY_BASE_DELAY = float(os.getenv('AI_RETRY_BASE_DELAY', 1.0))

    # Collaboration socket
    COLLAB_WS_HOST = os.getenv('COLLAB_WS_HOST', 'localhost:8080')
    COLLAB_MAX_RECONNECT_ATTEMPTS = int(os.getenv('COLLAB_MAX_RECONNECT_ATTEMPTS', 5))
    COLLAB_RECONNECT_DELAY = float(os.getenv('COLLAB_RECONNECT_DELAY', 1.0))
    COLLAB_OPEN_TIMEOUT = float(os.getenv('COLLAB_OPEN_TIMEOUT', 10))
    COLLAB_DEGRADED_DELAY = float(os.getenv('COLLAB_DEGRADED_DELAY', 0.1))

    # Logging Configuration
    LOG_LEVEL = os.getenv('PLANNER_LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('PLANNER_LOG_FILE', '')

    @classmethod
    def get_provider_settings(cls, provider: str):
        """Credential, base URL and model for a provider name"""
        provider = provider.lower()
        if provider == 'deepseek':
            return {
                'api_key': cls.DEEPSEEK_API_KEY,
                'base_url': cls.DEEPSEEK_BASE_URL,
                'model': cls.DEEPSEEK_MODEL,
            }
        if provider == 'gemini':
            return {
                'api_key': cls.GEMINI_API_KEY,
                'base_url': cls.GEMINI_BASE_URL,
                'model': cls.GEMINI_MODEL,
            }
        raise ValueError(f"Unknown AI provider: {provider}")

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        issues = []

        if cls.AI_MAX_RETRIES < 0:
            issues.append("AI_MAX_RETRIES must not be negative")

        if cls.AI_RETRY_BASE_DELAY < 0 or cls.COLLAB_RECONNECT_DELAY < 0:
            issues.append("Retry and reconnect delays must not be negative")

        if cls.AI_REQUEST_TIMEOUT <= 0 or cls.COLLAB_OPEN_TIMEOUT <= 0:
            issues.append("Timeouts must be positive")

        if cls.COLLAB_MAX_RECONNECT_ATTEMPTS < 0:
            issues.append("COLLAB_MAX_RECONNECT_ATTEMPTS must not be negative")

        if cls.DEFAULT_PROVIDER.lower() not in ('deepseek', 'gemini'):
            issues.append(f"AI_PROVIDER must be 'deepseek' or 'gemini', got {cls.DEFAULT_PROVIDER!r}")

        return issues


# Environment-specific configurations
class DevelopmentConfig(PlannerConfig):
    """Development environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(PlannerConfig):
    """Production environment configuration"""
    DEBUG = False
    LOG_LEVEL = 'INFO'


class TestConfig(PlannerConfig):
    """Test environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    DEEPSEEK_API_KEY = 'test-deepseek-key'
    GEMINI_API_KEY = 'test-gemini-key'
    AI_REQUEST_TIMEOUT = 5.0
    AI_RETRY_BASE_DELAY = 0.0
    COLLAB_RECONNECT_DELAY = 0.01
    COLLAB_OPEN_TIMEOUT = 1.0
    COLLAB_DEGRADED_DELAY = 0.01


# Configuration factory
def get_config(env=None):
    """Get configuration based on environment"""
    env = env or os.getenv('PLANNER_ENV', 'development')

    configs = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'test': TestConfig
    }

    return configs.get(env, DevelopmentConfig)


def configure_logging(config=PlannerConfig):
    """Attach console (and optional file) handlers to the root logger"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO))

    if root.handlers:
        return root

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if config.LOG_FILE:
        file_handler = logging.FileHandler(config.LOG_FILE)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root
