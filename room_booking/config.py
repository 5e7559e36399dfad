"""
Flask application configuration classes.
Values come from the environment; a local ``.env`` file is loaded first.
"""

import os
import secrets
from datetime import timedelta

from dotenv import load_dotenv

from .oauth import resolve_redirect_uri

load_dotenv()


def _first_env(*names, default=None):
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


class Config:
    """Base configuration class with common settings."""

    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Storage: auto | redis | yaml | memory
    STORE_BACKEND = os.environ.get('STORE_BACKEND', 'auto')
    REDIS_URL = _first_env('REDIS_URL', 'UPSTASH_REDIS_URL', 'KV_URL')
    REDIS_TIMEOUT_SECONDS = float(os.environ.get('REDIS_TIMEOUT_SECONDS', 5))
    DATA_DIR = os.environ.get('DATA_DIR') or 'data'

    # Room and calendar
    TIMEZONE = os.environ.get('TIMEZONE', 'America/Los_Angeles')
    ROOM_NAME = os.environ.get('ROOM_NAME', 'Film Room')
    ROOM_LOCATION = os.environ.get('ROOM_LOCATION', 'Room 5 / The Film Room')
    HOLIDAY_COUNTRY = os.environ.get('HOLIDAY_COUNTRY') or None

    # Google OAuth / Calendar
    PORT = int(os.environ.get('PORT', 3000))
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET')
    GOOGLE_REDIRECT_URI = resolve_redirect_uri(os.environ, PORT)
    GOOGLE_CALENDAR_ID = os.environ.get('GOOGLE_CALENDAR_ID', 'primary')
    CALENDAR_SYNC_TIMEOUT_SECONDS = float(os.environ.get('CALENDAR_SYNC_TIMEOUT_SECONDS', 10))

    # Realtime
    SSE_HEARTBEAT_SECONDS = float(os.environ.get('SSE_HEARTBEAT_SECONDS', 25))
    POLL_INTERVAL_SECONDS = int(os.environ.get('POLL_INTERVAL_SECONDS', 30))

    # Sessions
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = bool(os.environ.get('VERCEL'))
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    TESTING = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', 'true').lower() == 'true'
    PREFERRED_URL_SCHEME = 'https' if SESSION_COOKIE_SECURE else 'http'

    @classmethod
    def validate(cls) -> None:
        """Validate that required production environment variables are set."""
        if not os.environ.get('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production")


class TestConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = 'test-secret-key'
    STORE_BACKEND = 'memory'
    REDIS_URL = None
    GOOGLE_CLIENT_ID = None
    GOOGLE_CLIENT_SECRET = None
    HOLIDAY_COUNTRY = None
    SSE_HEARTBEAT_SECONDS = 0.05
    LOG_LEVEL = 'DEBUG'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'test': TestConfig,
    'default': DevelopmentConfig
}
