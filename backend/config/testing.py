"""Testing configuration."""
from datetime import timedelta

from .base import Config


class TestingConfig(Config):
    """Testing configuration class."""

    DEBUG = False
    TESTING = True
    SECRET_KEY = 'test-secret-key'

    # Database (in-memory SQLite for testing)
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # JWT Configuration
    JWT_SECRET_KEY = 'test-jwt-secret-with-enough-length-for-hs256'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=5)

    # Rate Limiting (disabled for testing)
    RATELIMIT_ENABLED = False

    QR_SECRET_KEY = 'test-qr-secret'
    SCAN_BASE_URL = 'http://testserver'

    # Deterministic timers, in-process events
    ENGINE_CLOCK = 'manual'
    EVENT_BUS_URL = None

    # Logging
    LOG_LEVEL = 'WARNING'
