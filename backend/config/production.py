"""Production configuration."""
import os
from datetime import timedelta

from .base import Config


class ProductionConfig(Config):
    """Production configuration class."""

    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv('SECRET_KEY')  # Must be set in production

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL')

    # JWT Configuration
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)

    # Rate Limiting
    RATELIMIT_STORAGE_URI = os.getenv('REDIS_URL', 'memory://')
    RATELIMIT_DEFAULT = "100 per day, 20 per hour"

    # Attendance tokens
    QR_SECRET_KEY = os.getenv('QR_SECRET_KEY')
    SCAN_BASE_URL = os.getenv('SCAN_BASE_URL')

    # Events fan out through Redis pub/sub
    EVENT_BUS_URL = os.getenv('EVENT_BUS_URL') or os.getenv('REDIS_URL')

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = os.getenv('LOG_FILE', '/app/logs/app.log')
