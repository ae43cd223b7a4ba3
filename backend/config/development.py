"""Development configuration."""
import os

from .base import Config


class DevelopmentConfig(Config):
    """Development configuration class."""

    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.getenv('DEV_DATABASE_URL', 'sqlite:///rollcall_dev.db')
    SQLALCHEMY_ECHO = False

    # Redis (optional in dev, events stay in process without it)
    EVENT_BUS_URL = os.getenv('EVENT_BUS_URL')

    LOG_LEVEL = 'DEBUG'
