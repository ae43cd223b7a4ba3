"""Base configuration shared by every environment."""
import os
from datetime import timedelta


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # JWT Configuration
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-in-production'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=2)
    JWT_ALGORITHM = 'HS256'

    # CORS
    CORS_ORIGINS = ["http://localhost:*", "http://127.0.0.1:*"]

    # Rate Limiting
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_DEFAULT = "200 per day, 50 per hour"

    # Attendance tokens
    QR_SECRET_KEY = os.environ.get('QR_SECRET_KEY') or 'qr-secret-key-change-in-production'
    QR_TOKEN_WINDOW_SECONDS = int(os.environ.get('QR_TOKEN_WINDOW_SECONDS', 30))
    SCAN_BASE_URL = os.environ.get('SCAN_BASE_URL') or 'http://localhost:3000'

    # Session lifecycle
    SESSION_HARD_TIMEOUT_SECONDS = int(os.environ.get('SESSION_HARD_TIMEOUT_SECONDS', 60 * 60))
    ATTENDANCE_GRACE_MINUTES = int(os.environ.get('ATTENDANCE_GRACE_MINUTES', 5))

    # Engine runtime
    ENGINE_CLOCK = 'scheduler'  # scheduler | manual
    EVENT_BUS_URL = os.environ.get('EVENT_BUS_URL') or None
    EVENT_HISTORY_SIZE = 500

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = 'logs/app.log'
