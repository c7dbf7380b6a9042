"""
Configuration classes for Harecame.
"""
import os
from datetime import timedelta


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration class"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY')
    DEBUG = False
    TESTING = False

    # Database (any SQLAlchemy URL, falls back to a local SQLite file)
    DATABASE_URL = os.environ.get('DATABASE_URL', '')
    DATABASE_PATH = os.environ.get('DATABASE_PATH', 'data/harecame.db')

    # JWT
    JWT_SECRET = os.environ.get('JWT_SECRET', 'your-secret-key-change-in-production')
    JWT_ISSUER = 'harecame-app'
    JWT_AUDIENCE = 'harecame-users'
    TOKEN_LIFETIMES = {
        'admin': timedelta(hours=24),
        'organizer': timedelta(hours=12),
        'camera': timedelta(hours=8),
        'viewer': timedelta(hours=4),
    }

    # Admin login
    ADMIN_KEY = os.environ.get('ADMIN_KEY', '')
    AUTH_COOKIE_NAME = 'harecame-session'
    AUTH_COOKIE_MAX_AGE = 24 * 60 * 60
    MAX_FAILED_ATTEMPTS = 5
    LOCKOUT_DURATION = 300  # 5 minutes
    ATTEMPT_WINDOW = 900    # 15 minutes

    # Rate limiting: name -> (window seconds, max requests)
    RATE_LIMIT_ENABLED = _env_bool('RATE_LIMIT_ENABLED', 'true')
    RATE_LIMITS = {
        'default': (60, 100),
        'create_event': (300, 5),
        'join_event': (60, 10),
        'status_update': (60, 200),
        'analytics': (60, 500),
        'error_reporting': (60, 50),
    }

    # Cameras
    MAX_ACTIVE_CAMERAS = 10

    # LiveKit media room
    LIVEKIT_URL = os.environ.get('LIVEKIT_URL', '')
    LIVEKIT_API_KEY = os.environ.get('LIVEKIT_API_KEY', '')
    LIVEKIT_API_SECRET = os.environ.get('LIVEKIT_API_SECRET', '')
    MEDIA_TOKEN_TTL = timedelta(hours=2)

    # YouTube Data API v3
    YOUTUBE_API_KEY = os.environ.get('YOUTUBE_API_KEY', '')
    YOUTUBE_API_URL = 'https://www.googleapis.com/youtube/v3'
    YOUTUBE_TIMEOUT = 5

    # MQTT fan-out (disabled when no broker is set)
    MQTT_BROKER = os.environ.get('MQTT_BROKER', '')
    MQTT_PORT = int(os.environ.get('MQTT_PORT', '8883'))
    MQTT_USE_TLS = _env_bool('MQTT_USE_TLS', 'true')
    MQTT_CLIENT_ID = 'harecame_server'
    MQTT_USERNAME = os.environ.get('MQTT_USERNAME', '')
    MQTT_PASSWORD = os.environ.get('MQTT_PASSWORD', '')
    MQTT_TOPIC_PREFIX = os.environ.get('MQTT_TOPIC_PREFIX', 'harecame')

    # Server-Sent Events
    SSE_HEARTBEAT_SECONDS = 30
    SSE_QUEUE_SIZE = 100

    # HTTP
    ALLOWED_ORIGINS = [o.strip() for o in os.environ.get('ALLOWED_ORIGINS', '').split(',') if o.strip()]
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL', 'http://localhost:5000')
    HTTPS_ENABLED = _env_bool('HTTPS_ENABLED', 'false')
    AUDIT_LOG_DIR = os.environ.get('AUDIT_LOG_DIR', 'logs')

    @classmethod
    def database_uri(cls) -> str:
        if cls.DATABASE_URL:
            # Hosted Postgres providers still hand out the legacy scheme
            if cls.DATABASE_URL.startswith('postgres://'):
                return cls.DATABASE_URL.replace('postgres://', 'postgresql://', 1)
            return cls.DATABASE_URL
        return f'sqlite:///{os.path.abspath(cls.DATABASE_PATH)}'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    HTTPS_ENABLED = _env_bool('HTTPS_ENABLED', 'true')


class TestingConfig(Config):
    """Test configuration: in-memory database, fixed secrets"""
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    DATABASE_URL = 'sqlite://'
    JWT_SECRET = 'test-jwt-secret-padded-to-thirty-two-bytes'
    ADMIN_KEY = 'test-admin-key'
    RATE_LIMIT_ENABLED = False
    LIVEKIT_URL = 'wss://livekit.test'
    LIVEKIT_API_KEY = 'test-livekit-key'
    LIVEKIT_API_SECRET = 'test-livekit-secret-that-is-long-enough'
    YOUTUBE_API_KEY = ''
    MQTT_BROKER = ''
    AUDIT_LOG_DIR = ''
    HTTPS_ENABLED = False
    SSE_HEARTBEAT_SECONDS = 0.05
