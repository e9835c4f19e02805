import os
import secrets
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be an integer, got {value!r}")


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    ENV_NAME = 'base'

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        # Skip validation in testing environment or during migrations
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        if not (os.environ.get('DATABASE_URL') or os.environ.get('POSTGRES_URI')):
            raise ConfigurationError(
                "Missing required environment variables: DATABASE_URL or POSTGRES_URI"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('POSTGRES_URI') or \
        'sqlite:///' + os.path.join(basedir, 'engagement.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Celery picks these up through celery_config.create_celery_app.
    # 'redis' is the docker-compose service name.
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    # Engagement engine
    SESSION_INACTIVITY_MINUTES = _env_int('SESSION_INACTIVITY_MINUTES', 30)
    SESSION_CLEANUP_INTERVAL_SECONDS = _env_int('SESSION_CLEANUP_INTERVAL_SECONDS', 300)
    CONFLICT_RETRY_LIMIT = _env_int('CONFLICT_RETRY_LIMIT', 3)
    DEAL_LOCK_TIMEOUT_SECONDS = _env_int('DEAL_LOCK_TIMEOUT_SECONDS', 10)

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        pass


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False
    ENV_NAME = 'development'

    # Development-specific database URI
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True
    ENV_NAME = 'testing'

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Use test Redis database
    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'

    # Short waits so lock contention shows up quickly in tests
    DEAL_LOCK_TIMEOUT_SECONDS = 2

    LOG_LEVEL = 'WARNING'


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False
    ENV_NAME = 'production'

    # Production database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    # If using rediss:// (SSL), append required parameters
    if CELERY_BROKER_URL.startswith('rediss://'):
        if 'ssl_cert_reqs' not in CELERY_BROKER_URL:
            # Use CERT_NONE for managed Redis/Valkey services
            separator = '&' if '?' in CELERY_BROKER_URL else '?'
            ssl_params = f"{separator}ssl_cert_reqs=CERT_NONE"
            CELERY_BROKER_URL += ssl_params
            CELERY_RESULT_BACKEND += ssl_params

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        # Validate all required config
        cls.validate_required_config()

        if not cls.SQLALCHEMY_DATABASE_URI:
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.get_required_env('POSTGRES_URI')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
