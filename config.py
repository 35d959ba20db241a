import os
import secrets
from dotenv import load_dotenv
from typing import Optional

from services.common.errors import ConfigurationError

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


def _env_flag(key: str, default: str = 'false') -> bool:
    return os.environ.get(key, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        # Skip validation in testing environment
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        required_vars = ['GATEWAY_PRODUCTION_API_KEY', 'GATEWAY_CALLBACK_AUTH_KEY', 'CALLBACK_BASE_URL']
        missing_vars = [var for var in required_vars if not os.environ.get(var)]

        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'campaigns.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # BizChat Gateway
    GATEWAY_SANDBOX_API_URL = os.environ.get('GATEWAY_SANDBOX_API_URL', 'https://gw-dev.bizchat1.co.kr:8443')
    GATEWAY_PRODUCTION_API_URL = os.environ.get('GATEWAY_PRODUCTION_API_URL', 'https://gw.bizchat1.co.kr')
    GATEWAY_SANDBOX_API_KEY = os.environ.get('GATEWAY_SANDBOX_API_KEY')
    GATEWAY_PRODUCTION_API_KEY = os.environ.get('GATEWAY_PRODUCTION_API_KEY')
    GATEWAY_DEFAULT_ENVIRONMENT = os.environ.get('GATEWAY_DEFAULT_ENVIRONMENT', 'sandbox')
    DEPLOYMENT_ENV = os.environ.get('DEPLOYMENT_ENV')
    # Production traffic must be opted into explicitly
    GATEWAY_FORCE_SANDBOX = _env_flag('GATEWAY_FORCE_SANDBOX', 'true')
    GATEWAY_ALLOW_SIMULATION = _env_flag('GATEWAY_ALLOW_SIMULATION', 'false')
    GATEWAY_CONTRACT_VERSION = os.environ.get('GATEWAY_CONTRACT_VERSION', 'v2')
    GATEWAY_CONNECT_TIMEOUT = float(os.environ.get('GATEWAY_CONNECT_TIMEOUT') or 5)
    GATEWAY_READ_TIMEOUT = float(os.environ.get('GATEWAY_READ_TIMEOUT') or 30)
    GATEWAY_LOG_BODY_LIMIT = int(os.environ.get('GATEWAY_LOG_BODY_LIMIT') or 500)
    GATEWAY_COMPANY_NAME = os.environ.get('GATEWAY_COMPANY_NAME', '')

    # Inbound callbacks
    GATEWAY_CALLBACK_AUTH_KEY = os.environ.get('GATEWAY_CALLBACK_AUTH_KEY')
    CALLBACK_BASE_URL = os.environ.get('CALLBACK_BASE_URL', 'http://localhost:5000')

    # A lock older than this is considered abandoned by a crashed worker
    IN_FLIGHT_LOCK_TTL_SECONDS = int(os.environ.get('IN_FLIGHT_LOCK_TTL_SECONDS') or 120)

    # Application settings
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024
    JSON_SORT_KEYS = False

    SENTRY_DSN = os.environ.get('SENTRY_DSN')

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        pass


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    GATEWAY_SANDBOX_API_URL = 'https://gateway.test'
    GATEWAY_PRODUCTION_API_URL = 'https://gateway-prod.test'
    GATEWAY_SANDBOX_API_KEY = 'sandbox-test-key'
    GATEWAY_PRODUCTION_API_KEY = 'production-test-key'
    GATEWAY_DEFAULT_ENVIRONMENT = 'sandbox'
    DEPLOYMENT_ENV = None
    GATEWAY_FORCE_SANDBOX = True
    GATEWAY_ALLOW_SIMULATION = False
    GATEWAY_CONTRACT_VERSION = 'v2'
    GATEWAY_CALLBACK_AUTH_KEY = 'callback-secret'
    CALLBACK_BASE_URL = 'https://broker.test'
    GATEWAY_COMPANY_NAME = 'Test Company'
    SENTRY_DSN = None


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')
    GATEWAY_ALLOW_SIMULATION = False

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        if not cls.SQLALCHEMY_DATABASE_URI:
            cls.SQLALCHEMY_DATABASE_URI = cls.get_required_env('DATABASE_URL')

        # Validate all required config
        cls.validate_required_config()


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
