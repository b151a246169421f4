import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, '') else default


class Config:
    """Base configuration class"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'dev-jwt-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', 'http://localhost:3000,http://localhost:5173').split(',')
    SEED_DATABASE = os.environ.get('SEED_DATABASE', 'false').lower() in ('1', 'true', 'yes')

    # Cost planning
    DEFAULT_SOLD_COST_PERCENTAGE = _env_float('DEFAULT_SOLD_COST_PERCENTAGE', 11.0)
    MARGIN_RED_MAX = _env_float('MARGIN_RED_MAX', 5.0)
    MARGIN_GREEN_MIN = _env_float('MARGIN_GREEN_MIN', 20.0)
    BUDGET_VARIANCE_THRESHOLD = _env_float('BUDGET_VARIANCE_THRESHOLD', 10.0)
    SAVE_DRAFT_TIMEOUT_SECONDS = _env_float('SAVE_DRAFT_TIMEOUT_SECONDS', 30.0)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///timesheet_planner.db'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')

    # Security settings for production
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Rate limiting for production
    RATELIMIT_DEFAULT = "100 per hour"
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL', 'memory://')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'WARNING')

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',') if os.environ.get('CORS_ORIGINS') else []

    JWT_ACCESS_TOKEN_EXPIRES = int(os.environ.get('JWT_ACCESS_TOKEN_EXPIRES', 900))  # 15 minutes
    JWT_REFRESH_TOKEN_EXPIRES = int(os.environ.get('JWT_REFRESH_TOKEN_EXPIRES', 604800))  # 7 days


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    RATELIMIT_ENABLED = False
    SEED_DATABASE = False


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
