"""
Configuration settings for different environments
"""
import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///roadside.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = True

    # Authentication (tokens are issued elsewhere; we only verify them)
    JWT_SECRET = os.environ.get('JWT_SECRET') or 'dev-jwt-secret-change-in-production'
    JWT_ALGORITHM = 'HS256'

    # CORS
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Real-time transport
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE') or None

    # Rate limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'

    # Acceptance window policy
    SP_ACCEPTANCE_TIMEOUT_SECONDS = int(os.environ.get('SP_ACCEPTANCE_TIMEOUT_SECONDS', 360))
    DRIVER_ACCEPTANCE_TIMEOUT_SECONDS = int(os.environ.get('DRIVER_ACCEPTANCE_TIMEOUT_SECONDS', 120))

    # Background scheduler hosting the acceptance timers
    START_SCHEDULER = os.environ.get('START_SCHEDULER', 'true').lower() in ['true', 'on', '1']
    RECOVER_ACCEPTANCE_TIMERS = True

    # Platform identity: vendor ids of the top-level operator start with this
    OWNER_VENDOR_PREFIX = os.environ.get('OWNER_VENDOR_PREFIX', 'OWNER')

    # Purchase-order numbering
    PO_NUMBER_START = 10000001
    PO_NUMBER_WIDTH = 8

    # Job documents
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER') or os.path.join(os.getcwd(), 'uploads', 'jobs')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Error monitoring
    SENTRY_DSN = os.environ.get('SENTRY_DSN')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False
    AUTO_CREATE_TABLES = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,
        'max_overflow': 40,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
    }

