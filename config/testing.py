"""
Testing configuration for the roadside dispatch backend
"""
import os
from config.settings import Config


class TestingConfig(Config):
    """Testing configuration with isolated database and safe defaults"""

    TESTING = True
    DEBUG = False

    # Use in-memory SQLite for fast tests
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'TEST_DATABASE_URL',
        'sqlite:///:memory:'
    )
    AUTO_CREATE_TABLES = False

    JWT_SECRET = 'test-jwt-secret'

    # Disable rate limiting in tests
    RATELIMIT_ENABLED = False

    # Timers are driven by the test suite, never by a background thread
    START_SCHEDULER = False
    RECOVER_ACCEPTANCE_TIMERS = False

    SOCKETIO_ASYNC_MODE = 'threading'

    # Use local file storage for job documents
    UPLOAD_FOLDER = '/tmp/roadside_test_uploads'

    # Logging
    LOG_LEVEL = 'WARNING'

    # CORS - allow local frontends in tests
    CORS_ORIGINS = ['http://localhost:3000']
