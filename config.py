# Classroom QR Attendance Configuration

import logging
import os
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_bool(name, default):
    return os.environ.get(name, str(default)).lower() in ['true', 'on', '1', 'yes']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'rollcall-secret-key-change-me'
    DEBUG = _env_bool('DEBUG', False)
    TESTING = False

    # Local key-value store
    DATABASE_PATH = Path(os.environ.get('ROLLCALL_DATABASE_PATH') or BASE_DIR / 'database' / 'rollcall.db')

    # Storage keys
    LEDGER_KEY = 'attendanceData'
    SETTINGS_KEY = 'appSettings'
    PENDING_SYNC_KEY = 'pendingSyncData'

    # Cloud sync
    SYNC_ENABLED = _env_bool('ROLLCALL_SYNC_ENABLED', False)
    SYNC_MIN_INTERVAL_SECONDS = float(os.environ.get('ROLLCALL_SYNC_MIN_INTERVAL_SECONDS') or 5)
    SYNC_AUTO_INTERVAL_SECONDS = float(os.environ.get('ROLLCALL_SYNC_AUTO_INTERVAL_SECONDS') or 300)
    SYNC_AFTER_SCAN_DELAY_SECONDS = 1.0
    REMOTE_PAGE_SIZE = int(os.environ.get('ROLLCALL_REMOTE_PAGE_SIZE') or 1000)
    REMOTE_TIMEOUT = float(os.environ.get('ROLLCALL_REMOTE_TIMEOUT') or 10)
    FIRESTORE_PROJECT_ID = os.environ.get('ROLLCALL_FIRESTORE_PROJECT_ID', '')
    FIRESTORE_API_KEY = os.environ.get('ROLLCALL_FIRESTORE_API_KEY', '')
    FIRESTORE_AUTH_TOKEN = os.environ.get('ROLLCALL_FIRESTORE_AUTH_TOKEN', '')

    # Scanning
    SCAN_COOLDOWN_SECONDS = float(os.environ.get('ROLLCALL_SCAN_COOLDOWN_SECONDS') or 1.0)

    # Reporting
    RECENT_RECORDS_LIMIT = 5

    # QR Code Configuration
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 4

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'rollcall.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        directories = [cls.LOG_FILE.parent]
        if str(cls.DATABASE_PATH) != ':memory:':
            directories.append(Path(cls.DATABASE_PATH).parent)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

        app.config.update({
            key: getattr(cls, key) for key in dir(cls)
            if key.isupper()
        })


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    DATABASE_PATH = BASE_DIR / 'database' / 'rollcall_dev.db'
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory database for testing
    DATABASE_PATH = ':memory:'

    SYNC_ENABLED = False
    SCAN_COOLDOWN_SECONDS = 0


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    DATABASE_PATH = Path(os.environ.get('ROLLCALL_DATABASE_PATH') or BASE_DIR / 'database' / 'rollcall_prod.db')
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('Classroom attendance startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration based on environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(config_class):
    """Validate configuration settings"""
    errors = []

    if config_class.SYNC_ENABLED and not config_class.FIRESTORE_PROJECT_ID:
        errors.append("ROLLCALL_FIRESTORE_PROJECT_ID is required when cloud sync is enabled")

    if config_class.SYNC_MIN_INTERVAL_SECONDS < 0:
        errors.append("ROLLCALL_SYNC_MIN_INTERVAL_SECONDS must not be negative")

    if config_class.REMOTE_PAGE_SIZE <= 0:
        errors.append("ROLLCALL_REMOTE_PAGE_SIZE must be positive")

    return errors


def init_config(app, config_name=None):
    """Initialize application with configuration"""
    config_class = get_config(config_name)
    config_class.init_app(app)

    errors = validate_config(config_class)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
