"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'stockroom')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'stockroom')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'stockroom')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Inventory defaults (overridable per company through Company.settings)
    DEFAULT_ALLOW_NEGATIVE_INVENTORY = os.getenv('DEFAULT_ALLOW_NEGATIVE_INVENTORY', 'false').lower() == 'true'
    DEFAULT_REORDER_WARNING_MULTIPLIER = os.getenv('DEFAULT_REORDER_WARNING_MULTIPLIER', '1.5')
    DEFAULT_EXPIRY_WARNING_DAYS = int(os.getenv('DEFAULT_EXPIRY_WARNING_DAYS', '30'))

    # Import limits
    MAX_IMPORT_ROWS = int(os.getenv('MAX_IMPORT_ROWS', '5000'))


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite)."""

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    LOG_LEVEL = 'WARNING'
