"""Application configuration profiles."""
from __future__ import annotations

import datetime
import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_DB_URI = os.environ.get('DATABASE_URL', f"sqlite:///{os.path.join(BASE_DIR, 'library.db')}")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class BaseConfig:
    SQLALCHEMY_DATABASE_URI = DEFAULT_DB_URI
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get('FLASK_SECRET', 'dev-secret-key')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET', SECRET_KEY)
    JWT_ACCESS_TOKEN_EXPIRES = datetime.timedelta(days=1)
    ALLOW_ADMIN_REGISTRATION = _env_flag('ALLOW_ADMIN_REGISTRATION', True)
    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    JWT_SECRET_KEY = 'testing-jwt-secret-with-enough-length'
    ALLOW_ADMIN_REGISTRATION = True


class ProductionConfig(BaseConfig):
    DEBUG = False
    ALLOW_ADMIN_REGISTRATION = _env_flag('ALLOW_ADMIN_REGISTRATION', False)
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'WARNING')


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
