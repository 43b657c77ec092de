import os

from cachelib import SimpleCache
from dotenv import load_dotenv

load_dotenv()


def _database_url():
    database_url = os.environ.get('DATABASE_URL')
    if database_url and database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)
    return database_url


def _flag(name, default):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'xYz9wV1uT0sR9qP8oN7mL6kJ5iH4gF3eD2cB1a')

    # Storage
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND', 'sql')
    DATA_DIR = os.environ.get('DATA_DIR', 'data')
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
    }
    DB_RETRY_ATTEMPTS = int(os.environ.get('DB_RETRY_ATTEMPTS', 3))
    DB_RETRY_DELAY = float(os.environ.get('DB_RETRY_DELAY', 1))

    # Sessions
    SESSION_TYPE = os.environ.get('SESSION_TYPE', 'sqlalchemy')
    SESSION_PERMANENT = False
    SESSION_COOKIE_SECURE = _flag('SESSION_COOKIE_SECURE', 'true')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(',') if o.strip()]

    # Lending
    ALLOWED_EMAIL_DOMAINS = [
        d.strip().lower()
        for d in os.environ.get('ALLOWED_EMAIL_DOMAINS', 'giki.edu.pk,student.giki.edu.pk').split(',')
        if d.strip()
    ]
    NOTIFICATION_LIMIT = int(os.environ.get('NOTIFICATION_LIMIT', 50))
    REMINDER_INTERVAL_MINUTES = int(os.environ.get('REMINDER_INTERVAL_MINUTES', 30))
    SCHEDULER_ENABLED = _flag('SCHEDULER_ENABLED', 'true')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing-secret'
    STORAGE_BACKEND = 'memory'
    SESSION_TYPE = 'cachelib'
    SESSION_CACHELIB = SimpleCache()
    SESSION_COOKIE_SECURE = False
    SCHEDULER_ENABLED = False
    DB_RETRY_DELAY = 0
