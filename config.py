import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    TOKEN_TTL_DAYS = int(os.environ.get('TOKEN_TTL_DAYS', 30))

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///moveify.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Railway/Heroku still hand out postgres:// URLs
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://', 1)

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Analytics / history defaults
    ANALYTICS_DEFAULT_DAYS = 30
    PROGRESSION_HISTORY_LIMIT = 50

    # Overrides for moveify.policy.Policy, e.g. {'standard_weeks': 8}
    POLICY = {}
