import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'lnkiq.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    DEVICE_TOKEN_EXPIRY_DAYS = int(os.environ.get("DEVICE_TOKEN_EXPIRY_DAYS", "90"))
    SESSION_TOKEN_EXPIRY_DAYS = int(os.environ.get("SESSION_TOKEN_EXPIRY_DAYS", "30"))
    DEVICE_CLEANUP_INTERVAL_MINUTES = int(
        os.environ.get("DEVICE_CLEANUP_INTERVAL_MINUTES", "1440")
    )
    CRON_SECRET = os.environ.get("CRON_SECRET") or None
    VISITS_MAX_LIMIT = 500


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    CRON_SECRET = None
