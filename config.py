"""Environment-aware configuration for the Flask application."""
import os
from datetime import timedelta


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: a non-empty secret. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", 7))

        # "memory" keeps entity maps in process and snapshots them to DATA_DIR;
        # "sql" stores them in the stored_entities table.
        self.STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").lower()
        self.DATA_DIR = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "instance", "data"))
        self.SNAPSHOT_ON_WRITE = _flag("SNAPSHOT_ON_WRITE", "true")
        self.SQLALCHEMY_DATABASE_URI = os.getenv(
            "DATABASE_URL",
            f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'portal.db')}",
        )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False

        self.SESSION_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_TIME_LIMIT = 3600
        self.WTF_CSRF_ENABLED = True
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 16 * 1024 * 1024))

        self.MAIL_SERVER = os.getenv("MAIL_SERVER", "")
        self.MAIL_PORT = int(os.getenv("MAIL_PORT", 25))
        self.MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
        self.MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
        self.MAIL_USE_TLS = _flag("MAIL_USE_TLS", "true")
        self.MAIL_USE_SSL = _flag("MAIL_USE_SSL", "false")
        self.MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "no-reply@gov.in")
        self.SMS_GATEWAY_URL = os.getenv("SMS_GATEWAY_URL", "")
        self.SMS_GATEWAY_TOKEN = os.getenv("SMS_GATEWAY_TOKEN", "")
        self.SMS_SENDER_ID = os.getenv("SMS_SENDER_ID", "")
        self.SMS_GATEWAY_TIMEOUT = int(os.getenv("SMS_GATEWAY_TIMEOUT", 10))
        self.OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", 10))
        self.OTP_EXPOSE_IN_RESPONSE = _flag("OTP_EXPOSE_IN_RESPONSE", "false")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))

        self.DEFAULT_ADMIN_USERNAME = os.getenv("DEFAULT_ADMIN_USERNAME", "admin")
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@gov.in")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "Admin@12345!")
        self.SEED_DEPARTMENTS = _flag("SEED_DEPARTMENTS", "true")

        self.MONITOR_ENABLED = _flag("MONITOR_ENABLED", "true")
        self.MONITOR_INTERVAL_SECONDS = int(os.getenv("MONITOR_INTERVAL_SECONDS", 3600))
        self.DELAY_ALERT_COOLDOWN_HOURS = int(os.getenv("DELAY_ALERT_COOLDOWN_HOURS", 24))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.SESSION_COOKIE_SECURE = False
        self.OTP_EXPOSE_IN_RESPONSE = _flag("OTP_EXPOSE_IN_RESPONSE", "true")


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=7)


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SECRET_KEY = "testing-secret-key"
        self.SQLALCHEMY_DATABASE_URI = "sqlite://"
        self.WTF_CSRF_ENABLED = False
        self.MONITOR_ENABLED = False
        self.SEED_DEPARTMENTS = False
        self.OTP_EXPOSE_IN_RESPONSE = True
        self.MAIL_SERVER = ""
        self.SMS_GATEWAY_URL = ""
        self.PREFERRED_URL_SCHEME = "http"
