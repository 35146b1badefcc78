"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    JWT_ISSUER: str
    JWT_AUDIENCE: str
    MAX_UPLOAD_BYTES: int
    MEDIA_ROOT: Path
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    APP_URL: str
    EMAIL_BACKEND: str
    DEFAULT_CURRENCY: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.JWT_ISSUER = os.getenv("JWT_ISSUER", "studyabroad")
        self.JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "studyabroad-users")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.MEDIA_ROOT = Path(os.getenv("MEDIA_ROOT", str(BASE / "media"))).expanduser()
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
        self.EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "console").lower()
        self.DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.EMAIL_BACKEND not in ("smtp", "console", "memory"):
            raise RuntimeError(f"unsupported EMAIL_BACKEND: {self.EMAIL_BACKEND}")


def smtp_config() -> dict:
    """SMTP connection parameters from the environment."""
    return {
        "host": os.getenv("SMTP_HOST", ""),
        "port": int(os.getenv("SMTP_PORT", "587")),
        "username": os.getenv("SMTP_USER", ""),
        "password": os.getenv("SMTP_PASSWORD", ""),
        "from_email": os.getenv("FROM_EMAIL", "noreply@studyabroad.local"),
        "from_name": os.getenv("FROM_NAME", "Study Abroad"),
    }


def gateway_config() -> dict:
    """Payment gateway credentials from the environment.

    Runtime values stored in the settings table take precedence; see
    `services.cms.SettingsService.payment_settings`.
    """
    return {
        "stripe_secret_key": os.getenv("STRIPE_SECRET_KEY", ""),
        "stripe_publishable_key": os.getenv("STRIPE_PUBLISHABLE_KEY", ""),
        "stripe_webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        "razorpay_key_id": os.getenv("RAZORPAY_KEY_ID", ""),
        "razorpay_key_secret": os.getenv("RAZORPAY_KEY_SECRET", ""),
        "razorpay_webhook_secret": os.getenv("RAZORPAY_WEBHOOK_SECRET", ""),
    }


settings = Settings()
