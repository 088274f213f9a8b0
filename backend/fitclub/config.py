"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DATABASE_URL: str
    UPLOAD_DIR: Path
    MAX_UPLOAD_BYTES: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    TELEGRAM_BOT_TOKEN: str
    DEFAULT_CURRENCY: str
    REFERRAL_SIGNUP_BONUS: float
    REFERRAL_PAYMENT_RATE: float
    MIN_WITHDRAWAL: float
    AUTH_RATE_LIMIT_PER_MIN: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE / "uploads"))).expanduser()
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5 MB default
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
        self.DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "IRT")
        self.REFERRAL_SIGNUP_BONUS = float(os.getenv("REFERRAL_SIGNUP_BONUS", "50000"))
        self.REFERRAL_PAYMENT_RATE = float(os.getenv("REFERRAL_PAYMENT_RATE", "0.1"))
        self.MIN_WITHDRAWAL = float(os.getenv("MIN_WITHDRAWAL", "10"))
        self.AUTH_RATE_LIMIT_PER_MIN = int(os.getenv("AUTH_RATE_LIMIT_PER_MIN", "20"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if not 0 <= self.REFERRAL_PAYMENT_RATE <= 1:
            raise RuntimeError("REFERRAL_PAYMENT_RATE must be between 0 and 1")


settings = Settings()
