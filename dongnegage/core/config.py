# dongnegage/core/config.py
"""
Application Settings - Dongne Gage
==================================

Centralised, typed access to environment variables.
"""

from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Loads .env from the project root
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent.parent / ".env")


class Config(BaseSettings):
    """Centralised application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════
    # 🌍 ENVIRONMENT
    # ═══════════════════════════════════════════════════════════

    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # ═══════════════════════════════════════════════════════════
    # 🗄️ DATABASE
    # ═══════════════════════════════════════════════════════════

    DATABASE_URL: str

    # ═══════════════════════════════════════════════════════════
    # 🔴 REDIS
    # ═══════════════════════════════════════════════════════════

    REDIS_URL: Optional[str] = None
    RATE_LIMIT_ENABLED: bool = True

    # ═══════════════════════════════════════════════════════════
    # 🔐 JWT (ADMIN CONSOLE)
    # ═══════════════════════════════════════════════════════════

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # ═══════════════════════════════════════════════════════════
    # ☁️ AWS S3 (product images, shop logos)
    # ═══════════════════════════════════════════════════════════

    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: Optional[str] = None
    AWS_BUCKET_NAME: Optional[str] = None

    # ═══════════════════════════════════════════════════════════
    # 💳 TOSS PAYMENTS
    # ═══════════════════════════════════════════════════════════

    TOSS_CLIENT_KEY: Optional[str] = None
    TOSS_SECRET_KEY: Optional[str] = None
    TOSS_WEBHOOK_SECRET: Optional[str] = None
    TOSS_API_URL: str = "https://api.tosspayments.com/v1"

    BILLING_MONTHLY_AMOUNT: int = 9900
    BILLING_PLAN_CODE: str = "starter_monthly"
    TRIAL_DAYS: int = 60

    # ═══════════════════════════════════════════════════════════
    # 🔔 WEB PUSH (VAPID)
    # ═══════════════════════════════════════════════════════════

    VAPID_SUBJECT: Optional[str] = None
    VAPID_PUBLIC_KEY: Optional[str] = None
    VAPID_PRIVATE_KEY: Optional[str] = None

    # ═══════════════════════════════════════════════════════════
    # 🖼️ SOCIAL PREVIEW IMAGE
    # ═══════════════════════════════════════════════════════════

    OG_FONT_PATH: Optional[str] = None

    # ═══════════════════════════════════════════════════════════
    # 🌐 SITE / CORS
    # ═══════════════════════════════════════════════════════════

    SITE_URL: str = "http://localhost:3000"
    PUBLIC_API_URL: str = "http://localhost:8000"
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    def get_allowed_origins_list(self) -> list[str]:
        """Origins allowed by CORS"""
        origins = [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]
        origins.append(self.SITE_URL.rstrip("/"))

        if self.is_development:
            origins.extend([
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ])

        # Drop duplicates, keep order
        return list(dict.fromkeys(origins))

    # ═══════════════════════════════════════════════════════════
    # 🖥️ SERVER
    # ═══════════════════════════════════════════════════════════

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ═══════════════════════════════════════════════════════════
    # 🔧 HELPERS
    # ═══════════════════════════════════════════════════════════

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT.lower() == "test"

    @property
    def push_enabled(self) -> bool:
        return bool(self.VAPID_SUBJECT and self.VAPID_PUBLIC_KEY and self.VAPID_PRIVATE_KEY)

    @property
    def site_url(self) -> str:
        return self.SITE_URL.rstrip("/")


# ✅ Global instance
config = Config()


# ✅ Basic validation at startup
def validate_config():
    """Validates critical settings"""
    errors = []

    if len(config.SECRET_KEY) < 32:
        errors.append("SECRET_KEY too short (at least 32 characters)")

    if config.ENVIRONMENT not in ["development", "test", "production"]:
        errors.append("ENVIRONMENT must be one of: development, test, production")

    if config.BILLING_MONTHLY_AMOUNT <= 0:
        errors.append("BILLING_MONTHLY_AMOUNT must be positive")

    if config.is_production and not config.TOSS_WEBHOOK_SECRET:
        errors.append("TOSS_WEBHOOK_SECRET is required in production")

    if errors:
        raise ValueError(
            "❌ Configuration errors:\n" + "\n".join(f"  • {e}" for e in errors)
        )


validate_config()
