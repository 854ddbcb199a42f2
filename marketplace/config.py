# marketplace/config.py
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    PROJECT_NAME: str = os.getenv("APP_NAME", "Marketplace API")
    ORIGIN: str = os.getenv("ORIGIN", "*")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # --- Storage ---
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB_NAME: str = os.getenv("MONGO_DB_NAME", "marketplace")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # --- Tokens ---
    ACCESS_TOKEN_SECRET: str = os.getenv("ACCESS_TOKEN", "access-secret-changeme")
    REFRESH_TOKEN_SECRET: str = os.getenv("REFRESH_TOKEN", "refresh-secret-changeme")
    ACTIVATION_SECRET: str = os.getenv("ACTIVATION_SECRET", "activation-secret-changeme")
    FORGOT_SECRET: str = os.getenv("FORGOT_SECRET", "forgot-secret-changeme")
    ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "5"))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "3"))
    OTP_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("OTP_TOKEN_EXPIRE_MINUTES", "5"))
    RESET_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", "10"))

    # --- Mail ---
    SMTP_HOST: str = os.getenv("SMTP_HOST", "localhost")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_MAIL: str = os.getenv("SMTP_MAIL", "no-reply@marketplace.local")

    # --- Image hosting ---
    CLOUD_NAME: str = os.getenv("CLOUD_NAME", "")
    CLOUD_API_KEY: str = os.getenv("CLOUD_API_KEY", "")
    CLOUD_SECRET_KEY: str = os.getenv("CLOUD_SECRET_KEY", "")

    # --- Orders & payments ---
    SERVICE_FEE: int = int(os.getenv("SERVICE_FEE", "150000"))
    ADMIN_FEE: int = int(os.getenv("ADMIN_FEE", "3000"))
    # When enabled, a payment is only accepted for an order that is still Unpaid.
    PAYMENT_REQUIRES_UNPAID_ORDER: bool = _env_bool("PAYMENT_REQUIRES_UNPAID_ORDER")

    # --- Cache ---
    LIST_CACHE_TTL: int = int(os.getenv("LIST_CACHE_TTL", "3600"))
    CATEGORY_CACHE_TTL: int = int(os.getenv("CATEGORY_CACHE_TTL", str(24 * 60 * 60)))

    NOTIFICATION_RETENTION_DAYS: int = int(os.getenv("NOTIFICATION_RETENTION_DAYS", "30"))

    @property
    def SESSION_EXPIRE_SECONDS(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60


settings = Settings()
