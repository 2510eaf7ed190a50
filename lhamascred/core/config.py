"""
Application configuration using Pydantic Settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Lhamascred API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # MongoDB
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "lhamascred"

    # JWT
    JWT_SECRET_KEY: str = "your-super-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12  # 12 hours

    # Admin (X-ADMIN-API-KEY); empty means admin API key access is disabled
    ADMIN_API_KEY: str = ""

    # Request limits
    MAX_REQUEST_BODY_BYTES: int = 5_000_000

    # Batches
    BATCH_MAX_CPFS: int = 5000
    BATCH_TXN_MAX_ATTEMPTS: int = 25
    BATCH_STALE_AFTER_HOURS: int = 24
    DISPATCH_CONCURRENCY: int = 10

    # Webhook
    WEBHOOK_PUBLIC_URL: str = "http://localhost:8000/api/webhook/balance"
    WEBHOOK_SECRET: str = ""

    # Providers
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    V8_AUTH_URL: str = "https://auth.v8sistema.com/oauth/token"
    V8_API_URL: str = "https://bff.v8sistema.com"
    FACTA_API_URL: str = "https://webservice.facta.com.br"
    C6_AUTH_URL: str = "https://marketplace-proposal-service-api-p.c6bank.info/auth/token"
    C6_API_URL: str = "https://marketplace-proposal-service-api-p.c6bank.info"
    C6_AUTHORIZATION_STATUS_PATH: str = "/marketplace/worker-payroll-loan/authorization/status"
    C6_AUTHORIZATION_LINK_PATH: str = "/marketplace/worker-payroll-loan/authorization"
    C6_OFFERS_PATH: str = "/marketplace/worker-payroll-loan/offers"

    # Celery
    CELERY_BROKER_URL: str = "sqs://"
    CELERY_QUEUE_PREFIX: str = "lhamascred-"
    AWS_REGION: str = ""
    SQS_DEFAULT_QUEUE_URL: str = ""
    CELERY_VISIBILITY_TIMEOUT: int = 3600
    CELERY_POLLING_INTERVAL: float = 1.0
    CELERY_WAIT_TIME_SECONDS: int = 10
    CELERY_TASK_TIME_LIMIT: int = 0
    CELERY_TASK_SOFT_TIME_LIMIT: int = 0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"



@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
