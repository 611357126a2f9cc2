from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # Pydantic v2 settings config
    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Record Store / Search Index
    DATABASE_URL: str = "sqlite:///./notification.db"
    DB_TIMEOUT_SECONDS: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"

    # Denylist cache (Redis)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_TIMEOUT_SECONDS: float = 2.0
    DENYLIST_KEY: str = "sms:blacklist"
    DENYLIST_TTL_SECONDS: int = 86400

    # Message queue: "kafka" or "memory"
    QUEUE_BACKEND: str = "kafka"
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    SMS_SEND_TOPIC: str = "notification.send_sms"
    KAFKA_CONSUMER_GROUP: str = "sms-delivery-worker"
    QUEUE_TIMEOUT_SECONDS: float = 10.0

    # Delivery transport: "mock" or "http"
    SMS_TRANSPORT: str = "mock"
    SMS_API_URL: str = "http://localhost:8080/sms"
    SMS_API_KEY: str = ""
    SMS_API_TIMEOUT_SECONDS: float = 10.0

    # Authorization gate for /v1 routes
    REQUIRE_AUTH_HEADER: bool = True

    # Delivery worker
    WORKER_CONCURRENCY: int = 1
    WORKER_POLL_TIMEOUT_SECONDS: float = 1.0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
