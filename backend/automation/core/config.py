from typing import List, Any, Optional
from pydantic import PostgresDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, validate_default=True
    )

    # App Settings
    PROJECT_NAME: str = "Review Automation Engine"
    PROJECT_DESCRIPTION: str = "Event-driven workflow automation for review requests and follow-ups"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # CORS Settings
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Database Settings
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "review_automation"
    POSTGRES_PORT: str = "5432"
    DATABASE_URI: Optional[str] = None
    SQLALCHEMY_DATABASE_URI: Optional[str] = None  # sync version for Alembic

    @field_validator("DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], values: Any) -> Any:
        if isinstance(v, str) and v:
            return v

        return str(PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=values.data["POSTGRES_USER"],
            password=values.data["POSTGRES_PASSWORD"],
            host=values.data["POSTGRES_SERVER"],
            port=int(values.data["POSTGRES_PORT"]),
            path=f"{values.data['POSTGRES_DB'] or ''}",
        ))

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    def build_sqlalchemy_uri(cls, v: Optional[str], values: Any) -> str:
        if isinstance(v, str) and v:
            return v
        return (
            f"postgresql+psycopg2://{values.data['POSTGRES_USER']}:{values.data['POSTGRES_PASSWORD']}"
            f"@{values.data['POSTGRES_SERVER']}:{values.data['POSTGRES_PORT']}/{values.data['POSTGRES_DB']}"
        )

    # Redis Settings (for Celery)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_URI: Optional[str] = None

    @field_validator("REDIS_URI", mode="before")
    def assemble_redis_connection(cls, v: Optional[str], values: Any) -> str:
        if isinstance(v, str) and v:
            return v

        if values.data.get("REDIS_PASSWORD"):
            return f"redis://:{values.data['REDIS_PASSWORD']}@{values.data['REDIS_HOST']}:{values.data['REDIS_PORT']}/0"

        return f"redis://{values.data['REDIS_HOST']}:{values.data['REDIS_PORT']}/0"

    # Celery Settings
    CELERY_BROKER_URL: Optional[str] = None

    @field_validator("CELERY_BROKER_URL", mode="before")
    def assemble_celery_broker_url(cls, v: Optional[str], values: Any) -> Optional[str]:
        if isinstance(v, str) and v:
            return v

        return values.data.get("REDIS_URI")

    # Scheduler Settings
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_SCAN_INTERVAL_SECONDS: int = 300
    SCHEDULER_BATCH_SIZE: int = 100
    SCHEDULER_MAX_WORKERS: int = 4
    STUCK_EXECUTION_MINUTES: int = 15
    EXECUTION_RETENTION_DAYS: int = 30

    # Business hours (used by business_hours_only and execution_hours)
    BUSINESS_TIMEZONE: str = "UTC"
    BUSINESS_HOURS_START: int = 9
    BUSINESS_HOURS_END: int = 17

    # Outbound webhook delivery
    WEBHOOK_CONNECT_TIMEOUT_MS: int = 5000
    WEBHOOK_READ_TIMEOUT_MS: int = 10000
    WEBHOOK_WRITE_TIMEOUT_MS: int = 10000
    WEBHOOK_MAX_RETRIES: int = 3
    WEBHOOK_RETRY_DELAY_MS: int = 1000

    # Execution log sink
    EXECUTION_LOG_QUEUE_SIZE: int = 1000
    EXECUTION_LOG_BATCH_SIZE: int = 50

    # Email / SMS delivery
    DELIVERY_DRY_RUN: bool = True



# Create settings instance
settings = Settings()
