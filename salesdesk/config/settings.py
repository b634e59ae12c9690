import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    SQLite is for local development only. Set DATABASE_URL to a PostgreSQL
    connection string in any shared environment.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "salesdesk.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(f"Using SQLite database (LOCAL DEV ONLY): {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str = Field(default="", validation_alias="LOG_FILE")
    store_timeout_sec: float = Field(
        default=10.0,
        validation_alias="STORE_TIMEOUT_SEC",
        description="Upper bound for a single data-store call (lock wait / statement timeout)",
    )
    groupware_api_url: str = Field(
        default="https://www.worksapis.com/v1.0",
        validation_alias="GROUPWARE_API_URL",
        description="Groupware mail API base URL",
    )
    groupware_api_token: str = Field(default="", validation_alias="GROUPWARE_API_TOKEN")
    groupware_sender_id: str = Field(default="me", validation_alias="GROUPWARE_SENDER_ID")
    groupware_timeout_sec: float = Field(default=15.0, validation_alias="GROUPWARE_TIMEOUT_SEC")
    duplicate_candidate_limit: int = Field(
        default=5,
        validation_alias="DUPLICATE_CANDIDATE_LIMIT",
        description="Maximum number of near-duplicate clients attached to a plan",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("store_timeout_sec", "groupware_timeout_sec")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        """Timeouts must be positive; a step may never block indefinitely."""
        if value <= 0:
            raise ValueError("Timeouts must be greater than zero")
        return value

    @field_validator("groupware_api_token")
    @classmethod
    def validate_groupware_token(cls, value: str) -> str:
        if not value:
            logger.warning(
                "GROUPWARE_API_TOKEN is not set. send_email steps will fail until it is configured."
            )
        return value

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
