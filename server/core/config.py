"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings driven entirely by ``LEADFLOW_*`` environment variables."""

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    # State storage
    storage_backend: Literal["memory", "redis"] = Field(default="memory")
    redis_url: Optional[str] = Field(default=None)
    state_update_retries: int = Field(default=10, ge=1, le=100)

    # Delay scheduling
    delay_scheduler: Literal["memory", "apscheduler"] = Field(default="memory")
    scheduler_jobstore_url: Optional[str] = Field(default=None)
    scheduler_timezone: str = Field(default="UTC")

    # Execution semantics
    reentry_policy: Literal["restart", "skip_existing"] = Field(default="restart")

    # Collaborator services
    email_service_url: str = Field(default="http://localhost:8025")
    ai_service_url: str = Field(default="http://localhost:8030")
    collaborator_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    default_ai_model: Optional[str] = Field(default=None)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("scheduler_jobstore_url")
    @classmethod
    def validate_jobstore_url(cls, v):
        """Ensure the job store directory exists for SQLite."""
        if v and v.startswith("sqlite") and ":///" in v:
            db_path = v.split("///")[1]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @model_validator(mode="after")
    def validate_redis_backend(self) -> "Settings":
        if self.storage_backend == "redis" and not self.redis_url:
            raise ValueError("LEADFLOW_REDIS_URL is required when storage_backend is 'redis'")
        return self

    @property
    def is_durable(self) -> bool:
        """Whether pending delays survive a process restart."""
        return self.delay_scheduler == "apscheduler" and bool(self.scheduler_jobstore_url)

    model_config = SettingsConfigDict(
        env_prefix="LEADFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="none",
    )
