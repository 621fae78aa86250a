"""
Configuration loader for the art booth transformation service.

Environment variables are centralized here to keep the rest of the code
focused on the pipeline and to make operational tuning clear. Per-job
transformation parameters are NOT read from here; callers snapshot them at
submission time.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TRANSFORMATION_KINDS = {"pencil", "watercolor", "oilpainting"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Scheduling
    concurrency_limit: int = Field(2, ge=1)
    worker_threads: int = Field(2, ge=1)
    job_timeout_seconds: Optional[float] = Field(120.0)
    worker_start_timeout_seconds: Optional[float] = Field(30.0)

    # Transformation
    processor: str = "numpy"
    default_transformation: str = "pencil"
    max_long_edge: int = Field(2048, ge=0)
    print_dpi: int = Field(300, ge=1)

    # API
    request_timeout_seconds: int = 30
    log_level: str = "INFO"

    @field_validator("default_transformation")
    @classmethod
    def validate_default_transformation(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in TRANSFORMATION_KINDS:
            raise ValueError("DEFAULT_TRANSFORMATION must be one of pencil|watercolor|oilpainting")
        return v

    @field_validator("job_timeout_seconds", "worker_start_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        # 0 or negative disables the deadline.
        if v is not None and v <= 0:
            return None
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def worker_count(settings: Optional[Settings] = None) -> int:
    """
    Number of worker threads to start.

    Never below the concurrency limit, so every admitted job has a thread
    to start on.
    """
    settings = settings or get_settings()
    return max(settings.worker_threads, settings.concurrency_limit)
