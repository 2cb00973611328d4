from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: str = Field(default="sqlite:///./housecup.db")
    jwt_secret: str = Field(default="your-secret-key")
    jwt_algorithm: str = Field(default="HS256")
    allow_dev_tokens: bool = Field(default=False)
    allowed_origins: List[str] = Field(default_factory=list)
    vote_rate_limit: str = Field(default="10/10seconds")
    db_retry_attempts: int = Field(default=3, ge=1)
    broadcast_retry_attempts: int = Field(default=3, ge=1)
    subscriber_queue_size: int = Field(default=100, ge=1)
    log_file: Optional[str] = Field(default="housecup.log")
    log_level: str = Field(default="INFO")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _origins(raw: Optional[str]) -> List[str]:
    return [o.strip() for o in (raw or "").split(",") if o.strip()]


def _load_settings() -> Settings:
    log_file = os.getenv("LOG_FILE")
    return Settings(
        database_url=_env("DATABASE_URL", "sqlite:///./housecup.db"),
        jwt_secret=_env("JWT_SECRET", "your-secret-key"),
        jwt_algorithm=_env("JWT_ALGORITHM", "HS256"),
        allow_dev_tokens=_env("ALLOW_DEV_TOKENS", "0") == "1",
        allowed_origins=_origins(_env("ALLOWED_ORIGINS")),
        vote_rate_limit=_env("VOTE_RATE_LIMIT", "10/10seconds"),
        db_retry_attempts=int(_env("DB_RETRY_ATTEMPTS", "3")),
        broadcast_retry_attempts=int(_env("BROADCAST_RETRY_ATTEMPTS", "3")),
        subscriber_queue_size=int(_env("SUBSCRIBER_QUEUE_SIZE", "100")),
        # An explicitly empty LOG_FILE disables the file handler.
        log_file="housecup.log" if log_file is None else (log_file or None),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return _load_settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


__all__ = ["Settings", "get_settings", "reload_settings"]
