from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .contracts import DEFAULT_CONFIRMATION_THRESHOLD
from .policy import ChannelSpec, default_channels


class RedisConfig(BaseModel):
    """Connection settings for the Redis coordination store."""

    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class CoordinationConfig(BaseModel):
    """Admission and lock settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    prefix: str = "mentionops"
    admission_ttl_seconds: int = 60 * 60 * 24
    lock_ttl_ms: int = 30_000
    lock_retry_ms: int = 200
    lock_max_attempts: int = 20
    lock_growth: float = 1.5
    lock_renew_ms: Optional[int] = None


class WorkflowConfig(BaseModel):
    confirmation_threshold: int = DEFAULT_CONFIRMATION_THRESHOLD
    channels: List[ChannelSpec] = Field(default_factory=default_channels)


class AIConfig(BaseModel):
    intent_model: str = "openai:gpt-4o-mini"
    response_model: str = "openai:gpt-4o"


class MentionOpsConfig(BaseModel):
    """Top-level configuration model."""

    coordination: CoordinationConfig = CoordinationConfig()
    database_url: Optional[str] = None
    workflow: WorkflowConfig = WorkflowConfig()
    ai: AIConfig = AIConfig()
    debug: bool = False


def _env_flag(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in {"1", "true", "yes"}


def load_config(path: Optional[str] = None) -> MentionOpsConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to MENTIONOPS_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("MENTIONOPS_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = MentionOpsConfig(**data)
    else:
        config = MentionOpsConfig()

    env_db_url = os.getenv("MENTIONOPS_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_redis_url = os.getenv("MENTIONOPS_REDIS_URL") or os.getenv("REDIS_URL")
    if env_redis_url:
        config.coordination.backend = "redis"
        config.coordination.redis.url = env_redis_url
    if _env_flag(os.getenv("MENTIONOPS_DEBUG")):
        config.debug = True
    return config
