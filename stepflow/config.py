from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

DEFAULT_UNBOUND_URL = "https://api.getunbound.ai/v1/chat/completions"


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    topic: str = "executions"
    redis: RedisConfig = RedisConfig()


class ProviderConfig(BaseModel):
    """Settings for generation providers."""

    unbound_api_key: Optional[str] = None
    unbound_base_url: str = DEFAULT_UNBOUND_URL
    request_timeout: float = 60.0
    default_temperature: float = 0.7
    default_max_tokens: int = 2048
    mock_latency: float = 0.0


class EngineConfig(BaseModel):
    """Execution engine behaviour."""

    propagate_output_as_context: bool = False
    default_initial_delay_ms: int = 1000
    step_timeout: Optional[float] = None
    stale_after: float = 3600.0


class StepflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    provider: ProviderConfig = ProviderConfig()
    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> StepflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepflowConfig(**data)
    else:
        config = StepflowConfig()

    env_db_url = os.getenv("STEPFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_transport = os.getenv("STEPFLOW_TRANSPORT")
    if env_transport:
        config.transport.backend = env_transport.lower()
    env_api_key = os.getenv("UNBOUND_API_KEY")
    if env_api_key:
        config.provider.unbound_api_key = env_api_key
    return config
