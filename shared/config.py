"""
Shared configuration management for the Campaign Access Gateway.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ValidationError


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    auth_service_url: str = Field(default="http://localhost:8010")

    # Rate limiting
    throttle_backend: str = Field(default="memory")
    throttle_sweep_interval: float = Field(default=60.0)
    trusted_proxy_hops: int = Field(default=1, ge=0)
    trust_user_id_header: bool = Field(default=False)
    rate_limits_file: Optional[str] = Field(default=None)

    # Admin routes
    admin_token: Optional[str] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)


def load_rate_limit_overrides(path: Optional[str]) -> Dict[str, Dict[str, Any]]:
    """Load per-policy rate limit overrides from a YAML file.

    The file maps policy names to option mappings, e.g.::

        login:
          max_attempts: 10
          window_seconds: 600

    Returns an empty mapping when no path is configured.
    """
    if not path:
        return {}

    file_path = Path(path)
    if not file_path.is_file():
        raise ValidationError(
            "Rate limits file not found",
            details={"path": str(file_path)}
        )

    with file_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValidationError(
            "Rate limits file must contain a mapping of policy names",
            details={"path": str(file_path)}
        )

    overrides: Dict[str, Dict[str, Any]] = {}
    for policy, options in data.items():
        if not isinstance(options, dict):
            raise ValidationError(
                "Rate limit overrides must be a mapping",
                details={"policy": policy}
            )
        overrides[str(policy)] = dict(options)
    return overrides
