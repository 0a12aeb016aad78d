"""
Shared configuration management for the order dashboard services.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CROSS_SELLING_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    json_logs: bool = Field(default=True)

    # Shopware admin API
    shopware_url: Optional[str] = Field(default=None)
    shopware_api_key: Optional[str] = Field(default=None)
    shopware_api_secret: Optional[str] = Field(default=None)

    # Catalog search
    catalog_page_size: int = Field(default=100, ge=1, le=500)
    catalog_max_candidates: int = Field(default=500, ge=1)
    catalog_timeout_seconds: float = Field(default=10.0, gt=0)

    # Rule store
    rules_seed_file: Optional[str] = Field(default=None)

    # Suggestions
    skip_failed_rules: bool = Field(default=True)

    @property
    def catalog_configured(self) -> bool:
        """Whether enough Shopware settings are present to build a catalog client."""
        return bool(self.shopware_url and self.shopware_api_key and self.shopware_api_secret)


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
