"""Operator settings loaded from environment variables.

CLI flags in ``cli.py`` take precedence over these values.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .cfapi_client import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    cluster_resource_namespace: str = Field(
        default="cert-manager",
        description="Namespace holding auth secrets for ClusterOriginIssuers",
        validation_alias="CLUSTER_RESOURCE_NAMESPACE",
    )
    api_endpoint: str = Field(
        default=DEFAULT_ENDPOINT,
        description="Cloudflare Origin CA signing endpoint",
        validation_alias="CLOUDFLARE_API_ENDPOINT",
    )
    api_timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        gt=0,
        description="Timeout in seconds for a signing call",
        validation_alias="CLOUDFLARE_API_TIMEOUT",
    )
    issuer_not_ready_requeue: int = Field(
        default=30,
        ge=1,
        description="Seconds before re-checking a request whose issuer is not ready",
        validation_alias="ISSUER_NOT_READY_REQUEUE",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="LOG_LEVEL",
    )
    watch_namespaces: str = Field(
        default="",
        description="Comma-separated namespaces to watch; empty watches all",
        validation_alias="WATCH_NAMESPACES",
    )

    @property
    def namespaces(self) -> List[str]:
        return [ns.strip() for ns in self.watch_namespaces.split(",") if ns.strip()]
