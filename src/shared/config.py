"""Configuration management for the Secure MCP Server.

Supports YAML configuration files and environment variable overrides.
Settings are resolved once into an immutable ServerConfig at startup;
request handling never reads the environment.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

RESOURCE_PATH = "/mcp"
HEALTH_PATH = "/health"
DEFAULT_RESOURCE_NAME = "Entra protected MCP demo server"


class ConfigurationError(Exception):
    """Raised when settings cannot be resolved into a usable ServerConfig."""
    pass


class ServerSettings(BaseSettings):
    """HTTP server and deployment configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # External base URL. WEBSITE_HOSTNAME (set by App Service) wins when present.
    http_mcp_server_url: Optional[str] = Field(default=None)
    website_hostname: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("WEBSITE_HOSTNAME", "website_hostname"),
    )

    # Permissive CORS is opt-in
    cors_allow_any_origin: bool = Field(default=False)
    # None: redirect everywhere except the development environment
    https_redirect: Optional[bool] = Field(default=None)

    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/audit.log")

    model_config = SettingsConfigDict(
        env_prefix="MCP_SERVER_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


class AzureADSettings(BaseSettings):
    """Identity authority (Microsoft Entra ID) configuration."""
    instance: str = Field(default="https://login.microsoftonline.com")
    tenant_id: Optional[str] = Field(default=None)
    client_id: Optional[str] = Field(default=None)

    # Scope advertised in the discovery document, e.g. api://<client_id>/mcp:tools
    mcp_scope: Optional[str] = Field(default=None)
    required_scope: str = Field(default="mcp:tools")
    scope_claim: str = Field(default="scp")

    jwks_uri: Optional[str] = Field(default=None)
    extra_audiences: list[str] = Field(default_factory=list)
    algorithms: list[str] = Field(default_factory=lambda: ["RS256"])

    jwks_cache_ttl_seconds: float = Field(default=3600, gt=0)
    jwks_min_refresh_interval_seconds: float = Field(default=30, ge=0)
    key_fetch_timeout_seconds: float = Field(default=5, gt=0)
    validation_timeout_seconds: float = Field(default=10, gt=0)
    leeway_seconds: int = Field(default=0, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="AZUREAD_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    server: ServerSettings = Field(default_factory=ServerSettings)
    azure_ad: AzureADSettings = Field(default_factory=AzureADSettings)

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file; environment variables win over the file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        server = _overlay_env(ServerSettings, data.pop("server", None) or {})
        azure_ad = _overlay_env(AzureADSettings, data.pop("azure_ad", None) or {})
        return _overlay_env(cls, data, server=server, azure_ad=azure_ad)


def _overlay_env(settings_cls: type[BaseSettings], values: dict, **sections: BaseSettings) -> BaseSettings:
    """Build settings from file values, overridden by what the environment sets."""
    from_env = settings_cls()
    overrides = from_env.model_dump(include=from_env.model_fields_set - set(sections))
    return settings_cls(**{**values, **overrides, **sections})


class ServerConfig(BaseModel):
    """
    Finalized, immutable deployment configuration.

    Built once from Settings and passed to every component at construction.
    """
    model_config = ConfigDict(frozen=True)

    base_url: str
    resource_url: str
    documentation_url: str
    resource_name: str = DEFAULT_RESOURCE_NAME

    issuer: str
    authorization_servers: tuple[str, ...]
    jwks_uri: str
    audiences: tuple[str, ...]
    algorithms: tuple[str, ...] = ("RS256",)
    scopes_supported: tuple[str, ...]
    required_scope: str = "mcp:tools"
    scope_claim: str = "scp"

    jwks_cache_ttl_seconds: float = 3600
    jwks_min_refresh_interval_seconds: float = 30
    key_fetch_timeout_seconds: float = 5
    validation_timeout_seconds: float = 10
    leeway_seconds: int = 0

    host: str = "0.0.0.0"
    port: int = 8000
    cors_allow_any_origin: bool = False
    https_redirect: bool = False
    enable_audit: bool = True
    audit_log_path: str = "logs/audit.log"

    environment: str = "development"
    log_level: str = "INFO"

    @property
    def json_logs(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerConfig":
        """
        Resolve settings into a ServerConfig.

        Raises:
            ConfigurationError: If the base URL or tenant cannot be resolved
        """
        base_url = resolve_base_url(settings.server)
        ad = settings.azure_ad

        if not ad.tenant_id:
            raise ConfigurationError("AzureAd tenant id is not configured")

        instance = ad.instance.rstrip("/")
        issuer = f"{instance}/{ad.tenant_id}/v2.0"
        resource_url = f"{base_url}{RESOURCE_PATH}"

        audiences = [resource_url, *ad.extra_audiences]
        if ad.client_id:
            audiences.extend([f"api://{ad.client_id}", ad.client_id])

        if ad.mcp_scope:
            scopes = [ad.mcp_scope]
        else:
            scopes = [f"api://{ad.client_id or '<client_id>'}/{ad.required_scope}"]

        https_redirect = settings.server.https_redirect
        if https_redirect is None:
            https_redirect = settings.environment != "development"

        return cls(
            base_url=base_url,
            resource_url=resource_url,
            documentation_url=f"{base_url}{HEALTH_PATH}",
            issuer=issuer,
            authorization_servers=(issuer,),
            jwks_uri=ad.jwks_uri or f"{instance}/{ad.tenant_id}/discovery/v2.0/keys",
            audiences=tuple(dict.fromkeys(audiences)),
            algorithms=tuple(ad.algorithms),
            scopes_supported=tuple(scopes),
            required_scope=ad.required_scope,
            scope_claim=ad.scope_claim,
            jwks_cache_ttl_seconds=ad.jwks_cache_ttl_seconds,
            jwks_min_refresh_interval_seconds=ad.jwks_min_refresh_interval_seconds,
            key_fetch_timeout_seconds=ad.key_fetch_timeout_seconds,
            validation_timeout_seconds=ad.validation_timeout_seconds,
            leeway_seconds=ad.leeway_seconds,
            host=settings.server.host,
            port=settings.server.port,
            cors_allow_any_origin=settings.server.cors_allow_any_origin,
            https_redirect=https_redirect,
            enable_audit=settings.server.enable_audit,
            audit_log_path=settings.server.audit_log_path,
            environment=settings.environment,
            log_level=settings.log_level,
        )


def resolve_base_url(server: ServerSettings) -> str:
    """
    Resolve the externally reachable base URL of the deployment.

    Args:
        server: Server settings

    Returns:
        Base URL without a trailing slash

    Raises:
        ConfigurationError: If no URL is configured or it is not absolute
    """
    if server.website_hostname:
        url = f"https://{server.website_hostname}"
    elif server.http_mcp_server_url:
        url = server.http_mcp_server_url
    else:
        raise ConfigurationError("MCP Server URL is not configured.")

    url = url.strip().rstrip("/")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"MCP Server URL '{url}' is not an absolute http(s) URL")
    if parsed.query or parsed.fragment:
        raise ConfigurationError(f"MCP Server URL '{url}' must not carry a query or fragment")

    return url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("MCP_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
