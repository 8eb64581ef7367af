"""Secure MCP Server - FastAPI Application.

Binds three paths:
- ``/health`` and the protected resource metadata paths, unauthenticated
- ``/mcp``, the capability path, where every request runs through the
  dispatcher's token and scope gates before anything is routed
"""

import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from shared.config import (
    HEALTH_PATH,
    RESOURCE_PATH,
    ConfigurationError,
    ServerConfig,
    get_settings,
)
from shared.logging import get_logger, setup_logging
from secure_mcp.audit import AuditLogger
from secure_mcp.auth import ScopeAuthorizer, TokenValidator
from secure_mcp.dispatcher import ProtocolDispatcher
from secure_mcp.jwks import SigningKeyCache
from secure_mcp.metadata import WELL_KNOWN_PATH, ResourceMetadataPublisher
from secure_mcp.registry import CapabilityRegistry

from capabilities import register_all

logger = get_logger(__name__)

VERSION = "0.1.0"


def build_registry() -> CapabilityRegistry:
    """Registry holding the bundled capabilities, frozen."""
    registry = CapabilityRegistry()
    register_all(registry)
    registry.freeze()
    return registry


def create_app(
    config: ServerConfig,
    registry: Optional[CapabilityRegistry] = None,
    validator: Optional[TokenValidator] = None,
    audit_logger: Optional[AuditLogger] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Resolved server configuration
        registry: Capability registry; the bundled capabilities when omitted
        validator: Token validator; one backed by the authority's JWKS when omitted
        audit_logger: Audit logger; built from config when omitted

    Returns:
        The configured application
    """
    if registry is None:
        registry = build_registry()
    elif not registry.frozen:
        registry.freeze()

    if validator is None:
        validator = TokenValidator(
            config,
            SigningKeyCache(
                config.jwks_uri,
                cache_ttl_seconds=config.jwks_cache_ttl_seconds,
                min_refresh_interval_seconds=config.jwks_min_refresh_interval_seconds,
                timeout=config.key_fetch_timeout_seconds,
            ),
        )

    if audit_logger is None:
        audit_logger = AuditLogger(log_path=config.audit_log_path, enabled=config.enable_audit)

    publisher = ResourceMetadataPublisher(config)
    dispatcher = ProtocolDispatcher(
        registry=registry,
        validator=validator,
        authorizer=ScopeAuthorizer.from_config(config),
        audit_logger=audit_logger,
        server_version=VERSION,
        instructions=f"Tools require the '{config.required_scope}' scope.",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Secure MCP Server started",
            resource=config.resource_url,
            authorization_servers=list(config.authorization_servers),
            capabilities=registry.counts(),
        )

        yield

        logger.info("Shutting down Secure MCP Server")
        await validator.key_cache.close()
        await audit_logger.flush()

    app = FastAPI(
        title="Secure MCP Server",
        description="MCP server protected by Microsoft Entra ID bearer tokens",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.publisher = publisher

    if config.https_redirect:
        app.add_middleware(HTTPSRedirectMiddleware)

    if config.cors_allow_any_origin:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["WWW-Authenticate"],
        )

    @app.get(HEALTH_PATH, response_class=PlainTextResponse, tags=["System"])
    async def health_check() -> str:
        """Liveness check; also the resource documentation link."""
        now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        return f"Secure MCP server running deployed: UTC: {now}, use {RESOURCE_PATH} path to use the tools"

    @app.get(WELL_KNOWN_PATH, tags=["Discovery"])
    @app.get(WELL_KNOWN_PATH + RESOURCE_PATH, tags=["Discovery"])
    async def protected_resource_metadata() -> dict:
        """OAuth protected resource metadata (RFC 9728)."""
        return publisher.document()

    @app.post(RESOURCE_PATH, tags=["MCP"])
    async def mcp_endpoint(request: Request) -> Response:
        """
        JSON-RPC 2.0 capability endpoint.

        Rejected requests get 401 or 403 with a WWW-Authenticate challenge
        pointing at the metadata document.
        """
        body = await request.body()
        result = await dispatcher.dispatch(request.headers.get("authorization"), body)

        if result.response is None:
            return Response(status_code=result.status_code)

        headers = {}
        challenge = publisher.challenge(result.reason)
        if challenge:
            headers["WWW-Authenticate"] = challenge

        return JSONResponse(
            content=result.response.to_wire(),
            status_code=result.status_code,
            headers=headers,
        )

    return app


def main():
    """Run the Secure MCP Server."""
    import uvicorn

    settings = get_settings()

    try:
        config = ServerConfig.from_settings(settings)
    except ConfigurationError as e:
        setup_logging(settings.log_level)
        logger.error("Invalid configuration", error=str(e))
        sys.exit(1)

    setup_logging(config.log_level, json_output=config.json_logs)

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
