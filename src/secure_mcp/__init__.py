"""Secure MCP Server - OAuth-protected MCP capability server.

The server is a protected resource: it publishes where clients get tokens,
validates bearer tokens issued by Microsoft Entra ID, requires a delegated
scope, and only then routes MCP requests to registered capabilities.
"""

from secure_mcp.auth import (
    AuthenticationError,
    ExpiredTokenError,
    InvalidTokenError,
    MissingTokenError,
    ScopeAuthorizer,
    TokenValidator,
)
from secure_mcp.dispatcher import ProtocolDispatcher
from secure_mcp.jwks import KeyFetchError, SigningKeyCache
from secure_mcp.metadata import ResourceMetadataPublisher
from secure_mcp.registry import (
    CapabilityRegistry,
    DuplicateCapabilityError,
    InvalidArgumentsError,
    RegistryFrozenError,
)

__all__ = [
    "AuthenticationError",
    "ExpiredTokenError",
    "InvalidTokenError",
    "MissingTokenError",
    "ScopeAuthorizer",
    "TokenValidator",
    "ProtocolDispatcher",
    "KeyFetchError",
    "SigningKeyCache",
    "ResourceMetadataPublisher",
    "CapabilityRegistry",
    "DuplicateCapabilityError",
    "InvalidArgumentsError",
    "RegistryFrozenError",
]
