"""Shared utilities and models for the Secure MCP Server."""

from shared.models import (
    AccessToken,
    AuthorizationDecision,
    Capability,
    CapabilityDescriptor,
    CapabilityKind,
    ProtocolRequest,
    ProtocolResponse,
    Reason,
    ResourceMetadata,
)
from shared.config import ConfigurationError, ServerConfig, Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AccessToken",
    "AuthorizationDecision",
    "Capability",
    "CapabilityDescriptor",
    "CapabilityKind",
    "ProtocolRequest",
    "ProtocolResponse",
    "Reason",
    "ResourceMetadata",
    "ConfigurationError",
    "ServerConfig",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
