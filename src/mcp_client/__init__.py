"""MCP Client - discovery and capability calls against the Secure MCP Server.

The client is stateless apart from its bearer token and is reusable by
CLIs, services and tests.
"""

from mcp_client.client import (
    MCPAuthError,
    MCPClient,
    MCPClientError,
    MCPConnectionError,
    MCPRequestError,
)

__all__ = [
    "MCPAuthError",
    "MCPClient",
    "MCPClientError",
    "MCPConnectionError",
    "MCPRequestError",
]
