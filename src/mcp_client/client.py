"""MCP Client for the Secure MCP Server.

Speaks JSON-RPC 2.0 to the capability path with a bearer token, and reads
the unauthenticated discovery and health paths. Rejections at the token or
scope gates surface as MCPAuthError carrying the server's challenge, so a
caller can follow it to the authorization server.
"""

import uuid
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.logging import get_logger
from shared.models import ResourceMetadata

logger = get_logger(__name__)

PROTOCOL_VERSION = "2025-06-18"
RESOURCE_PATH = "/mcp"
HEALTH_PATH = "/health"
WELL_KNOWN_PATH = "/.well-known/oauth-protected-resource"


class MCPClientError(Exception):
    """Base exception for MCP Client errors."""
    pass


class MCPConnectionError(MCPClientError):
    """The server could not be reached."""
    pass


class MCPAuthError(MCPClientError):
    """
    The server rejected the token (401) or its scopes (403).

    Attributes:
        status_code: HTTP status of the rejection
        challenge: The WWW-Authenticate header value, if any
    """

    def __init__(self, message: str, status_code: int, challenge: Optional[str] = None) -> None:
        self.status_code = status_code
        self.challenge = challenge
        super().__init__(message)


class MCPRequestError(MCPClientError):
    """The server answered with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")


# Only the idempotent, unauthenticated reads are retried.
retry_unreachable = retry(
    retry=retry_if_exception_type(MCPConnectionError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    reraise=True,
)


class MCPClient:
    """
    Client for one Secure MCP Server deployment.

    The bearer token is read on every capability request, so a caller may
    replace ``auth_token`` after refreshing it.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8000",
        auth_token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """
        Args:
            server_url: Server base URL, without the /mcp suffix
            auth_token: Bearer access token for the capability path
            timeout: Request timeout in seconds
            transport: Optional httpx transport (in-process apps, tests)
        """
        self.base_url = server_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "MCPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise MCPConnectionError(f"{self.base_url} is unreachable: {e}") from e

    @retry_unreachable
    async def health_check(self) -> str:
        """
        Returns:
            The server's plain-text health message

        Raises:
            MCPConnectionError: If the server stays unreachable
        """
        response = await self._send("GET", HEALTH_PATH)
        if response.is_error:
            raise MCPClientError(f"Health check failed with status {response.status_code}")
        return response.text

    @retry_unreachable
    async def discover(self) -> ResourceMetadata:
        """
        Fetch the protected resource metadata.

        No token is sent; this is how a client learns which authorization
        server to get one from and which scopes to request.

        Raises:
            MCPConnectionError: If the server stays unreachable
            MCPClientError: If the document is missing or malformed
        """
        response = await self._send("GET", WELL_KNOWN_PATH)
        if response.is_error:
            raise MCPClientError(f"Discovery failed with status {response.status_code}")
        try:
            return ResourceMetadata.model_validate(response.json())
        except ValueError as e:
            raise MCPClientError(f"Invalid resource metadata: {e}") from e

    async def _post(self, message: dict[str, Any]) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        response = await self._send("POST", RESOURCE_PATH, json=message, headers=headers)

        if response.status_code in (401, 403):
            challenge = response.headers.get("www-authenticate")
            logger.warning(
                "MCP request rejected",
                method=message.get("method"),
                status_code=response.status_code,
                challenge=challenge,
            )
            reason = "Authentication required" if response.status_code == 401 else "Insufficient scope"
            raise MCPAuthError(reason, response.status_code, challenge)

        return response

    async def request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Send a JSON-RPC request and return its result.

        Raises:
            MCPConnectionError: If the server is unreachable
            MCPAuthError: If the token or its scopes are rejected
            MCPRequestError: If the server answers with a JSON-RPC error
        """
        message = {"jsonrpc": "2.0", "id": str(uuid.uuid4()), "method": method, "params": params or {}}
        logger.debug("Sending MCP request", method=method, request_id=message["id"])

        response = await self._post(message)
        try:
            body = response.json()
        except ValueError:
            raise MCPClientError(f"Non-JSON response ({response.status_code}) to {method}")

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            raise MCPRequestError(error.get("code", 0), error.get("message", ""), error.get("data"))
        if response.is_error or not isinstance(body, dict):
            raise MCPClientError(f"{method} failed with status {response.status_code}")
        return body.get("result")

    async def notify(self, method: str, params: Optional[dict[str, Any]] = None) -> None:
        """Send a JSON-RPC notification; the server acknowledges with 202."""
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        response = await self._post(message)
        if response.is_error:
            raise MCPClientError(f"Notification {method} failed with status {response.status_code}")

    async def initialize(self, client_name: str = "secure-mcp-client") -> dict[str, Any]:
        """Run the initialize handshake and return the server's answer."""
        result = await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": client_name, "version": "0.1.0"},
            },
        )
        await self.notify("notifications/initialized")
        return result

    async def ping(self) -> None:
        await self.request("ping")

    async def list_tools(self) -> list[dict[str, Any]]:
        return (await self.request("tools/list")).get("tools", [])

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Call a tool.

        Returns:
            The tool result: ``content``, ``isError`` and, for object
            outputs, ``structuredContent``
        """
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}})

    async def list_prompts(self) -> list[dict[str, Any]]:
        return (await self.request("prompts/list")).get("prompts", [])

    async def get_prompt(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return await self.request("prompts/get", {"name": name, "arguments": arguments or {}})

    async def list_resources(self) -> list[dict[str, Any]]:
        return (await self.request("resources/list")).get("resources", [])

    async def read_resource(self, uri: str) -> dict[str, Any]:
        return await self.request("resources/read", {"uri": uri})
