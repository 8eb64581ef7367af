"""Core data models for the Secure MCP Server.

This module defines the structures that flow through the authorization
boundary: capabilities, access tokens, discovery metadata, authorization
decisions and protocol messages.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field


class CapabilityKind(str, Enum):
    """Kinds of capability a client can discover and invoke."""
    TOOL = "tool"
    PROMPT = "prompt"
    RESOURCE = "resource"


class Reason(str, Enum):
    """
    Terminal outcome of a request through the gated pipeline.

    The first five are authorization decisions; the rest are dispatch
    failures after a request has been authorized.
    """
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    MISSING_SCOPE = "missing_scope"
    ALLOWED = "allowed"
    CAPABILITY_NOT_FOUND = "capability_not_found"
    INVALID_INPUT = "invalid_input"
    HANDLER_ERROR = "handler_error"

    @property
    def status_code(self) -> int:
        """HTTP status the transport answers with for this outcome."""
        return _STATUS_CODES[self]


_STATUS_CODES = {
    Reason.MISSING_TOKEN: 401,
    Reason.INVALID_TOKEN: 401,
    Reason.EXPIRED_TOKEN: 401,
    Reason.MISSING_SCOPE: 403,
    Reason.ALLOWED: 200,
    Reason.CAPABILITY_NOT_FOUND: 400,
    Reason.INVALID_INPUT: 400,
    Reason.HANDLER_ERROR: 500,
}

AUTHENTICATION_REASONS = frozenset(
    {Reason.MISSING_TOKEN, Reason.INVALID_TOKEN, Reason.EXPIRED_TOKEN}
)


class Capability(BaseModel):
    """
    A registered tool, prompt or resource.

    The handler takes the validated input payload and returns the output,
    or raises. It may be a coroutine function.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique within its kind; the URI for resources")
    kind: CapabilityKind
    handler: Callable[..., Any] = Field(..., exclude=True, repr=False)
    description: str = ""
    title: Optional[str] = None
    mime_type: str = "text/plain"

    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for input validation"
    )
    output_schema: dict[str, Any] = Field(
        default_factory=dict,
        description="JSON Schema for output structure"
    )

    def describe(self) -> "CapabilityDescriptor":
        """Return the listing view of this capability."""
        return CapabilityDescriptor(
            kind=self.kind,
            name=self.name,
            title=self.title,
            description=self.description,
            mime_type=self.mime_type,
            input_schema=self.input_schema,
            output_schema=self.output_schema,
        )


class CapabilityDescriptor(BaseModel):
    """What a client sees when enumerating capabilities."""
    model_config = ConfigDict(frozen=True)

    kind: CapabilityKind
    name: str
    title: Optional[str] = None
    description: str = ""
    mime_type: str = "text/plain"
    input_schema: dict[str, Any] = Field(default_factory=dict)
    output_schema: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        """Render the descriptor the way MCP list results carry it."""
        if self.kind == CapabilityKind.TOOL:
            entry: dict[str, Any] = {
                "name": self.name,
                "description": self.description,
                "inputSchema": self.input_schema,
            }
            if self.output_schema:
                entry["outputSchema"] = self.output_schema
        elif self.kind == CapabilityKind.PROMPT:
            required = set(self.input_schema.get("required", []))
            entry = {
                "name": self.name,
                "description": self.description,
                "arguments": [
                    {
                        "name": arg,
                        "description": prop.get("description", ""),
                        "required": arg in required,
                    }
                    for arg, prop in self.input_schema.get("properties", {}).items()
                ],
            }
        else:
            entry = {
                "uri": self.name,
                "name": self.title or self.name,
                "description": self.description,
                "mimeType": self.mime_type,
            }

        if self.title and self.kind != CapabilityKind.RESOURCE:
            entry["title"] = self.title
        return entry


class AccessToken(BaseModel):
    """
    A validated bearer token.

    Only the token validator constructs these. The raw credential is kept
    out of repr and serialization so it cannot leak into logs or responses.
    """
    model_config = ConfigDict(frozen=True)

    raw: str = Field(..., repr=False, exclude=True)
    subject: str
    issuer: str
    audience: list[str]
    expires_at: datetime
    claims: dict[str, Any] = Field(default_factory=dict, repr=False)


class ResourceMetadata(BaseModel):
    """Protected resource metadata served on the discovery path."""
    model_config = ConfigDict(frozen=True)

    resource: str
    authorization_servers: list[str]
    resource_documentation: str
    scopes_supported: list[str]
    resource_name: str


class AuthorizationDecision(BaseModel):
    """Result of the authentication and scope gates for one request."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Reason

    @classmethod
    def allow(cls) -> "AuthorizationDecision":
        return cls(allowed=True, reason=Reason.ALLOWED)

    @classmethod
    def deny(cls, reason: Reason) -> "AuthorizationDecision":
        return cls(allowed=False, reason=reason)


class Operation(str, Enum):
    """What a parsed protocol request asks the dispatcher to do."""
    INVOKE = "invoke"
    LIST = "list"
    INITIALIZE = "initialize"
    PING = "ping"
    NOTIFY = "notify"


class ProtocolRequest(BaseModel):
    """A parsed JSON-RPC request on the capability path."""
    id: Optional[str | int] = None
    method: str
    operation: Operation
    kind: Optional[CapabilityKind] = None
    name: Optional[str] = None
    input: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.operation == Operation.NOTIFY


class RPCError(BaseModel):
    """JSON-RPC error object."""
    code: int
    message: str
    data: Optional[Any] = None


class ProtocolResponse(BaseModel):
    """JSON-RPC response: exactly one of result or error is set."""
    id: Optional[str | int] = None
    result: Optional[Any] = None
    error: Optional[RPCError] = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump(exclude_none=True)
        else:
            body["result"] = self.result
        return body


class DispatchState(str, Enum):
    """Per-request pipeline states."""
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    AUTHORIZED = "authorized"
    ROUTED = "routed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DispatchResult(BaseModel):
    """Terminal state of one request through the dispatcher."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: DispatchState
    reason: Reason
    response: Optional[ProtocolResponse] = None
    cause: Optional[BaseException] = Field(default=None, exclude=True)
    subject: Optional[str] = None

    @property
    def status_code(self) -> int:
        if self.state == DispatchState.SUCCEEDED and self.response is None:
            return 202
        return self.reason.status_code


class AuditEntry(BaseModel):
    """
    Audit log entry for capability invocations.

    Captures caller, capability, parameters, timestamp and outcome.
    """
    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    subject: str
    kind: CapabilityKind
    capability: str

    parameters: dict[str, Any] = Field(default_factory=dict)

    reason: Reason
    error: Optional[str] = None
    execution_time_ms: float = 0

    request_id: str
