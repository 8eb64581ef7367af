"""Protocol Dispatcher for the Secure MCP Server.

Runs one capability-path request through the gated pipeline:

    received -> authenticated -> authorized -> routed -> succeeded | failed

The body is not parsed until both gates have passed, so a rejected caller
never reaches the registry or a handler. Every terminal state carries a
Reason that the transport maps to a status code.
"""

import asyncio
import base64
import json
import time
import uuid
from typing import Any, Optional

from shared.logging import bind_context, get_logger, request_context
from shared.models import (
    Capability,
    CapabilityKind,
    DispatchResult,
    DispatchState,
    Operation,
    ProtocolRequest,
    ProtocolResponse,
    Reason,
    RPCError,
)
from secure_mcp.audit import AuditLogger
from secure_mcp.auth import AuthenticationError, ScopeAuthorizer, TokenValidator
from secure_mcp.registry import CapabilityRegistry, InvalidArgumentsError

logger = get_logger(__name__)

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
UNAUTHORIZED = -32001
FORBIDDEN = -32003

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

# method -> (operation, capability kind, parameter naming the capability)
METHODS: dict[str, tuple[Operation, Optional[CapabilityKind], Optional[str]]] = {
    "initialize": (Operation.INITIALIZE, None, None),
    "ping": (Operation.PING, None, None),
    "tools/list": (Operation.LIST, CapabilityKind.TOOL, None),
    "tools/call": (Operation.INVOKE, CapabilityKind.TOOL, "name"),
    "prompts/list": (Operation.LIST, CapabilityKind.PROMPT, None),
    "prompts/get": (Operation.INVOKE, CapabilityKind.PROMPT, "name"),
    "resources/list": (Operation.LIST, CapabilityKind.RESOURCE, None),
    "resources/read": (Operation.INVOKE, CapabilityKind.RESOURCE, "uri"),
}

LIST_KEYS = {
    CapabilityKind.TOOL: "tools",
    CapabilityKind.PROMPT: "prompts",
    CapabilityKind.RESOURCE: "resources",
}


class ProtocolError(Exception):
    """A capability-path message that cannot be routed."""

    def __init__(
        self,
        code: int,
        message: str,
        reason: Reason = Reason.INVALID_INPUT,
        request_id: Optional[str | int] = None
    ) -> None:
        self.code = code
        self.message = message
        self.reason = reason
        self.request_id = request_id
        super().__init__(message)


def parse_request(body: bytes | str) -> ProtocolRequest:
    """
    Parse a JSON-RPC 2.0 message into a ProtocolRequest.

    Raises:
        ProtocolError: If the message is not valid JSON-RPC or names an
            unknown method
    """
    try:
        message = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolError(PARSE_ERROR, f"Parse error: {e}")

    if not isinstance(message, dict):
        raise ProtocolError(INVALID_REQUEST, "Request must be a single JSON-RPC object")

    request_id = message.get("id")
    if request_id is not None and (isinstance(request_id, bool) or not isinstance(request_id, (str, int))):
        raise ProtocolError(INVALID_REQUEST, "Request id must be a string or integer")

    method = message.get("method")
    if message.get("jsonrpc") != "2.0" or not isinstance(method, str):
        raise ProtocolError(INVALID_REQUEST, "Invalid JSON-RPC 2.0 request", request_id=request_id)

    params = message.get("params", {})
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise ProtocolError(INVALID_PARAMS, "Params must be an object", request_id=request_id)

    if "id" not in message:
        return ProtocolRequest(method=method, operation=Operation.NOTIFY, input=params)

    if method not in METHODS:
        raise ProtocolError(
            METHOD_NOT_FOUND,
            f"Method not found: {method}",
            reason=Reason.CAPABILITY_NOT_FOUND,
            request_id=request_id,
        )

    operation, kind, name_param = METHODS[method]
    name = None
    payload = params

    if operation == Operation.INVOKE:
        name = params.get(name_param)
        if not isinstance(name, str) or not name:
            raise ProtocolError(
                INVALID_PARAMS,
                f"Missing '{name_param}' for {method}",
                request_id=request_id,
            )
        payload = params.get("arguments")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ProtocolError(INVALID_PARAMS, "Arguments must be an object", request_id=request_id)

    return ProtocolRequest(
        id=request_id,
        method=method,
        operation=operation,
        kind=kind,
        name=name,
        input=payload,
    )


class ProtocolDispatcher:
    """
    Authenticates, authorizes, routes and invokes capability requests.

    Responsibilities:
    - Gate every request on token validation, then scope
    - Parse the message only after both gates pass
    - Route to the registry and validate input
    - Invoke the handler and shape its result
    - Audit routed invocations
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        validator: TokenValidator,
        authorizer: ScopeAuthorizer,
        audit_logger: Optional[AuditLogger] = None,
        server_name: str = "secure-mcp-server",
        server_version: str = "0.1.0",
        instructions: Optional[str] = None
    ) -> None:
        self.registry = registry
        self.validator = validator
        self.authorizer = authorizer
        self.audit_logger = audit_logger
        self.server_name = server_name
        self.server_version = server_version
        self.instructions = instructions

    async def dispatch(
        self,
        authorization_header: Optional[str],
        body: bytes | str
    ) -> DispatchResult:
        """
        Run one request through the pipeline.

        Args:
            authorization_header: Raw Authorization header, may be None
            body: Raw request body

        Returns:
            The terminal DispatchResult
        """
        request_id = str(uuid.uuid4())
        with request_context(request_id=request_id):
            return await self._dispatch(authorization_header, body, request_id)

    async def _dispatch(
        self,
        authorization_header: Optional[str],
        body: bytes | str,
        request_id: str
    ) -> DispatchResult:
        try:
            token = await self.validator.validate(authorization_header)
        except AuthenticationError as e:
            logger.warning("Token rejected", reason=e.reason.value, detail=e.detail)
            return _failed(e.reason, UNAUTHORIZED, "Unauthorized")

        bind_context(subject=token.subject)
        decision = self.authorizer.authorize(token)
        if not decision.allowed:
            return _failed(decision.reason, FORBIDDEN, "Forbidden: insufficient scope", subject=token.subject)

        try:
            request = parse_request(body)
        except ProtocolError as e:
            logger.info("Malformed request", code=e.code, error=e.message)
            return _failed(e.reason, e.code, e.message, request_id=e.request_id, subject=token.subject)

        if request.is_notification:
            logger.debug("Notification received", method=request.method)
            return DispatchResult(state=DispatchState.SUCCEEDED, reason=Reason.ALLOWED, subject=token.subject)

        if request.operation == Operation.INVOKE:
            return await self._invoke(request, token.subject, request_id)

        if request.operation == Operation.LIST:
            result: Any = {
                LIST_KEYS[request.kind]: [d.to_wire() for d in self.registry.list(request.kind)]
            }
        elif request.operation == Operation.INITIALIZE:
            result = self._initialize_result(request.input)
        else:
            result = {}

        return _succeeded(request.id, result, subject=token.subject)

    async def _invoke(
        self,
        request: ProtocolRequest,
        subject: str,
        request_id: str
    ) -> DispatchResult:
        capability = self.registry.lookup(request.kind, request.name)
        if capability is None:
            logger.info("Capability not found", kind=request.kind.value, capability=request.name)
            return _failed(
                Reason.CAPABILITY_NOT_FOUND,
                INVALID_PARAMS,
                f"Unknown {request.kind.value}: {request.name}",
                request_id=request.id,
                subject=subject,
            )

        is_valid, errors = self.registry.validate_input(capability, request.input)
        if not is_valid:
            message = f"Invalid input for {capability.kind.value} '{capability.name}': {'; '.join(errors)}"
            await self._audit(capability, request.input, subject, request_id, Reason.INVALID_INPUT, message)
            return _failed(Reason.INVALID_INPUT, INVALID_PARAMS, message, request_id=request.id, subject=subject)

        start_time = time.perf_counter()
        try:
            output = await self._call(capability, dict(request.input))
            result = self._shape(capability, output)
        except InvalidArgumentsError as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            message = f"Invalid input for {capability.kind.value} '{capability.name}': {e}"
            logger.info("Capability rejected arguments", capability=capability.name, error=str(e))
            await self._audit(capability, request.input, subject, request_id, Reason.INVALID_INPUT, message, elapsed)
            return _failed(Reason.INVALID_INPUT, INVALID_PARAMS, message, request_id=request.id, subject=subject)
        except Exception as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            logger.error(
                "Capability handler failed",
                kind=capability.kind.value,
                capability=capability.name,
                error=str(e),
                exc_info=True
            )
            await self._audit(capability, request.input, subject, request_id, Reason.HANDLER_ERROR, str(e), elapsed)
            return _failed(
                Reason.HANDLER_ERROR,
                INTERNAL_ERROR,
                "Internal error",
                request_id=request.id,
                subject=subject,
                cause=e,
            )

        elapsed = (time.perf_counter() - start_time) * 1000
        await self._audit(capability, request.input, subject, request_id, Reason.ALLOWED, None, elapsed)
        return _succeeded(request.id, result, subject=subject)

    async def _call(self, capability: Capability, payload: dict[str, Any]) -> Any:
        """Invoke a handler; sync handlers run in the default thread pool."""
        handler = capability.handler
        if asyncio.iscoroutinefunction(handler):
            return await handler(payload)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, handler, payload)

    def _shape(self, capability: Capability, output: Any) -> dict[str, Any]:
        """Shape handler output into the MCP result for its kind."""
        if capability.kind == CapabilityKind.TOOL:
            if capability.output_schema:
                is_valid, errors = self.registry.validate_output(capability, output)
                if not is_valid:
                    raise ValueError(f"Output violates schema: {'; '.join(errors)}")

            text = output if isinstance(output, str) else json.dumps(output, default=str)
            result: dict[str, Any] = {
                "content": [{"type": "text", "text": text}],
                "isError": False,
            }
            if isinstance(output, dict):
                result["structuredContent"] = output
            return result

        if capability.kind == CapabilityKind.PROMPT:
            if isinstance(output, str):
                output = [{"role": "user", "content": {"type": "text", "text": output}}]
            return {"description": capability.description, "messages": output}

        content: dict[str, Any] = {"uri": capability.name, "mimeType": capability.mime_type}
        if isinstance(output, bytes):
            content["blob"] = base64.b64encode(output).decode("ascii")
        else:
            content["text"] = output if isinstance(output, str) else json.dumps(output, default=str)
        return {"contents": [content]}

    def _initialize_result(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else SUPPORTED_PROTOCOL_VERSIONS[0]

        result: dict[str, Any] = {
            "protocolVersion": version,
            "capabilities": {
                "tools": {"listChanged": False},
                "prompts": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }
        if self.instructions:
            result["instructions"] = self.instructions
        return result

    async def _audit(
        self,
        capability: Capability,
        parameters: dict[str, Any],
        subject: str,
        request_id: str,
        reason: Reason,
        error: Optional[str] = None,
        execution_time_ms: float = 0
    ) -> None:
        if self.audit_logger is None:
            return
        entry = self.audit_logger.create_entry(
            capability,
            parameters,
            subject=subject,
            request_id=request_id,
            reason=reason,
            error=error,
            execution_time_ms=execution_time_ms,
        )
        await self.audit_logger.log(entry)


def _succeeded(
    request_id: Optional[str | int],
    result: Any,
    subject: Optional[str] = None
) -> DispatchResult:
    return DispatchResult(
        state=DispatchState.SUCCEEDED,
        reason=Reason.ALLOWED,
        response=ProtocolResponse(id=request_id, result=result),
        subject=subject,
    )


def _failed(
    reason: Reason,
    code: int,
    message: str,
    request_id: Optional[str | int] = None,
    subject: Optional[str] = None,
    cause: Optional[BaseException] = None
) -> DispatchResult:
    return DispatchResult(
        state=DispatchState.FAILED,
        reason=reason,
        response=ProtocolResponse(id=request_id, error=RPCError(code=code, message=message)),
        cause=cause,
        subject=subject,
    )
