"""Audit trail for capability invocations.

Every request that passes both gates and is routed to a capability leaves
one record: who called, what, with which (redacted) arguments, how it
ended and how long it took. Requests turned away at the token or scope
gate never reach routing; those are in the application log only.

Records go to the structured log at once and to a JSON-lines file in
batches.
"""

import asyncio
import uuid
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import CREDENTIAL_KEYS, get_logger
from shared.models import AuditEntry, Capability, Reason

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

# Argument names never written to the audit trail
SENSITIVE_KEYS = CREDENTIAL_KEYS | {
    "password",
    "secret",
    "client_secret",
    "api_key",
    "apikey",
    "credential",
    "connection_string",
}


def redact(value: Any) -> Any:
    """Copy of an argument payload with sensitive keys masked at any depth."""
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


class AuditLogger:
    """Buffered writer of AuditEntry records."""

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        buffer_size: int = 100
    ) -> None:
        """
        Args:
            log_path: JSON-lines file the trail is appended to
            enabled: When False, nothing is logged or written
            buffer_size: Records held in memory before a write
        """
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._pending: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if self.enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def create_entry(
        self,
        capability: Capability,
        parameters: dict[str, Any],
        subject: str,
        request_id: str,
        reason: Reason,
        error: Optional[str] = None,
        execution_time_ms: float = 0
    ) -> AuditEntry:
        return AuditEntry(
            id=str(uuid.uuid4()),
            subject=subject,
            kind=capability.kind,
            capability=capability.name,
            parameters=redact(parameters),
            reason=reason,
            error=error,
            execution_time_ms=round(execution_time_ms, 3),
            request_id=request_id,
        )

    async def log(self, entry: AuditEntry) -> None:
        """Record an entry; the file is written once the buffer fills."""
        if not self.enabled:
            return

        log = logger.warning if entry.error else logger.info
        log(
            "Capability invoked",
            audit_id=entry.id,
            subject=entry.subject,
            kind=entry.kind.value,
            capability=entry.capability,
            outcome=entry.reason.value,
            execution_time_ms=entry.execution_time_ms,
        )

        async with self._lock:
            self._pending.append(entry)
            if len(self._pending) >= self.buffer_size:
                await self._write_pending()

    async def _write_pending(self) -> None:
        if not self._pending:
            return

        batch, self._pending = self._pending, []
        try:
            async with aiofiles.open(self.log_path, "a") as f:
                await f.write("".join(entry.model_dump_json() + "\n" for entry in batch))
        except OSError as e:
            logger.error("Failed to write audit trail", path=str(self.log_path), error=str(e))
            # Kept for the next attempt
            self._pending = batch + self._pending

    async def flush(self) -> None:
        """Write everything buffered so far."""
        async with self._lock:
            await self._write_pending()
