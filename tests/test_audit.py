"""Tests for audit logging."""

import json

import pytest

from shared.models import Capability, CapabilityKind, Reason


def _capability() -> Capability:
    return Capability(name="login", kind=CapabilityKind.TOOL, handler=lambda params: None)


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_audit_entry_creation(self, tmp_path):
        """Test creating audit entries."""
        from secure_mcp.audit import AuditLogger

        logger = AuditLogger(log_path=str(tmp_path / "audit.log"))

        entry = logger.create_entry(
            _capability(),
            {"key": "value"},
            subject="user-1",
            request_id="req-1",
            reason=Reason.ALLOWED,
            execution_time_ms=50.0,
        )

        assert entry.subject == "user-1"
        assert entry.capability == "login"
        assert entry.kind == CapabilityKind.TOOL
        assert entry.reason == Reason.ALLOWED
        assert entry.execution_time_ms == 50.0
        assert entry.timestamp.tzinfo is not None

    def test_sensitive_data_redaction(self, tmp_path):
        """Test that sensitive parameters are redacted, nested ones included."""
        from secure_mcp.audit import AuditLogger

        logger = AuditLogger(log_path=str(tmp_path / "audit.log"))

        entry = logger.create_entry(
            _capability(),
            {
                "username": "testuser",
                "password": "secret123",
                "options": {"API_KEY": "key123", "region": "westeurope"},
            },
            subject="user-1",
            request_id="req-1",
            reason=Reason.ALLOWED,
        )

        assert entry.parameters["username"] == "testuser"
        assert entry.parameters["password"] == "[REDACTED]"
        assert entry.parameters["options"]["API_KEY"] == "[REDACTED]"
        assert entry.parameters["options"]["region"] == "westeurope"

    @pytest.mark.asyncio
    async def test_flush_writes_json_lines(self, tmp_path):
        """Test that buffered entries are appended as JSON lines."""
        from secure_mcp.audit import AuditLogger

        path = tmp_path / "logs" / "audit.log"
        logger = AuditLogger(log_path=str(path))

        for reason in (Reason.ALLOWED, Reason.HANDLER_ERROR):
            await logger.log(logger.create_entry(
                _capability(), {}, subject="user-1", request_id="req-1", reason=reason
            ))
        assert not path.exists()

        await logger.flush()

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [line["reason"] for line in lines] == ["allowed", "handler_error"]

    @pytest.mark.asyncio
    async def test_buffer_flushes_when_full(self, tmp_path):
        """Test that a full buffer is written without an explicit flush."""
        from secure_mcp.audit import AuditLogger

        path = tmp_path / "audit.log"
        logger = AuditLogger(log_path=str(path), buffer_size=2)

        for _ in range(2):
            await logger.log(logger.create_entry(
                _capability(), {}, subject="user-1", request_id="req-1", reason=Reason.ALLOWED
            ))

        assert len(path.read_text().splitlines()) == 2

    @pytest.mark.asyncio
    async def test_disabled_logger_writes_nothing(self, tmp_path):
        """Test that a disabled logger neither creates nor writes the file."""
        from secure_mcp.audit import AuditLogger

        path = tmp_path / "disabled" / "audit.log"
        logger = AuditLogger(log_path=str(path), enabled=False)

        await logger.log(logger.create_entry(
            _capability(), {}, subject="user-1", request_id="req-1", reason=Reason.ALLOWED
        ))
        await logger.flush()

        assert not path.parent.exists()
