"""Tests for the capability registry."""

import pytest

from shared.models import Capability, CapabilityKind


def _tool(name="echo", **kwargs) -> Capability:
    kwargs.setdefault("input_schema", {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    })
    return Capability(name=name, kind=CapabilityKind.TOOL, handler=lambda params: params, **kwargs)


class TestCapabilityRegistry:
    """Tests for CapabilityRegistry."""

    def test_register_and_lookup(self):
        """Test registering a capability and looking it up."""
        from secure_mcp.registry import CapabilityRegistry

        registry = CapabilityRegistry()
        tool = _tool(description="Echo the input")

        registry.register(tool)

        assert registry.lookup(CapabilityKind.TOOL, "echo") is tool
        assert registry.lookup(CapabilityKind.TOOL, "missing") is None
        assert registry.lookup(CapabilityKind.PROMPT, "echo") is None

    def test_register_duplicate_raises(self):
        """Test that registering the same kind and name twice raises."""
        from secure_mcp.registry import CapabilityRegistry, DuplicateCapabilityError

        registry = CapabilityRegistry()
        registry.register(_tool())

        with pytest.raises(DuplicateCapabilityError, match="already registered"):
            registry.register(_tool(description="Another echo"))

    def test_same_name_different_kind(self):
        """Test that names are unique per kind only."""
        from secure_mcp.registry import CapabilityRegistry

        registry = CapabilityRegistry()
        registry.register(_tool())
        registry.register(Capability(name="echo", kind=CapabilityKind.PROMPT, handler=lambda params: "hi"))

        assert registry.counts() == {"tool": 1, "prompt": 1, "resource": 0}

    def test_list_returns_every_capability(self):
        """Test that listing yields each capability with its name and schema."""
        from secure_mcp.registry import CapabilityRegistry

        registry = CapabilityRegistry()
        tools = [_tool(name=f"tool-{i}") for i in range(3)]
        registry.register_many(tools)

        listed = {d.name: d for d in registry.list(CapabilityKind.TOOL)}

        assert set(listed) == {"tool-0", "tool-1", "tool-2"}
        for tool in tools:
            assert listed[tool.name].input_schema == tool.input_schema

    def test_list_is_restartable(self):
        """Test that each iteration over a listing is a fresh pass."""
        from secure_mcp.registry import CapabilityRegistry

        registry = CapabilityRegistry()
        registry.register_many([_tool(name="a"), _tool(name="b")])
        listing = registry.list(CapabilityKind.TOOL)

        assert [d.name for d in listing] == ["a", "b"]
        assert [d.name for d in listing] == ["a", "b"]
        assert len(listing) == 2

    def test_descriptor_never_carries_handler(self):
        """Test that listing views omit the handler."""
        from secure_mcp.registry import CapabilityRegistry

        registry = CapabilityRegistry()
        registry.register(_tool())

        descriptor = next(iter(registry.list(CapabilityKind.TOOL)))

        assert "handler" not in descriptor.model_dump()
        assert "handler" not in descriptor.to_wire()

    def test_frozen_registry_rejects_registration(self):
        """Test that registration after freeze raises."""
        from secure_mcp.registry import CapabilityRegistry, RegistryFrozenError

        registry = CapabilityRegistry()
        registry.register(_tool())
        registry.freeze()

        assert registry.frozen
        with pytest.raises(RegistryFrozenError):
            registry.register(_tool(name="late"))
        assert registry.lookup(CapabilityKind.TOOL, "echo") is not None

    def test_invalid_schema_rejected(self):
        """Test that a capability with a malformed schema is not registered."""
        from secure_mcp.registry import CapabilityRegistry

        registry = CapabilityRegistry()

        with pytest.raises(ValueError, match="Invalid JSON Schema"):
            registry.register(_tool(input_schema={"type": "not-a-type"}))
        assert registry.lookup(CapabilityKind.TOOL, "echo") is None

    def test_validate_input(self):
        """Test input validation against the declared schema."""
        from secure_mcp.registry import CapabilityRegistry

        registry = CapabilityRegistry()
        tool = _tool()
        registry.register(tool)

        is_valid, errors = registry.validate_input(tool, {"text": "hello"})
        assert is_valid
        assert errors == []

        is_valid, errors = registry.validate_input(tool, {})
        assert not is_valid
        assert "'text' is a required property" in errors[0]

        is_valid, errors = registry.validate_input(tool, {"text": 42})
        assert not is_valid
        assert errors[0].startswith("text:")


class TestCapabilityDescriptor:
    """Tests for the wire rendering of listings."""

    def test_tool_wire_format(self):
        """Test that tools list with inputSchema and outputSchema."""
        tool = _tool(title="Echo", output_schema={"type": "object"})

        wire = tool.describe().to_wire()

        assert wire["name"] == "echo"
        assert wire["title"] == "Echo"
        assert wire["inputSchema"]["required"] == ["text"]
        assert wire["outputSchema"] == {"type": "object"}

    def test_prompt_wire_format(self):
        """Test that prompt arguments come from the input schema."""
        prompt = Capability(
            name="greet",
            kind=CapabilityKind.PROMPT,
            handler=lambda params: "hi",
            input_schema={
                "type": "object",
                "properties": {"name": {"type": "string", "description": "Who to greet"}},
                "required": ["name"],
            },
        )

        wire = prompt.describe().to_wire()

        assert wire["arguments"] == [{"name": "name", "description": "Who to greet", "required": True}]

    def test_resource_wire_format(self):
        """Test that resources list by URI and MIME type."""
        resource = Capability(
            name="docs://example/readme",
            kind=CapabilityKind.RESOURCE,
            handler=lambda params: "# Readme",
            title="Readme",
            mime_type="text/markdown",
        )

        wire = resource.describe().to_wire()

        assert wire == {
            "uri": "docs://example/readme",
            "name": "Readme",
            "description": "",
            "mimeType": "text/markdown",
        }
