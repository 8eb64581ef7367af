"""Capabilities served by the Secure MCP Server.

Each module declares its capabilities with a name, schemas and a handler,
and registers them explicitly. A name collision across modules fails at
startup.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from secure_mcp.registry import CapabilityRegistry


def register_all(registry: "CapabilityRegistry") -> None:
    """
    Register every bundled tool, prompt and resource.

    This is called at server startup, before the registry is frozen.
    """
    from capabilities.tools import register_tools
    from capabilities.prompts import register_prompts
    from capabilities.resources import register_resources

    register_tools(registry)
    register_prompts(registry)
    register_resources(registry)


__all__ = ["register_all"]
