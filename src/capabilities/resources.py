"""Resources - server documentation."""

from typing import Any

from shared.models import Capability, CapabilityKind
from secure_mcp.registry import CapabilityRegistry

DOCUMENTATION_URI = "docs://secure-mcp/usage"

USAGE = """\
# Secure MCP server

Every request to `/mcp` needs an access token issued by the authorization
server listed at `/.well-known/oauth-protected-resource`, carrying the
`mcp:tools` delegated scope.

## Tools

- `random-number` - random integer between `min` and `max` (inclusive)
- `current-date` - current UTC date, day of week and timestamp
- `days-between` - days between two ISO dates

## Prompts

- `pick-number` - draw a number and classify it
- `date-summary` - summarize today's date, optionally counting down to an event
"""


def usage(params: dict[str, Any]) -> str:
    return USAGE


RESOURCES = [
    Capability(
        name=DOCUMENTATION_URI,
        kind=CapabilityKind.RESOURCE,
        handler=usage,
        title="Usage documentation",
        description="How to authenticate against and use this server.",
        mime_type="text/markdown",
    ),
]


def register_resources(registry: CapabilityRegistry) -> None:
    registry.register_many(RESOURCES)
