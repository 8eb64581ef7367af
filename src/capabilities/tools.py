"""Tools - random number and date utilities.

Each tool is a plain function taking the validated input payload. The
registry owns the schema; handlers only enforce what a schema cannot
express.
"""

import random
from datetime import date, datetime, timezone
from typing import Any

from shared.logging import get_logger
from shared.models import Capability, CapabilityKind
from secure_mcp.registry import CapabilityRegistry, InvalidArgumentsError

logger = get_logger(__name__)


def random_number(params: dict[str, Any]) -> dict[str, Any]:
    """Return a random integer in the inclusive range [min, max]."""
    # JSON Schema "integer" also admits 1.0
    low = int(params.get("min", 0))
    high = int(params.get("max", 100))
    if low > high:
        raise InvalidArgumentsError(f"min ({low}) must not exceed max ({high})")

    return {"value": random.randint(low, high), "min": low, "max": high}


def current_date(params: dict[str, Any]) -> dict[str, Any]:
    """Return the current UTC date and time."""
    now = datetime.now(timezone.utc)
    return {
        "date": now.date().isoformat(),
        "day_of_week": now.strftime("%A"),
        "utc": now.isoformat(),
    }


def days_between(params: dict[str, Any]) -> dict[str, Any]:
    """Return the number of days from start to end (negative if end is earlier)."""
    try:
        start = date.fromisoformat(params["start"])
        end = date.fromisoformat(params["end"])
    except ValueError as e:
        raise InvalidArgumentsError(f"Dates must be ISO formatted (YYYY-MM-DD): {e}") from e

    return {"start": start.isoformat(), "end": end.isoformat(), "days": (end - start).days}


TOOLS = [
    Capability(
        name="random-number",
        kind=CapabilityKind.TOOL,
        handler=random_number,
        title="Random number",
        description="Generate a random integer between min and max (inclusive).",
        input_schema={
            "type": "object",
            "properties": {
                "min": {"type": "integer", "description": "Lower bound (inclusive)", "default": 0},
                "max": {"type": "integer", "description": "Upper bound (inclusive)", "default": 100},
            },
            "additionalProperties": False,
        },
        output_schema={
            "type": "object",
            "properties": {
                "value": {"type": "integer"},
                "min": {"type": "integer"},
                "max": {"type": "integer"},
            },
            "required": ["value", "min", "max"],
        },
    ),
    Capability(
        name="current-date",
        kind=CapabilityKind.TOOL,
        handler=current_date,
        title="Current date",
        description="Get the current UTC date, day of week and timestamp.",
        input_schema={"type": "object", "properties": {}, "additionalProperties": False},
        output_schema={
            "type": "object",
            "properties": {
                "date": {"type": "string"},
                "day_of_week": {"type": "string"},
                "utc": {"type": "string"},
            },
            "required": ["date", "day_of_week", "utc"],
        },
    ),
    Capability(
        name="days-between",
        kind=CapabilityKind.TOOL,
        handler=days_between,
        title="Days between dates",
        description="Count the days between two ISO dates (YYYY-MM-DD).",
        input_schema={
            "type": "object",
            "properties": {
                "start": {"type": "string", "format": "date", "description": "Start date, YYYY-MM-DD"},
                "end": {"type": "string", "format": "date", "description": "End date, YYYY-MM-DD"},
            },
            "required": ["start", "end"],
            "additionalProperties": False,
        },
        output_schema={
            "type": "object",
            "properties": {
                "start": {"type": "string"},
                "end": {"type": "string"},
                "days": {"type": "integer"},
            },
            "required": ["days"],
        },
    ),
]


def register_tools(registry: CapabilityRegistry) -> None:
    """Register the bundled tools."""
    registry.register_many(TOOLS)
    logger.info("Tools registered", tool_count=len(TOOLS))
