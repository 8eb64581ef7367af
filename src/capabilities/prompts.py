"""Prompts - example prompt templates that steer a client to the tools."""

from typing import Any

from shared.models import Capability, CapabilityKind
from secure_mcp.registry import CapabilityRegistry


def pick_number(params: dict[str, Any]) -> list[dict[str, Any]]:
    low = params.get("min", "1")
    high = params.get("max", "10")
    text = (
        f"Pick a random number between {low} and {high} using the random-number tool, "
        "then tell me whether it is even or odd."
    )
    return [{"role": "user", "content": {"type": "text", "text": text}}]


def date_summary(params: dict[str, Any]) -> list[dict[str, Any]]:
    text = "Use the current-date tool and summarize today's date in one sentence."
    if params.get("event_date"):
        text += (
            f" Then use the days-between tool to say how many days remain until "
            f"{params['event_date']}."
        )
    return [{"role": "user", "content": {"type": "text", "text": text}}]


PROMPTS = [
    Capability(
        name="pick-number",
        kind=CapabilityKind.PROMPT,
        handler=pick_number,
        description="Ask the model to draw a random number and classify it.",
        input_schema={
            "type": "object",
            "properties": {
                "min": {"type": "string", "description": "Lower bound"},
                "max": {"type": "string", "description": "Upper bound"},
            },
        },
    ),
    Capability(
        name="date-summary",
        kind=CapabilityKind.PROMPT,
        handler=date_summary,
        description="Summarize today's date, optionally counting down to an event.",
        input_schema={
            "type": "object",
            "properties": {
                "event_date": {"type": "string", "description": "Event date, YYYY-MM-DD"},
            },
        },
    ),
]


def register_prompts(registry: CapabilityRegistry) -> None:
    registry.register_many(PROMPTS)
