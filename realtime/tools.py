import json

from server.schemas import EventCreate

CALENDAR_EVENT_TOOL = {
    "type": "function",
    "name": "create_calendar_event",
    "description": "Create a calendar event with structured data.",
    "parameters": {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Event title"},
            "description": {"type": "string", "description": "Event description"},
            "start_time": {"type": "string", "description": "Event start time (ISO 8601)"},
            "end_time": {"type": "string", "description": "Event end time (ISO 8601)"},
        },
        "required": ["title", "start_time", "end_time"],
    },
}


def event_from_tool_arguments(arguments: str | dict) -> EventCreate:
    """Parse the arguments of a ``create_calendar_event`` call.

    The model sends them as a JSON string; already-decoded dicts are accepted
    too. Raises ``ValueError`` (or pydantic's ``ValidationError``, a subclass)
    when the payload is not a usable event.
    """
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ValueError(f"Tool arguments are not valid JSON: {e}") from e
    if not isinstance(arguments, dict):
        raise ValueError("Tool arguments must be a JSON object")
    return EventCreate.model_validate(arguments)
