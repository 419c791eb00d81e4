from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .base import GoogleApiClient, GoogleTool, path_segment


class CalendarEvent(BaseModel):
    id: str
    summary: str = ""
    description: str = ""
    start: Optional[str] = None
    end: Optional[str] = None
    location: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    link: Optional[str] = None

    @classmethod
    def from_google(cls, item: Dict[str, Any]) -> "CalendarEvent":
        start = item.get("start") or {}
        end = item.get("end") or {}
        return cls(
            id=item.get("id", ""),
            summary=item.get("summary", ""),
            description=item.get("description", ""),
            start=start.get("dateTime") or start.get("date"),
            end=end.get("dateTime") or end.get("date"),
            location=item.get("location"),
            attendees=[a["email"] for a in item.get("attendees", []) if a.get("email")],
            link=item.get("htmlLink")
        )


def _parse(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # Naive times are taken as UTC, matching the timeZone sent to the API
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ListCalendarEventsTool(GoogleTool):
    name = "list_calendar_events"
    description = (
        "List the user's upcoming Google Calendar events. "
        "Use this to check the schedule or find an event id before deleting it."
    )
    category = "calendar"
    parameters_schema = {
        "type": "object",
        "properties": {
            "maxResults": {"type": "integer", "minimum": 1, "maximum": 50, "description": "Number of events, default 10"},
        },
    }

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        body = await client.get(
            self.url("calendars/primary/events"),
            timeMin=datetime.utcnow().isoformat() + "Z",
            maxResults=arguments.get("maxResults") or 10,
            singleEvents="true",
            orderBy="startTime"
        )
        return [CalendarEvent.from_google(item).model_dump() for item in (body or {}).get("items", [])]


class CreateCalendarEventTool(GoogleTool):
    name = "create_calendar_event"
    description = (
        "Create a Google Calendar event. Times are ISO 8601 "
        "(YYYY-MM-DDTHH:MM:SS+00:00)."
    )
    category = "calendar"
    parameters_schema = {
        "type": "object",
        "properties": {
            "summary": {"type": "string", "description": "Event title"},
            "start": {"type": "string", "format": "date-time", "description": "Start time"},
            "end": {"type": "string", "format": "date-time", "description": "End time"},
            "description": {"type": "string", "description": "Event description"},
            "attendees": {"type": "array", "items": {"type": "string"}, "description": "Attendee emails"},
        },
        "required": ["summary", "start", "end"],
    }

    def custom_validation(self, arguments: Dict[str, Any]) -> Dict[str, str]:
        if _parse(arguments["end"]) <= _parse(arguments["start"]):
            return {"end": "'end' must be after 'start'"}
        return {}

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        event = {
            "summary": arguments["summary"],
            "description": arguments.get("description") or "",
            "start": {"dateTime": arguments["start"], "timeZone": "Etc/UTC"},
            "end": {"dateTime": arguments["end"], "timeZone": "Etc/UTC"},
            "attendees": [{"email": email} for email in arguments.get("attendees") or []],
        }
        created = await client.post(self.url("calendars/primary/events"), json=event)
        return CalendarEvent.from_google(created or {}).model_dump()


class DeleteCalendarEventTool(GoogleTool):
    name = "delete_calendar_event"
    description = "Delete a Google Calendar event by id. List events first to find the id."
    category = "calendar"
    parameters_schema = {
        "type": "object",
        "properties": {
            "eventId": {"type": "string", "description": "Id of the event to delete"},
        },
        "required": ["eventId"],
    }

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        await client.delete(self.url(f"calendars/primary/events/{path_segment(arguments['eventId'])}"))
        return {"eventId": arguments["eventId"], "deleted": True}
