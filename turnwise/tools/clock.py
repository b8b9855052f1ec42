"""Current time tool."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from turnwise.tools.base import ToolContext, ToolDefinition


class CurrentTimeInput(BaseModel):
    """Input schema for the current time tool."""

    timezone: str = Field(default="UTC", description="IANA timezone name, e.g. 'Europe/Paris'")


class CurrentTimeOutput(BaseModel):
    timezone: str
    iso_time: str


def create_current_time_tool() -> ToolDefinition:
    async def current_time_handler(params: CurrentTimeInput, context: ToolContext) -> CurrentTimeOutput:
        try:
            zone = UTC if params.timezone.upper() == "UTC" else ZoneInfo(params.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {params.timezone}") from e
        return CurrentTimeOutput(timezone=params.timezone, iso_time=datetime.now(zone).isoformat())

    return ToolDefinition(
        name="current_time",
        description=(
            "Get the current date and time. "
            "Parameters: timezone (optional IANA name, defaults to UTC). "
            "Returns the timezone and the time in ISO 8601 format."
        ),
        input_schema_class=CurrentTimeInput,
        handler=current_time_handler,
        read_only=True,
    )
