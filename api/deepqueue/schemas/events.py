from typing import Any, Literal

from pydantic import BaseModel, Field

EventDirection = Literal["outbound", "inbound"]


class TimelineEvent(BaseModel):
    id: str
    type: EventDirection
    status: str | None = None
    timestamp: str
    data: Any = None


class ResearchEventsOut(BaseModel):
    research_id: str
    events: list[TimelineEvent] = Field(default_factory=list)
    count: int = 0
