"""
Event polling endpoint.

Clients poll with the last sequence number they have seen and receive
everything newer from the bus history.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, ConfigDict

from ..events import Event

router = APIRouter(prefix="/events", tags=["events"])


class EventPage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    events: List[Event]
    last_seq: int


@router.get("", response_model=EventPage)
def poll_events(
    request: Request,
    since: int = Query(0, ge=0),
    project_id: Optional[str] = None,
):
    bus = request.app.state.event_bus
    events = bus.history(since=since, project_id=project_id)
    return EventPage(events=events, last_seq=bus.last_seq)
