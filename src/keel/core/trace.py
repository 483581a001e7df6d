"""Lightweight, append-only tracing for a single engine run."""

from datetime import (
    datetime,
    timezone,
)
from typing import List

from pydantic import (
    BaseModel,
    Field,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TraceEvent(BaseModel):
    """A single named event in a trace."""

    name: str
    detail: str = ""
    at: datetime = Field(default_factory=_utcnow)


class Trace(BaseModel):
    """Ordered lifecycle events of one run.  Diagnostic only, never read by the engine."""

    id: str
    started: datetime = Field(default_factory=_utcnow)
    events: List[TraceEvent] = Field(default_factory=list)

    def add_event(self, name: str, detail: str = "") -> None:
        """Append an event stamped with the current time."""
        self.events.append(TraceEvent(name=name, detail=detail))

    def names(self) -> List[str]:
        """Return event names in the order they were recorded."""
        return [event.name for event in self.events]
