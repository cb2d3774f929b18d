"""Event system for Server-Sent Events (SSE)."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from autodeploy.models.deployment import utc_now

# Event types that end a deployment stream
TERMINAL_EVENTS = ("deployment_succeeded", "deployment_failed")


@dataclass
class Event:
    """An SSE event."""

    event_type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=utc_now)

    def to_sse(self) -> dict[str, str]:
        """Convert to an sse-starlette message."""
        data_json = json.dumps({**self.data, "timestamp": self.timestamp.isoformat()})
        return {"event": self.event_type, "data": data_json}


class EventBus:
    """Broadcasts deployment events to every connected subscriber."""

    def __init__(self):
        self._subscribers: set[asyncio.Queue[Event]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[Event]:
        """Subscribe to deployment events."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        """Unsubscribe from deployment events."""
        self._subscribers.discard(queue)

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribers."""
        for queue in list(self._subscribers):
            await queue.put(event)

    async def publish_step_started(self, step: str) -> None:
        await self.publish(Event(event_type="step_started", data={"step": step}))

    async def publish_step_completed(self, step: str, duration_ms: int) -> None:
        await self.publish(
            Event(
                event_type="step_completed",
                data={"step": step, "duration_ms": duration_ms},
            )
        )

    async def publish_step_failed(self, step: str, error: str) -> None:
        await self.publish(
            Event(event_type="step_failed", data={"step": step, "error": error})
        )

    async def publish_rollback_started(self, backup_path: str | None) -> None:
        await self.publish(
            Event(event_type="rollback_started", data={"backup_path": backup_path})
        )

    async def publish_deployment_finished(self, commit: str, success: bool, error: str | None = None) -> None:
        """Publish the terminal event of an attempt."""
        event_type = "deployment_succeeded" if success else "deployment_failed"
        await self.publish(
            Event(
                event_type=event_type,
                data={"commit": commit, "success": success, "error": error},
            )
        )


# Singleton instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the event bus singleton."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
