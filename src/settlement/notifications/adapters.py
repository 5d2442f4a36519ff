"""Notification publisher adapters.

- LoggingPublisher writes each event to the structured log (the default)
- RecordingPublisher keeps events in memory and can simulate an outage
"""

import structlog
from protean.core.event import BaseEvent

from settlement.notifications.port import NotificationPublisher

logger = structlog.get_logger(__name__)


class LoggingPublisher(NotificationPublisher):
    def publish(self, event: BaseEvent) -> None:
        logger.info(
            "Domain event published",
            event_type=event.__class__.__name__,
            payload=event.payload,
        )


class RecordingPublisher(NotificationPublisher):
    def __init__(self) -> None:
        self.published: list[BaseEvent] = []
        self.should_fail: bool = False

    def configure(self, should_fail: bool) -> None:
        self.should_fail = should_fail

    def publish(self, event: BaseEvent) -> None:
        if self.should_fail:
            raise ConnectionError("Notification broker unavailable")
        self.published.append(event)

    def of_type(self, event_type: str) -> list[BaseEvent]:
        return [event for event in self.published if event.__class__.__name__ == event_type]
