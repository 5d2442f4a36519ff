"""Notification publisher port.

Committed domain events leave the settlement core through this interface.
Delivery is fire-and-forget: the forwarding handler logs publisher failures
and never fails the command that raised the event.
"""

from abc import ABC, abstractmethod

from protean.core.event import BaseEvent


class NotificationPublisher(ABC):
    @abstractmethod
    def publish(self, event: BaseEvent) -> None:
        """Deliver one committed domain event."""
        ...
