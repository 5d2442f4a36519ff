"""Forwards every committed domain event to the notification publisher.

Protean dispatches events to this handler once the unit of work that raised
them has committed. A publisher failure is logged and dropped: the state
change is already durable and the command must still succeed.
"""

import structlog
from protean.utils.mixins import handle

from settlement.domain import settlement
from settlement.notifications import get_publisher

logger = structlog.get_logger(__name__)


@settlement.event_handler(stream_category="$all")
class NotificationForwarder:
    @handle("$any")
    def forward(self, event) -> None:
        try:
            get_publisher().publish(event)
        except Exception:
            logger.exception("Failed to publish domain event", event_type=event.__class__.__name__)
