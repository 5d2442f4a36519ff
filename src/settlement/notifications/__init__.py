"""Notification publisher factory.

Provides get_publisher() / set_publisher() to swap implementations:
- LoggingPublisher by default
- RecordingPublisher in tests
"""

from settlement.notifications.adapters import LoggingPublisher
from settlement.notifications.port import NotificationPublisher

_current_publisher: NotificationPublisher | None = None


def get_publisher() -> NotificationPublisher:
    """Return the current publisher. Defaults to LoggingPublisher."""
    global _current_publisher
    if _current_publisher is None:
        _current_publisher = LoggingPublisher()
    return _current_publisher


def set_publisher(publisher: NotificationPublisher) -> None:
    """Override the active publisher (useful for tests)."""
    global _current_publisher
    _current_publisher = publisher


def reset_publisher() -> None:
    """Reset to default publisher."""
    global _current_publisher
    _current_publisher = None
