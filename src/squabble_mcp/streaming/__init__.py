"""Event distribution, recent history and the durable activity log."""

from .broker import EventBroker, SessionFactory, Subscriber
from .buffer import CircularBuffer
from .recorder import (
    BANNER,
    ActivityLogRotationError,
    ActivityRecorder,
    condense_args,
    format_narrative,
)

__all__ = [
    "ActivityLogRotationError",
    "ActivityRecorder",
    "BANNER",
    "CircularBuffer",
    "EventBroker",
    "SessionFactory",
    "Subscriber",
    "condense_args",
    "format_narrative",
]
