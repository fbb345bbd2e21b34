"""Hecate Protocols - Event-Typen und Pub/Sub."""

from hecate.protocols.events import (
    Event,
    EventType,
    EventFilter,
    Subscription,
    EventBroadcaster,
)

__all__ = ["Event", "EventType", "EventFilter", "Subscription", "EventBroadcaster"]
