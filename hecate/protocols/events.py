"""
Event Protocol
==============

Event-Typen und Best-Effort Pub/Sub mit begrenztem Puffer pro Abonnent.

Veroeffentlichen blockiert nie: ist der Puffer eines Abonnenten voll, wird
das aelteste Element verworfen (hoechstens einmalige Zustellung an langsame
Konsumenten). Neue Abonnenten erhalten nur Elemente, die nach dem
Abonnieren veroeffentlicht wurden.
"""

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Callable, Dict, Generic, List, Optional, Set, TypeVar

from hecate.core.logging import get_logger
from hecate.core.utils import generate_id

logger = get_logger(__name__)

T = TypeVar("T")


class EventType(Enum):
    """Standard-Eventtypen"""
    # Geraete-Lebenszyklus
    DEVICE_DISCOVERED = auto()
    DEVICE_REMOVED = auto()
    DEVICE_STATE_CHANGED = auto()
    CONFIG_APPLIED = auto()

    # Monitoring
    MONITORING_STARTED = auto()
    MONITORING_STOPPED = auto()
    SAMPLE_STALE = auto()

    # Alerts
    ALERT_RAISED = auto()
    ALERT_ESCALATED = auto()
    ALERT_CLEARED = auto()
    ANOMALY_DETECTED = auto()

    # Load Balancing
    LOAD_BALANCING_ENABLED = auto()
    LOAD_BALANCING_DISABLED = auto()
    WORKLOAD_ASSIGNED = auto()

    # Telemetrie
    METRICS_SNAPSHOT = auto()

    CUSTOM = auto()


@dataclass
class Event:
    """Basis-Event"""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: EventType = EventType.CUSTOM
    source: str = ""
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tags: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        """Konvertiert zu Dictionary"""
        return {
            "id": self.id,
            "type": self.type.name,
            "source": self.source,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "tags": sorted(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Erstellt Event aus Dictionary"""
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            type=EventType[data.get("type", "CUSTOM")],
            source=data.get("source", ""),
            data=data.get("data"),
            timestamp=(
                datetime.fromisoformat(data["timestamp"])
                if "timestamp" in data
                else datetime.now(timezone.utc)
            ),
            tags=set(data.get("tags", [])),
        )


@dataclass
class EventFilter:
    """Filter fuer Events"""

    event_types: Optional[Set[EventType]] = None
    sources: Optional[Set[str]] = None
    tags: Optional[Set[str]] = None
    custom_filter: Optional[Callable[[Event], bool]] = None

    def matches(self, event: Any) -> bool:
        """Prueft ob Event dem Filter entspricht (Nicht-Events passieren immer)"""
        if not isinstance(event, Event):
            return True

        if self.event_types and event.type not in self.event_types:
            return False

        if self.sources and event.source not in self.sources:
            return False

        if self.tags and not self.tags.intersection(event.tags):
            return False

        if self.custom_filter and not self.custom_filter(event):
            return False

        return True

    @classmethod
    def for_types(cls, *types: EventType) -> "EventFilter":
        """Erstellt Filter fuer bestimmte Eventtypen"""
        return cls(event_types=set(types))

    @classmethod
    def for_source(cls, source: str) -> "EventFilter":
        """Erstellt Filter fuer bestimmte Quelle"""
        return cls(sources={source})


class Subscription(Generic[T]):
    """
    Empfaenger mit begrenztem Puffer.

    Wird der Puffer voll, verwirft ``offer()`` das aelteste Element und
    zaehlt ``dropped`` hoch.
    """

    def __init__(
        self,
        broadcaster: "EventBroadcaster[T]",
        maxsize: int,
        filter: Optional[EventFilter] = None,
    ):
        self.id = generate_id("sub")
        self._broadcaster = broadcaster
        self._buffer: deque = deque(maxlen=maxsize)
        self._cond = threading.Condition()
        self.filter = filter
        self.dropped = 0
        self.closed = False

    def offer(self, item: T) -> None:
        """Legt ein Element ab, ohne je zu blockieren"""
        with self._cond:
            if self.closed:
                return
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped += 1
            self._buffer.append(item)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Wartet auf das naechste Element; None bei Timeout oder nach close()"""
        with self._cond:
            if not self._buffer and not self.closed:
                self._cond.wait(timeout)
            if self._buffer:
                return self._buffer.popleft()
            return None

    def get_nowait(self) -> Optional[T]:
        with self._cond:
            return self._buffer.popleft() if self._buffer else None

    def drain(self) -> List[T]:
        """Entnimmt alle gepufferten Elemente"""
        with self._cond:
            items = list(self._buffer)
            self._buffer.clear()
            return items

    def pending(self) -> int:
        with self._cond:
            return len(self._buffer)

    def close(self) -> None:
        """Meldet den Abonnenten ab und weckt wartende Leser"""
        self._broadcaster.unsubscribe(self)
        with self._cond:
            self.closed = True
            self._cond.notify_all()

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __iter__(self):
        while not self.closed:
            item = self.get(timeout=0.5)
            if item is not None:
                yield item


class EventBroadcaster(Generic[T]):
    """
    Fire-and-forget Fan-out an beliebig viele Abonnenten.

    Die Registry hat ein eigenes Lock; ``publish()`` haelt es nur zum
    Kopieren der Abonnentenliste, damit ein blockierter Leser nie den
    Veroeffentlicher aufhaelt.
    """

    def __init__(self, buffer_size: int = 64, name: str = "events"):
        self.buffer_size = buffer_size
        self.name = name
        self._subscribers: List[Subscription[T]] = []
        self._lock = threading.Lock()
        self.published = 0

    def subscribe(
        self,
        filter: Optional[EventFilter] = None,
        buffer_size: Optional[int] = None,
    ) -> Subscription[T]:
        """Registriert einen neuen Empfaenger"""
        subscription: Subscription[T] = Subscription(
            self, buffer_size or self.buffer_size, filter
        )
        with self._lock:
            self._subscribers.append(subscription)
        logger.debug("Subscriber added", channel=self.name, subscription=subscription.id)
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
                logger.debug(
                    "Subscriber removed",
                    channel=self.name,
                    subscription=subscription.id,
                    dropped=subscription.dropped,
                )

    def publish(self, item: T) -> int:
        """
        Veroeffentlicht ein Element an alle passenden Abonnenten.

        Returns:
            Anzahl der Empfaenger
        """
        with self._lock:
            subscribers = list(self._subscribers)
            self.published += 1

        delivered = 0
        for subscription in subscribers:
            if subscription.filter is None or subscription.filter.matches(item):
                subscription.offer(item)
                delivered += 1
        return delivered

    def close_all(self) -> None:
        """Meldet alle Abonnenten ab (z.B. beim Stoppen)"""
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.close()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


__all__ = [
    "Event",
    "EventType",
    "EventFilter",
    "Subscription",
    "EventBroadcaster",
]
