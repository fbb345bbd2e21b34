"""
Telemetrie-Aggregator
=====================

Fuehrt OS-Metriken und den aktuellen GPU-Status zu einem ``MetricsSnapshot``
zusammen, haengt ihn an die begrenzte Historie und verteilt ihn an alle
verbundenen Abonnenten. Neue Abonnenten erhalten nur spaetere Snapshots.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import psutil

from hecate.core.config import Config, get_config
from hecate.core.logging import get_logger
from hecate.gpu.manager import GpuManager
from hecate.gpu.monitor import AlertEvaluator, system_rules
from hecate.protocols.events import Event, EventBroadcaster, EventType, Subscription
from hecate.telemetry.collector import SystemSampler

logger = get_logger(__name__)

SYSTEM_SCOPE = "system"


@dataclass
class MetricsSnapshot:
    """Ein selbstbeschreibender Telemetrie-Datensatz"""

    TYPE = "metrics_snapshot"
    VERSION = 1

    sequence: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cpu: Dict[str, Any] = field(default_factory=dict)
    memory: Dict[str, Any] = field(default_factory=dict)
    gpu: List[Dict[str, Any]] = field(default_factory=list)
    disks: List[Dict[str, Any]] = field(default_factory=list)
    network: Dict[str, Any] = field(default_factory=dict)
    processes: Dict[str, Any] = field(default_factory=dict)
    alerts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.TYPE,
            "version": self.VERSION,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "cpu": self.cpu,
            "memory": self.memory,
            "gpu": self.gpu,
            "disks": self.disks,
            "network": self.network,
            "processes": self.processes,
            "alerts": self.alerts,
        }


class History:
    """Ringpuffer fester Kapazitaet; aelteste Snapshots fallen heraus"""

    def __init__(self, capacity: int = 60):
        if capacity < 1:
            raise ValueError("History capacity must be >= 1")
        self.capacity = capacity
        self._items: Deque[MetricsSnapshot] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, snapshot: MetricsSnapshot) -> None:
        with self._lock:
            self._items.append(snapshot)

    def list(self, limit: Optional[int] = None) -> List[MetricsSnapshot]:
        """Snapshots in Aufnahmereihenfolge (optional nur die letzten ``limit``)"""
        with self._lock:
            items = list(self._items)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def latest(self) -> Optional[MetricsSnapshot]:
        with self._lock:
            return self._items[-1] if self._items else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class TelemetryAggregator:
    """
    Sammelt Snapshots im Takt des GPU-Pollings.

    Args:
        manager: GPU-Manager als Quelle des GPU-Status (optional)
        sampler: Quelle der OS-Metriken (``sample() -> dict``)
        config: Konfiguration (Default: globale Konfiguration)
    """

    SOURCE = "telemetry"

    def __init__(
        self,
        manager: Optional[GpuManager] = None,
        sampler: Optional[Any] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or get_config()
        self.manager = manager
        self.sampler = sampler or SystemSampler()
        self.history = History(self.config.monitoring.history_capacity)
        self.snapshots: EventBroadcaster[MetricsSnapshot] = EventBroadcaster(
            buffer_size=self.config.monitoring.subscriber_buffer, name="telemetry"
        )
        # System-Alerts laufen ueber denselben Event-Kanal wie die GPU-Alerts
        self.events: EventBroadcaster[Event] = (
            manager.events
            if manager is not None
            else EventBroadcaster(buffer_size=self.config.monitoring.subscriber_buffer)
        )
        self.alerts = AlertEvaluator(system_rules(self.config.alerts))
        self._sequence = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def subscribe(self, buffer_size: Optional[int] = None) -> Subscription[MetricsSnapshot]:
        """Empfaenger fuer kuenftige Snapshots (kein Nachliefern)"""
        return self.snapshots.subscribe(buffer_size=buffer_size)

    @staticmethod
    def _system_values(os_metrics: Dict[str, Any]) -> Dict[str, Optional[float]]:
        disks = os_metrics.get("disks") or []
        return {
            "cpu_percent": (os_metrics.get("cpu") or {}).get("percent"),
            "memory_percent": (os_metrics.get("memory") or {}).get("percent"),
            "disk_percent": max((d.get("percent", 0.0) for d in disks), default=None),
        }

    def collect_once(self) -> MetricsSnapshot:
        """Erzeugt, speichert und veroeffentlicht einen Snapshot"""
        os_metrics = self.sampler.sample()
        gpu = (
            [status.to_dict() for status in self.manager.get_all_status()]
            if self.manager is not None
            else []
        )

        for event_type, alert in self.alerts.evaluate(SYSTEM_SCOPE, self._system_values(os_metrics)):
            logger.warning(
                "System alert",
                transition=event_type.name,
                metric=alert.metric,
                value=alert.observed_value,
            )
            self.events.publish(Event(type=event_type, source=self.SOURCE, data=alert.to_dict()))

        self._sequence += 1
        snapshot = MetricsSnapshot(
            sequence=self._sequence,
            cpu=os_metrics.get("cpu", {}),
            memory=os_metrics.get("memory", {}),
            gpu=gpu,
            disks=os_metrics.get("disks", []),
            network=os_metrics.get("network", {}),
            processes=os_metrics.get("processes", {}),
            alerts=[a.to_dict() for a in self.alerts.active_alerts()],
        )
        self.history.append(snapshot)
        self.snapshots.publish(snapshot)
        return snapshot

    # =========================================================================
    # Hintergrund-Schleife
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="hecate-telemetry", daemon=True
        )
        self._thread.start()
        logger.info("Telemetry started", interval=self.config.monitoring.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Stoppt die Schleife und meldet alle Snapshot-Abonnenten ab"""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        self.snapshots.close_all()
        logger.info("Telemetry stopped", snapshots=self._sequence)

    def _loop(self) -> None:
        interval = self.config.monitoring.interval_seconds
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.collect_once()
            except (psutil.Error, OSError) as e:
                logger.warning("Telemetry sample failed", error=str(e))
            except Exception:
                logger.exception("Telemetry pass failed")
            self._stop_event.wait(max(0.0, interval - (time.monotonic() - started)))
