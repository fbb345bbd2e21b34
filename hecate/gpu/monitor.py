"""
Alert- und Anomalie-Auswertung
==============================

``AlertEvaluator``: Schwellwert-Alerts mit Hysterese. Ein Alert wird bei
``value >= threshold`` ausgeloest und erst bei ``value < threshold - margin``
wieder geloescht. Solange er aktiv ist, feuert derselbe
(kind, scope, metric)-Schluessel nicht erneut.

``AnomalyDetector``: rollierende Historie pro Geraet mit Spike-, Drop-,
Stuck- und z-Score-Erkennung. Jede Anomalie wird einmal pro Auftreten
gemeldet.
"""

import statistics
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Set, Tuple

from hecate.core.config import AlertConfig
from hecate.gpu.models import Alert, AlertKind, AlertSeverity, GpuStatus
from hecate.protocols.events import EventType


@dataclass(frozen=True)
class AlertRule:
    metric: str
    threshold: float
    margin: float
    critical: Optional[float] = None


def device_rules(config: AlertConfig) -> Dict[str, AlertRule]:
    """Alert-Regeln fuer GPU-Metriken aus der Konfiguration"""
    return {
        "temperature": AlertRule(
            "temperature",
            config.temperature_threshold,
            config.temperature_margin,
            config.temperature_critical,
        ),
        "vram_percent": AlertRule(
            "vram_percent",
            config.vram_percent_threshold,
            config.vram_margin,
            config.vram_percent_critical,
        ),
        "power_percent": AlertRule(
            "power_percent",
            config.power_percent_threshold,
            config.power_margin,
            config.power_percent_critical,
        ),
    }


def system_rules(config: AlertConfig) -> Dict[str, AlertRule]:
    """Alert-Regeln fuer System-Metriken (CPU, Speicher, Disk)"""
    return {
        "cpu_percent": AlertRule("cpu_percent", config.cpu_percent_threshold, config.system_margin),
        "memory_percent": AlertRule(
            "memory_percent", config.memory_percent_threshold, config.system_margin
        ),
        "disk_percent": AlertRule(
            "disk_percent", config.disk_percent_threshold, config.system_margin
        ),
    }


AlertTransition = Tuple[EventType, Alert]


class AlertEvaluator:
    """Hysterese-Auswertung; Schreiber ist die Polling-Schleife, Leser beliebig"""

    def __init__(self, rules: Dict[str, AlertRule]):
        self.rules = rules
        self._active: Dict[Tuple[str, str, str], Alert] = {}
        self._lock = threading.Lock()

    def evaluate(self, scope: str, values: Dict[str, Optional[float]]) -> List[AlertTransition]:
        """
        Prueft alle Metriken eines Scopes.

        Returns:
            Zustandsuebergaenge in Auswertungsreihenfolge
        """
        transitions: List[AlertTransition] = []
        now = time.time()
        with self._lock:
            for metric, value in values.items():
                rule = self.rules.get(metric)
                if rule is None or value is None:
                    continue
                key = (AlertKind.THRESHOLD.value, scope, metric)
                active = self._active.get(key)

                if active is None:
                    if value >= rule.threshold:
                        severity = (
                            AlertSeverity.CRITICAL
                            if rule.critical is not None and value >= rule.critical
                            else AlertSeverity.WARNING
                        )
                        alert = Alert(
                            kind=AlertKind.THRESHOLD,
                            scope=scope,
                            metric=metric,
                            threshold=rule.threshold,
                            observed_value=value,
                            severity=severity,
                            raised_at=now,
                        )
                        self._active[key] = alert
                        transitions.append((EventType.ALERT_RAISED, alert))
                    continue

                if value < rule.threshold - rule.margin:
                    active.observed_value = value
                    active.cleared_at = now
                    del self._active[key]
                    transitions.append((EventType.ALERT_CLEARED, active))
                elif (
                    active.severity == AlertSeverity.WARNING
                    and rule.critical is not None
                    and value >= rule.critical
                ):
                    active.severity = AlertSeverity.CRITICAL
                    active.observed_value = value
                    transitions.append((EventType.ALERT_ESCALATED, active))
                else:
                    active.observed_value = value
        return transitions

    def active_alerts(self, scope: Optional[str] = None) -> List[Alert]:
        with self._lock:
            return [
                a for a in self._active.values()
                if scope is None or a.scope == scope
            ]

    def has_critical(self, scope: str) -> bool:
        with self._lock:
            return any(
                a.scope == scope and a.severity == AlertSeverity.CRITICAL
                for a in self._active.values()
            )

    def clear_scope(self, scope: str) -> List[Alert]:
        """Entfernt alle aktiven Alerts eines Scopes (z.B. entferntes Geraet)"""
        now = time.time()
        with self._lock:
            keys = [k for k, a in self._active.items() if a.scope == scope]
            cleared = [self._active.pop(k) for k in keys]
        for alert in cleared:
            alert.cleared_at = now
        return cleared


@dataclass
class Anomaly:
    index: int
    kind: str
    metric: str
    value: float
    baseline: float
    detail: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "index": self.index,
            "kind": self.kind,
            "metric": self.metric,
            "value": self.value,
            "baseline": self.baseline,
            "detail": self.detail,
        }


class AnomalyDetector:
    """Statistische Erkennung gegen die rollierende Historie eines Geraets"""

    SPIKE_DELTA = 20.0
    SPIKE_MIN_TEMPERATURE = 85.0
    POWER_DROP_RATIO = 0.5
    POWER_DROP_MIN_BASELINE = 100.0
    RECENT_WINDOW = 5
    STUCK_SAMPLES = 10
    DEVIATION_METRICS = ("temperature", "power_draw", "utilization")

    def __init__(self, history_size: int = 300, z_threshold: float = 3.0, min_samples: int = 10):
        self.history_size = history_size
        self.z_threshold = z_threshold
        self.min_samples = min_samples
        self._history: Dict[int, Deque[GpuStatus]] = {}
        self._active: Set[Tuple[int, str, str]] = set()
        self._lock = threading.Lock()

    def history(self, index: int) -> List[GpuStatus]:
        with self._lock:
            return list(self._history.get(index, ()))

    def forget(self, index: int) -> None:
        with self._lock:
            self._history.pop(index, None)
            self._active = {k for k in self._active if k[0] != index}

    def observe(self, status: GpuStatus) -> List[Anomaly]:
        """
        Prueft ein Sample gegen die Historie und haengt es danach an.

        Returns:
            Neu aufgetretene Anomalien (einmal pro Auftreten)
        """
        if status.stale:
            return []
        with self._lock:
            history = self._history.setdefault(status.index, deque(maxlen=self.history_size))
            previous = list(history)
            history.append(status)

            found = self._detect(status, previous)
            current_keys = {(status.index, a.kind, a.metric) for a in found}
            onsets = [
                a for a in found
                if (status.index, a.kind, a.metric) not in self._active
            ]
            # Abgeklungene Anomalien duerfen erneut gemeldet werden
            self._active = {k for k in self._active if k[0] != status.index} | current_keys
        return onsets

    def _detect(self, status: GpuStatus, previous: List[GpuStatus]) -> List[Anomaly]:
        found: List[Anomaly] = []
        if len(previous) < self.min_samples:
            return found

        # Temperatur-Spike
        temps = [s.temperature for s in previous if s.temperature is not None]
        if status.temperature is not None and temps:
            avg = statistics.fmean(temps)
            if status.temperature > avg + self.SPIKE_DELTA and status.temperature > self.SPIKE_MIN_TEMPERATURE:
                found.append(Anomaly(
                    status.index, "temperature_spike", "temperature",
                    status.temperature, avg, f"> {avg:.1f} + {self.SPIKE_DELTA}",
                ))

        # Leistungseinbruch
        window = previous[-self.RECENT_WINDOW + 1:] + [status] if self.RECENT_WINDOW > 1 else [status]
        baseline_samples = previous[:-self.RECENT_WINDOW + 1] or previous
        baseline_power = [s.power_draw for s in baseline_samples if s.power_draw is not None]
        recent_power = [s.power_draw for s in window if s.power_draw is not None]
        if baseline_power and recent_power:
            baseline = statistics.fmean(baseline_power)
            recent = statistics.fmean(recent_power)
            if baseline > self.POWER_DROP_MIN_BASELINE and recent < baseline * self.POWER_DROP_RATIO:
                found.append(Anomaly(
                    status.index, "power_drop", "power_draw", recent, baseline,
                    f"recent average below {self.POWER_DROP_RATIO:.0%} of baseline",
                ))

        # Auslastung haengt bei 0 oder 100 %
        recent_util = [s.utilization for s in previous[-(self.STUCK_SAMPLES - 1):]] + [status.utilization]
        if (
            len(recent_util) >= self.STUCK_SAMPLES
            and status.utilization in (0.0, 100.0)
            and all(u == status.utilization for u in recent_util)
        ):
            found.append(Anomaly(
                status.index, "utilization_stuck", "utilization",
                status.utilization, status.utilization,
                f"{self.STUCK_SAMPLES} identical samples",
            ))

        # Allgemeine Abweichung (z-Score)
        for metric in self.DEVIATION_METRICS:
            value = getattr(status, metric)
            series = [getattr(s, metric) for s in previous if getattr(s, metric) is not None]
            if value is None or len(series) < self.min_samples:
                continue
            mean = statistics.fmean(series)
            std = statistics.pstdev(series)
            if std == 0:
                continue
            z = abs(value - mean) / std
            if z >= self.z_threshold:
                found.append(Anomaly(
                    status.index, "baseline_deviation", metric, value, mean, f"z={z:.2f}",
                ))
        return found
