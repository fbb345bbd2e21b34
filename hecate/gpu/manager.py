"""
GPU Manager
===========

Erkennung, Konfiguration, Monitoring und Load Balancing mehrerer GPUs.

Geraete-Lebenszyklus::

    Discovered -> Monitoring -> (Configuring -> Monitoring) -> Removed

Geraeteliste und Status-Cache schreibt nur die Polling-Schleife bzw.
``detect_gpus()``; Abfragen lesen unter ``_state_lock``. Die Abonnenten-
Registry ist davon unabhaengig, ein haengender Abonnent haelt das Polling
nie auf.
"""

import dataclasses
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional, Tuple

from hecate.core.config import Config, get_config
from hecate.core.exceptions import (
    ApplyFailure,
    BackendUnavailable,
    ConfigurationError,
    ConflictError,
    HecateError,
    LoadBalancerUnavailable,
    NotFoundError,
    OutOfRangeError,
    StaleSampleError,
)
from hecate.core.logging import get_logger
from hecate.gpu.backends import GpuBackend, default_backends
from hecate.gpu.balancer import LoadBalancer, LoadBalancingStrategy
from hecate.gpu.models import (
    DeviceState,
    GpuConfig,
    GpuDevice,
    GpuStatus,
    LoadBalanceAssignment,
    PowerMode,
    device_scope,
)
from hecate.gpu.monitor import AlertEvaluator, AnomalyDetector, device_rules
from hecate.gpu.prediction import PerformancePredictor, Prediction
from hecate.persistence.store import KeyValueStore, get_store
from hecate.protocols.events import Event, EventBroadcaster, EventFilter, EventType, Subscription

logger = get_logger(__name__)

FAN_TEMP_RANGE = (0, 110)
FAN_SPEED_RANGE = (0, 100)
POWER_SAVER_FACTOR = 0.7

BackendErrors = (HecateError, OSError, subprocess.SubprocessError, ValueError, FutureTimeout)


class GpuManager:
    """
    Verwaltet alle erkannten GPUs.

    Args:
        backends: Vendor-Backends in Prioritaetsreihenfolge
        config: Konfiguration (Default: globale Konfiguration)
        store: Persistenz fuer Performance-Samples
    """

    SOURCE = "gpu-manager"

    def __init__(
        self,
        backends: Optional[List[GpuBackend]] = None,
        config: Optional[Config] = None,
        store: Optional[KeyValueStore] = None,
    ):
        self.config = config or get_config()
        self.backends = (
            backends if backends is not None else default_backends(self.config.tuning.sysroot)
        )
        monitoring = self.config.monitoring

        self._devices: Dict[int, GpuDevice] = {}
        self._status: Dict[int, GpuStatus] = {}
        self._configs: Dict[int, GpuConfig] = {}
        self._config_locks: Dict[int, threading.Lock] = {}
        self._next_index = 0
        self._state_lock = threading.RLock()
        self._scan_lock = threading.Lock()

        self.events: EventBroadcaster[Event] = EventBroadcaster(
            buffer_size=monitoring.subscriber_buffer, name="gpu-events"
        )
        self.alerts = AlertEvaluator(device_rules(self.config.alerts))
        self.anomalies = AnomalyDetector(history_size=monitoring.device_history_size)
        self.predictor = PerformancePredictor(store)

        lb = self.config.load_balancing
        self.balancer = LoadBalancer(
            LoadBalancingStrategy(lb.strategy), lb.weights, self._performance_score
        )
        self.load_balancing_enabled = False

        self._workers = 1
        self._executor = ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="hecate-gpu"
        )
        self._in_flight: Dict[int, Future] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        if lb.enabled:
            self.enable_load_balancing()

    # =========================================================================
    # Hilfsfunktionen
    # =========================================================================

    def _publish(self, event_type: EventType, data: Any) -> None:
        self.events.publish(Event(type=event_type, source=self.SOURCE, data=data))

    def _backend_for(self, device: GpuDevice) -> GpuBackend:
        for backend in self.backends:
            if backend.name == device.backend:
                return backend
        raise BackendUnavailable(f"No backend '{device.backend}' for GPU {device.index}")

    def _active_device(self, index: int) -> GpuDevice:
        with self._state_lock:
            device = self._devices.get(index)
            if device is None or device.state == DeviceState.REMOVED:
                raise NotFoundError("gpu", index)
            return device

    def _set_state(self, device: GpuDevice, state: DeviceState) -> None:
        with self._state_lock:
            previous = device.state
            device.state = state
        if previous != state:
            self._publish(
                EventType.DEVICE_STATE_CHANGED,
                {"index": device.index, "from": previous.value, "to": state.value},
            )

    @property
    def monitoring(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # =========================================================================
    # Erkennung
    # =========================================================================

    def detect_gpus(self) -> List[GpuDevice]:
        """
        Erkennt GPUs ueber alle erreichbaren Backends.

        Bekannte Geraete (gleiche UID) behalten ihren Index, verschwundene
        werden ``REMOVED``. Ist kein Backend erreichbar, bleibt die Liste
        leer (Warnung statt Fehler).

        Returns:
            Aktive Geraete, nach Index sortiert
        """
        with self._scan_lock:
            found: List[GpuDevice] = []
            reachable = 0
            for backend in self.backends:
                if not backend.is_available():
                    continue
                try:
                    found.extend(backend.enumerate())
                    reachable += 1
                except BackendUnavailable as e:
                    logger.warning("GPU backend failed", backend=backend.name, **e.to_dict())

            if not reachable:
                error = BackendUnavailable("No GPU backend reachable")
                logger.warning("GPU detection degraded", **error.to_dict())

            events: List[Tuple[EventType, Dict[str, Any]]] = []
            initial_state = DeviceState.MONITORING if self.monitoring else DeviceState.DISCOVERED
            seen = set()
            with self._state_lock:
                by_uid = {d.uid: d for d in self._devices.values()}
                for device in found:
                    if device.uid in seen:
                        continue
                    seen.add(device.uid)
                    known = by_uid.get(device.uid)
                    if known is not None and known.state != DeviceState.REMOVED:
                        known.name = device.name
                        known.vram_total = device.vram_total
                        known.capabilities = device.capabilities
                        known.driver_version = device.driver_version
                        known.handle = device.handle
                        continue

                    if known is not None:
                        device.index = known.index
                    else:
                        device.index = self._next_index
                        self._next_index += 1
                    device.state = initial_state
                    self._devices[device.index] = device
                    events.append((EventType.DEVICE_DISCOVERED, device.to_dict()))

                for device in self._devices.values():
                    if device.state != DeviceState.REMOVED and device.uid not in seen:
                        device.state = DeviceState.REMOVED
                        self._status.pop(device.index, None)
                        events.append((EventType.DEVICE_REMOVED, device.to_dict()))

            for event_type, data in events:
                if event_type == EventType.DEVICE_REMOVED:
                    self.alerts.clear_scope(device_scope(data["index"]))
                    self.anomalies.forget(data["index"])
                    logger.info("GPU removed", index=data["index"], uid=data["uid"])
                else:
                    logger.info("GPU discovered", index=data["index"], name=data["name"])
                self._publish(event_type, data)

            self._ensure_workers(len(self._devices))

        return self.list_devices()

    def rescan(self) -> List[GpuDevice]:
        """Erneute Erkennung; Indizes bekannter Geraete bleiben erhalten"""
        return self.detect_gpus()

    def list_devices(self, include_removed: bool = False) -> List[GpuDevice]:
        with self._state_lock:
            devices = [
                d for d in self._devices.values()
                if include_removed or d.state != DeviceState.REMOVED
            ]
        return sorted(devices, key=lambda d: d.index)

    def get_device(self, index: int) -> GpuDevice:
        return self._active_device(index)

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self, index: int) -> GpuStatus:
        """
        Letztes gecachtes Sample.

        Vor dem ersten Sample wird ein leerer, als ``stale`` markierter
        Status geliefert.

        Raises:
            NotFoundError: Unbekannter oder entfernter Index
        """
        with self._state_lock:
            device = self._active_device(index)
            status = self._status.get(index)
        if status is None:
            return GpuStatus(index=index, memory_total=device.vram_total, stale=True)
        return status

    def device_statuses(self) -> List[Tuple[GpuDevice, GpuStatus]]:
        """Konsistenter Schnappschuss aller aktiven Geraete mit ihrem Status"""
        with self._state_lock:
            pairs = [
                (
                    device,
                    self._status.get(device.index)
                    or GpuStatus(index=device.index, memory_total=device.vram_total, stale=True),
                )
                for device in self._devices.values()
                if device.state != DeviceState.REMOVED
            ]
        return sorted(pairs, key=lambda pair: pair[0].index)

    def get_all_status(self) -> List[GpuStatus]:
        return [status for _, status in self.device_statuses()]

    def get_config(self, index: int) -> Optional[GpuConfig]:
        self._active_device(index)
        return self._configs.get(index)

    def is_healthy(self, index: int) -> bool:
        """Aktuelles Sample und kein kritischer Alert"""
        with self._state_lock:
            status = self._status.get(index)
        if status is None or status.stale:
            return False
        return not self.alerts.has_critical(device_scope(index))

    def active_alerts(self, index: Optional[int] = None) -> List[Dict[str, Any]]:
        scope = device_scope(index) if index is not None else None
        return [a.to_dict() for a in self.alerts.active_alerts(scope)]

    def device_history(self, index: int) -> List[GpuStatus]:
        with self._state_lock:
            if index not in self._devices:
                raise NotFoundError("gpu", index)
        return self.anomalies.history(index)

    # =========================================================================
    # Konfiguration
    # =========================================================================

    def _effective_config(self, device: GpuDevice, requested: GpuConfig) -> GpuConfig:
        """
        Prueft die Anfrage gegen die Geraetegrenzen.

        Nicht unterstuetzte Funktionen werden verworfen, abgeleitete Werte
        (Power Limit aus dem Modus) auf die Grenzen begrenzt.

        Raises:
            OutOfRangeError: Ein explizit angefragter Wert liegt ausserhalb
        """
        caps = device.capabilities
        effective = GpuConfig(
            power_mode=requested.power_mode,
            auto_load_balance=requested.auto_load_balance,
        )
        if not caps.configurable:
            return effective

        power_range = caps.power_limit_range
        if requested.power_limit is not None:
            if power_range is not None:
                if not power_range[0] <= requested.power_limit <= power_range[1]:
                    raise OutOfRangeError("power_limit", requested.power_limit, power_range)
                effective.power_limit = requested.power_limit
        elif power_range is not None:
            effective.power_limit = self._mode_power_limit(device, requested.power_mode)

        if requested.temp_target is not None and caps.temp_target_range is not None:
            low, high = caps.temp_target_range
            if not low <= requested.temp_target <= high:
                raise OutOfRangeError("temp_target", requested.temp_target, caps.temp_target_range)
            effective.temp_target = requested.temp_target

        ranges = {"core": caps.core_offset_range, "memory": caps.memory_offset_range}
        for name, offset in requested.clock_offsets.items():
            bounds = ranges.get(name)
            if bounds is None:
                continue
            if not bounds[0] <= offset <= bounds[1]:
                raise OutOfRangeError(f"clock_offsets.{name}", offset, bounds)
            effective.clock_offsets[name] = offset

        if requested.fan_curve is not None:
            for temp, speed in requested.fan_curve.points:
                if not FAN_TEMP_RANGE[0] <= temp <= FAN_TEMP_RANGE[1]:
                    raise OutOfRangeError("fan_curve.temperature", temp, FAN_TEMP_RANGE)
                if not FAN_SPEED_RANGE[0] <= speed <= FAN_SPEED_RANGE[1]:
                    raise OutOfRangeError("fan_curve.speed", speed, FAN_SPEED_RANGE)
            if caps.fan_control:
                effective.fan_curve = requested.fan_curve

        return effective

    @staticmethod
    def _mode_power_limit(device: GpuDevice, mode: PowerMode) -> Optional[int]:
        caps = device.capabilities
        low, high = caps.power_limit_range
        default = caps.power_limit_default if caps.power_limit_default is not None else high
        if mode == PowerMode.MAX_PERFORMANCE:
            target = high
        elif mode == PowerMode.BALANCED:
            target = default
        elif mode == PowerMode.POWER_SAVER:
            target = max(low, int(round(default * POWER_SAVER_FACTOR)))
        else:
            return None
        return int(max(low, min(high, target)))

    def apply_config(self, index: int, config: GpuConfig) -> GpuConfig:
        """
        Validiert und wendet eine Konfiguration an.

        Returns:
            Die effektive (ggf. begrenzte) Konfiguration

        Raises:
            NotFoundError: Unbekannter Index
            ConflictError: Fuer dieses Geraet laeuft bereits eine Anfrage
            OutOfRangeError: Wert ausserhalb der Grenzen (Geraet unveraendert)
            ApplyFailure: Backend-Fehler (vorherige Konfiguration wiederhergestellt)
        """
        device = self._active_device(index)
        with self._state_lock:
            lock = self._config_locks.setdefault(index, threading.Lock())
        if not lock.acquire(blocking=False):
            raise ConflictError(index)

        try:
            effective = self._effective_config(device, config)
            backend = self._backend_for(device)
            previous_state = device.state
            previous_config = self._configs.get(index)

            self._set_state(device, DeviceState.CONFIGURING)
            try:
                backend.apply_config(device, effective)
            except BackendErrors as e:
                self._restore(backend, device, previous_config)
                logger.error("GPU config failed", index=index, error=str(e))
                if isinstance(e, ApplyFailure):
                    raise
                raise ApplyFailure(
                    f"Applying config to GPU {index} failed: {e}", details={"index": index}
                ) from e
            finally:
                self._set_state(device, previous_state)

            self._configs[index] = effective
        finally:
            lock.release()

        logger.info("GPU config applied", index=index, power_mode=effective.power_mode.value)
        self._publish(EventType.CONFIG_APPLIED, {"index": index, "config": effective.to_dict()})
        return effective

    def _restore(
        self, backend: GpuBackend, device: GpuDevice, previous: Optional[GpuConfig]
    ) -> None:
        try:
            if previous is not None:
                backend.apply_config(device, previous)
            else:
                backend.reset(device)
        except BackendErrors as e:
            logger.error("GPU config restore failed", index=device.index, error=str(e))

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe_events(
        self,
        filter: Optional[EventFilter] = None,
        buffer_size: Optional[int] = None,
    ) -> Subscription[Event]:
        """Best-Effort Empfaenger fuer Alert- und Lebenszyklus-Events"""
        return self.events.subscribe(filter, buffer_size)

    # =========================================================================
    # Monitoring
    # =========================================================================

    def start_monitoring(self) -> None:
        """Startet die Polling-Schleife (Standard 1 Hz)"""
        if self.monitoring:
            return
        if not self._devices:
            self.detect_gpus()

        self._stop_event.clear()
        for device in self.list_devices():
            self._set_state(device, DeviceState.MONITORING)
        self._thread = threading.Thread(
            target=self._monitor_loop, name="hecate-gpu-monitor", daemon=True
        )
        self._thread.start()
        logger.info(
            "GPU monitoring started",
            devices=len(self.list_devices()),
            interval=self.config.monitoring.interval_seconds,
        )
        self._publish(EventType.MONITORING_STARTED, {"devices": len(self.list_devices())})

    def stop_monitoring(self, timeout: float = 5.0) -> None:
        """Stoppt das Polling und meldet alle Abonnenten ab"""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None

        for device in self.list_devices():
            self._set_state(device, DeviceState.DISCOVERED)
        logger.info("GPU monitoring stopped")
        self._publish(EventType.MONITORING_STOPPED, {})
        self.events.close_all()

    def _monitor_loop(self) -> None:
        interval = self.config.monitoring.interval_seconds
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.poll_once()
            except Exception:
                logger.exception("GPU polling pass failed")
            self._stop_event.wait(max(0.0, interval - (time.monotonic() - started)))

    def _ensure_workers(self, count: int) -> None:
        """Ein Worker pro bekanntem Geraet; haengende Lesevorgaenge blockieren nur ihr Geraet"""
        with self._state_lock:
            if count <= self._workers:
                return
            previous = self._executor
            self._workers = count
            self._executor = ThreadPoolExecutor(
                max_workers=self._workers, thread_name_prefix="hecate-gpu"
            )
        previous.shutdown(wait=False)

    def poll_once(self) -> List[GpuStatus]:
        """
        Ein Polling-Durchlauf ueber alle aktiven Geraete.

        Jeder Backend-Aufruf ist durch ``backend_timeout_seconds`` begrenzt;
        ein Timeout markiert nur dieses Geraet als ``stale``. Laeuft der
        Lesevorgang aus einem frueheren Durchlauf noch, wird kein neuer
        gestartet und das Geraet bleibt ``stale``.
        """
        timeout = self.config.monitoring.backend_timeout_seconds
        devices = self.list_devices()
        deadline = time.monotonic() + timeout

        polls: List[Tuple[GpuDevice, Optional[Future], str]] = []
        with self._state_lock:
            for device in devices:
                running = self._in_flight.get(device.index)
                if running is not None and not running.done():
                    polls.append((device, None, "previous read still running"))
                    continue
                try:
                    backend = self._backend_for(device)
                except BackendUnavailable as e:
                    polls.append((device, None, e.message))
                    continue
                future = self._executor.submit(backend.read_status, device)
                self._in_flight[device.index] = future
                polls.append((device, future, ""))

        results: List[GpuStatus] = []
        for device, future, reason in polls:
            if future is None:
                results.append(self._mark_stale(device, reason))
                continue
            try:
                sample = future.result(timeout=max(0.0, deadline - time.monotonic()))
            except FutureTimeout:
                results.append(self._mark_stale(device, "timeout"))
                continue
            except BackendErrors as e:
                results.append(self._mark_stale(device, str(e)))
                continue
            except Exception as e:
                logger.exception(
                    "GPU backend read failed", index=device.index, backend=device.backend
                )
                results.append(self._mark_stale(device, f"{type(e).__name__}: {e}"))
                continue
            results.append(self._record_sample(device, sample))
        return results

    def _mark_stale(self, device: GpuDevice, reason: str) -> GpuStatus:
        error = StaleSampleError(device.index, reason)
        with self._state_lock:
            previous = self._status.get(device.index)
            if previous is not None:
                status = dataclasses.replace(previous, stale=True)
            else:
                status = GpuStatus(index=device.index, memory_total=device.vram_total, stale=True)
            if device.state != DeviceState.REMOVED:
                self._status[device.index] = status
        logger.warning("GPU sample stale", **error.to_dict())
        self._publish(EventType.SAMPLE_STALE, error.details)
        return status

    def _record_sample(self, device: GpuDevice, sample: GpuStatus) -> GpuStatus:
        status = dataclasses.replace(sample, index=device.index, stale=False)
        with self._state_lock:
            if device.state == DeviceState.REMOVED:
                return status
            self._status[device.index] = status

        for event_type, alert in self.alerts.evaluate(device_scope(device.index), status.alert_values()):
            log = logger.info if event_type == EventType.ALERT_CLEARED else logger.warning
            log(
                "GPU alert",
                transition=event_type.name,
                index=device.index,
                metric=alert.metric,
                value=alert.observed_value,
                severity=alert.severity.value,
            )
            self._publish(event_type, alert.to_dict())

        for anomaly in self.anomalies.observe(status):
            logger.warning("GPU anomaly detected", **anomaly.to_dict())
            self._publish(EventType.ANOMALY_DETECTED, anomaly.to_dict())
        return status

    # =========================================================================
    # Load Balancing & Vorhersage
    # =========================================================================

    def enable_load_balancing(
        self,
        strategy: Optional[str] = None,
        weights: Optional[Dict[str, float]] = None,
    ) -> None:
        """Aktiviert Load Balancing, optional mit neuer Strategie/Gewichtung"""
        try:
            selected = LoadBalancingStrategy(strategy or self.balancer.strategy)
        except ValueError as e:
            raise ConfigurationError(f"Unknown load balancing strategy: {strategy}") from e

        self.balancer = LoadBalancer(
            selected,
            weights if weights is not None else self.balancer.weights,
            self._performance_score,
        )
        self.load_balancing_enabled = True
        logger.info("Load balancing enabled", strategy=selected.value)
        self._publish(EventType.LOAD_BALANCING_ENABLED, {"strategy": selected.value})

    def disable_load_balancing(self) -> None:
        self.load_balancing_enabled = False
        logger.info("Load balancing disabled")
        self._publish(EventType.LOAD_BALANCING_DISABLED, {})

    def assign_workload(
        self, workload_type: str, strategy: Optional[str] = None
    ) -> LoadBalanceAssignment:
        """
        Waehlt die GPU fuer einen neuen Workload.

        Kandidaten sind gesunde Geraete, deren Konfiguration Load Balancing
        erlaubt.

        Raises:
            LoadBalancerUnavailable: Deaktiviert oder keine gesunde GPU
        """
        if not self.load_balancing_enabled:
            raise LoadBalancerUnavailable("Load balancing is disabled")
        try:
            selected = LoadBalancingStrategy(strategy) if strategy else None
        except ValueError as e:
            raise ConfigurationError(f"Unknown load balancing strategy: {strategy}") from e

        candidates = []
        for device in self.list_devices():
            config = self._configs.get(device.index)
            if config is not None and not config.auto_load_balance:
                continue
            if not self.is_healthy(device.index):
                continue
            candidates.append((device, self.get_status(device.index)))

        assignment = self.balancer.assign(candidates, workload_type, selected)
        logger.info(
            "Workload assigned",
            workload=workload_type,
            index=assignment.gpu_index,
            confidence=assignment.confidence,
        )
        self._publish(EventType.WORKLOAD_ASSIGNED, assignment.to_dict())
        return assignment

    def _performance_score(self, device: GpuDevice, status: GpuStatus, workload: str) -> float:
        return self.predictor.predict(device.uid, workload, status, device.vram_gb).score

    def predict_performance(self, index: int, workload_type: str) -> Prediction:
        """(score, confidence) aus der Historie; ohne Historie heuristisch"""
        device = self._active_device(index)
        with self._state_lock:
            status = self._status.get(index)
        return self.predictor.predict(device.uid, workload_type, status, device.vram_gb)

    def record_performance(self, index: int, workload_type: str, score: float) -> float:
        device = self._active_device(index)
        return self.predictor.record(device.uid, workload_type, score)

    def shutdown(self) -> None:
        self.stop_monitoring()
        self._executor.shutdown(wait=False, cancel_futures=True)


# Singleton Instance
_manager_instance: Optional[GpuManager] = None


def get_gpu_manager() -> GpuManager:
    """Gibt Singleton-Instanz zurueck"""
    global _manager_instance
    if _manager_instance is None:
        _manager_instance = GpuManager(store=get_store())
    return _manager_instance


def set_gpu_manager(manager: Optional[GpuManager]) -> None:
    global _manager_instance
    _manager_instance = manager
