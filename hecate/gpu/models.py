"""
GPU-Datenmodelle
================

Geraete, Status-Samples, Konfigurationen, Alerts und Zuweisungen.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from hecate.core.utils import format_bytes, generate_id, interpolate


class PowerMode(str, Enum):
    MAX_PERFORMANCE = "max_performance"
    BALANCED = "balanced"
    POWER_SAVER = "power_saver"
    CUSTOM = "custom"
    AUTO = "auto"


class DeviceState(str, Enum):
    """Discovered -> Monitoring <-> Configuring -> Removed"""
    DISCOVERED = "discovered"
    MONITORING = "monitoring"
    CONFIGURING = "configuring"
    REMOVED = "removed"


class AlertKind(str, Enum):
    THRESHOLD = "threshold"
    ANOMALY = "anomaly"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class FanCurve:
    """Lueftersteuerung als (Temperatur C, Drehzahl %)-Stuetzstellen"""
    points: List[Tuple[int, int]] = field(default_factory=list)

    @classmethod
    def aggressive(cls) -> "FanCurve":
        return cls(points=[(30, 20), (50, 40), (70, 60), (85, 100)])

    @classmethod
    def quiet(cls) -> "FanCurve":
        return cls(points=[(40, 0), (60, 30), (80, 70), (90, 100)])

    def fan_speed_for(self, temperature: float) -> int:
        """Linear interpolierte Drehzahl; 50% ohne Stuetzstellen"""
        if not self.points:
            return 50
        return int(interpolate(temperature, sorted(self.points)))

    def to_dict(self) -> Dict[str, Any]:
        return {"points": [list(p) for p in self.points]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FanCurve":
        return cls(points=[(int(t), int(s)) for t, s in data.get("points", [])])


@dataclass
class GpuConfig:
    """Gewuenschte (oder effektive) Konfiguration eines Geraets"""
    power_mode: PowerMode = PowerMode.BALANCED
    power_limit: Optional[int] = None
    temp_target: Optional[int] = None
    fan_curve: Optional[FanCurve] = None
    clock_offsets: Dict[str, int] = field(default_factory=dict)
    auto_load_balance: bool = True

    @classmethod
    def balanced(cls) -> "GpuConfig":
        return cls(power_mode=PowerMode.BALANCED, temp_target=83, auto_load_balance=True)

    @classmethod
    def max_performance(cls) -> "GpuConfig":
        return cls(
            power_mode=PowerMode.MAX_PERFORMANCE,
            temp_target=90,
            clock_offsets={"core": 100, "memory": 500},
            auto_load_balance=True,
        )

    @classmethod
    def power_saver(cls) -> "GpuConfig":
        return cls(
            power_mode=PowerMode.POWER_SAVER,
            temp_target=70,
            clock_offsets={"core": -100, "memory": -200},
            auto_load_balance=False,
        )

    @classmethod
    def preset(cls, power_mode: str) -> "GpuConfig":
        presets = {
            PowerMode.MAX_PERFORMANCE: cls.max_performance,
            PowerMode.BALANCED: cls.balanced,
            PowerMode.POWER_SAVER: cls.power_saver,
        }
        factory = presets.get(PowerMode(power_mode))
        return factory() if factory else cls(power_mode=PowerMode(power_mode))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "power_mode": self.power_mode.value,
            "power_limit": self.power_limit,
            "temp_target": self.temp_target,
            "fan_curve": self.fan_curve.to_dict() if self.fan_curve else None,
            "clock_offsets": dict(self.clock_offsets),
            "auto_load_balance": self.auto_load_balance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GpuConfig":
        """Unbekannte Schluessel werden ignoriert, fehlende fallen auf Defaults"""
        fan_curve = data.get("fan_curve")
        return cls(
            power_mode=PowerMode(data.get("power_mode", PowerMode.BALANCED.value)),
            power_limit=data.get("power_limit"),
            temp_target=data.get("temp_target"),
            fan_curve=FanCurve.from_dict(fan_curve) if fan_curve else None,
            clock_offsets={k: int(v) for k, v in (data.get("clock_offsets") or {}).items()},
            auto_load_balance=bool(data.get("auto_load_balance", True)),
        )


@dataclass
class GpuCapabilities:
    """Vom Geraet gemeldete Grenzen und unterstuetzte Funktionen"""
    power_limit_min: Optional[int] = None
    power_limit_max: Optional[int] = None
    power_limit_default: Optional[int] = None
    temp_target_range: Optional[Tuple[int, int]] = None
    core_offset_range: Optional[Tuple[int, int]] = None
    memory_offset_range: Optional[Tuple[int, int]] = None
    fan_control: bool = False
    configurable: bool = True

    @property
    def power_limit_range(self) -> Optional[Tuple[int, int]]:
        if self.power_limit_min is None or self.power_limit_max is None:
            return None
        return (self.power_limit_min, self.power_limit_max)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "power_limit_min": self.power_limit_min,
            "power_limit_max": self.power_limit_max,
            "power_limit_default": self.power_limit_default,
            "temp_target_range": self.temp_target_range,
            "core_offset_range": self.core_offset_range,
            "memory_offset_range": self.memory_offset_range,
            "fan_control": self.fan_control,
            "configurable": self.configurable,
        }


@dataclass
class GpuDevice:
    """Ein verwalteter Beschleuniger; ``index`` bleibt fuer die Prozesslaufzeit stabil"""
    index: int
    uid: str
    vendor: str
    name: str
    vram_total: int = 0
    capabilities: GpuCapabilities = field(default_factory=GpuCapabilities)
    driver_version: Optional[str] = None
    backend: str = ""
    handle: Any = None
    state: DeviceState = DeviceState.DISCOVERED

    @property
    def vram_gb(self) -> float:
        return self.vram_total / (1024 ** 3)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "uid": self.uid,
            "vendor": self.vendor,
            "name": self.name,
            "vram_total": self.vram_total,
            "capabilities": self.capabilities.to_dict(),
            "driver_version": self.driver_version,
            "backend": self.backend,
            "state": self.state.value,
        }


@dataclass
class GpuStatus:
    """Ein Monitoring-Sample; ``stale`` markiert verpasste Zyklen"""
    index: int
    temperature: Optional[float] = None
    power_draw: Optional[float] = None
    power_limit: Optional[float] = None
    utilization: Optional[float] = None
    memory_used: int = 0
    memory_total: int = 0
    clock_graphics: Optional[int] = None
    clock_memory: Optional[int] = None
    fan_speed: Optional[int] = None
    sample_timestamp: float = field(default_factory=time.time)
    stale: bool = False

    @property
    def memory_percent(self) -> Optional[float]:
        if not self.memory_total:
            return None
        return self.memory_used / self.memory_total * 100.0

    @property
    def power_percent(self) -> Optional[float]:
        if self.power_draw is None or not self.power_limit:
            return None
        return self.power_draw / self.power_limit * 100.0

    def alert_values(self) -> Dict[str, Optional[float]]:
        """Metriken, die gegen Alert-Schwellen geprueft werden"""
        return {
            "temperature": self.temperature,
            "vram_percent": self.memory_percent,
            "power_percent": self.power_percent,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "temperature": self.temperature,
            "power_draw": self.power_draw,
            "power_limit": self.power_limit,
            "utilization": self.utilization,
            "memory_used": self.memory_used,
            "memory_total": self.memory_total,
            "memory_percent": self.memory_percent,
            "clocks": {"graphics": self.clock_graphics, "memory": self.clock_memory},
            "fan_speed": self.fan_speed,
            "sample_timestamp": self.sample_timestamp,
            "stale": self.stale,
        }


@dataclass
class Alert:
    kind: AlertKind
    scope: str
    metric: str
    threshold: float
    observed_value: float
    severity: AlertSeverity = AlertSeverity.WARNING
    raised_at: float = field(default_factory=time.time)
    cleared_at: Optional[float] = None
    id: str = field(default_factory=lambda: generate_id("alert"))

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.kind.value, self.scope, self.metric)

    @property
    def active(self) -> bool:
        return self.cleared_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "scope": self.scope,
            "metric": self.metric,
            "threshold": self.threshold,
            "observed_value": self.observed_value,
            "severity": self.severity.value,
            "raised_at": self.raised_at,
            "cleared_at": self.cleared_at,
        }


@dataclass
class LoadBalanceAssignment:
    gpu_index: int
    confidence: float
    reason: str
    workload_type: str
    strategy: str = ""
    scores: Dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gpu_index": self.gpu_index,
            "confidence": self.confidence,
            "reason": self.reason,
            "workload_type": self.workload_type,
            "strategy": self.strategy,
            "scores": {str(k): v for k, v in self.scores.items()},
        }


def device_scope(index: int) -> str:
    return f"gpu:{index}"


def efficiency_score(status: GpuStatus) -> float:
    """Mittel aus Leistungs-, Thermik- und Auslastungswert (0.0 - 1.0)"""
    if status.power_draw is not None and status.power_limit:
        power = 1.0 - min(1.0, status.power_draw / status.power_limit)
    else:
        power = 0.5
    thermal = 1.0 - min(1.0, (status.temperature or 0.0) / 90.0)
    utilization = min(1.0, (status.utilization or 0.0) / 100.0)
    return max(0.0, min(1.0, (power + thermal + utilization) / 3.0))


def gpu_summary(device: GpuDevice, status: GpuStatus) -> str:
    """Einzeilige Zusammenfassung fuer CLI-Ausgaben"""
    def fmt(value: Optional[float], unit: str) -> str:
        return f"{value:.0f}{unit}" if value is not None else "?"

    vram_percent = status.memory_percent
    return (
        f"{device.name}: {fmt(status.temperature, 'C')}, "
        f"{fmt(status.power_draw, 'W')}/{fmt(status.power_limit, 'W')}, "
        f"GPU: {fmt(status.utilization, '%')}, "
        f"VRAM: {format_bytes(status.memory_used)}/{format_bytes(status.memory_total)} "
        f"({fmt(vram_percent, '%')})"
        + (" [stale]" if status.stale else "")
    )
