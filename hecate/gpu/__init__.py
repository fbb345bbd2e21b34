"""Hecate GPU - Erkennung, Konfiguration, Monitoring und Load Balancing."""

from hecate.gpu.models import (
    PowerMode,
    DeviceState,
    AlertKind,
    AlertSeverity,
    FanCurve,
    GpuConfig,
    GpuCapabilities,
    GpuDevice,
    GpuStatus,
    Alert,
    LoadBalanceAssignment,
    efficiency_score,
    gpu_summary,
)
from hecate.gpu.backends import (
    GpuBackend,
    NvidiaBackend,
    AmdBackend,
    UnknownBackend,
    default_backends,
)
from hecate.gpu.monitor import AlertRule, AlertEvaluator, Anomaly, AnomalyDetector
from hecate.gpu.balancer import LoadBalancer, LoadBalancingStrategy
from hecate.gpu.prediction import PerformancePredictor, Prediction
from hecate.gpu.manager import GpuManager, get_gpu_manager, set_gpu_manager

__all__ = [
    "PowerMode",
    "DeviceState",
    "AlertKind",
    "AlertSeverity",
    "FanCurve",
    "GpuConfig",
    "GpuCapabilities",
    "GpuDevice",
    "GpuStatus",
    "Alert",
    "LoadBalanceAssignment",
    "efficiency_score",
    "gpu_summary",
    "GpuBackend",
    "NvidiaBackend",
    "AmdBackend",
    "UnknownBackend",
    "default_backends",
    "AlertRule",
    "AlertEvaluator",
    "Anomaly",
    "AnomalyDetector",
    "LoadBalancer",
    "LoadBalancingStrategy",
    "PerformancePredictor",
    "Prediction",
    "GpuManager",
    "get_gpu_manager",
    "set_gpu_manager",
]
