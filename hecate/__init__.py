"""
Hecate - Hardware-adaptive Optimierung und Multi-GPU-Verwaltung

Hauptmodule:
- core: Konfiguration, Logging, Exceptions, Utilities
- hardware: Hardware-Inventar, Erkennung und Profil-Klassifikation
- optimization: Tuning-Tabellen, Resolver, Applier mit Rollback
- gpu: GPU-Backends, Monitoring, Alerts, Load Balancing, Vorhersage
- telemetry: OS-Sampling, Snapshots und Historie
- protocols: Events und Pub/Sub mit begrenzten Puffern
- persistence: Key-Value-Store für Tuning-Snapshots und Performance-Samples
- api: REST API und WebSocket-Streams
- cli: Kommandozeile
"""

__version__ = "0.3.0"
__author__ = "HecateOS Team"

# Core
from hecate.core.config import Config, get_config
from hecate.core.logging import get_logger

# Hardware
from hecate.hardware.detector import HardwareDetector
from hecate.hardware.inventory import HardwareInventory
from hecate.hardware.profiles import SystemProfile, classify

# Optimization
from hecate.optimization.resolver import resolve
from hecate.optimization.applier import OptimizationApplier
from hecate.optimization.pipeline import OptimizationContext, run_optimization

# GPU
from hecate.gpu.manager import GpuManager, get_gpu_manager

# Telemetry
from hecate.telemetry.aggregator import TelemetryAggregator

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "get_logger",
    "HardwareDetector",
    "HardwareInventory",
    "SystemProfile",
    "classify",
    "resolve",
    "OptimizationApplier",
    "OptimizationContext",
    "run_optimization",
    "GpuManager",
    "get_gpu_manager",
    "TelemetryAggregator",
]
