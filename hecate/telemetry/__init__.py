"""Hecate Telemetry - OS-Sampling, Snapshots und Historie."""

from hecate.telemetry.collector import SystemSampler
from hecate.telemetry.aggregator import History, MetricsSnapshot, TelemetryAggregator

__all__ = ["SystemSampler", "History", "MetricsSnapshot", "TelemetryAggregator"]
