"""Hecate Core - Grundlegende Infrastruktur und Utilities."""

from hecate.core.config import Config, get_config, set_config
from hecate.core.exceptions import (
    HecateError,
    ConfigurationError,
    ValidationError,
    ProbeFailure,
    BackendUnavailable,
    NotFoundError,
    OutOfRangeError,
    ApplyFailure,
    StaleSampleError,
    ConflictError,
    LoadBalancerUnavailable,
)
from hecate.core.logging import get_logger, setup_logging

__all__ = [
    "Config",
    "get_config",
    "set_config",
    "HecateError",
    "ConfigurationError",
    "ValidationError",
    "ProbeFailure",
    "BackendUnavailable",
    "NotFoundError",
    "OutOfRangeError",
    "ApplyFailure",
    "StaleSampleError",
    "ConflictError",
    "LoadBalancerUnavailable",
    "get_logger",
    "setup_logging",
]
