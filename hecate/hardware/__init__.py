"""
Hecate Hardware
===============

Hardware-Inventar, Erkennung und Profil-Klassifikation.
"""

from hecate.hardware.inventory import GpuInfo, HardwareInventory
from hecate.hardware.detector import HardwareDetector
from hecate.hardware.profiles import (
    SystemProfile,
    GpuTier,
    classify,
    classify_with_reason,
    gpu_tier,
)

__all__ = [
    "GpuInfo",
    "HardwareInventory",
    "HardwareDetector",
    "SystemProfile",
    "GpuTier",
    "classify",
    "classify_with_reason",
    "gpu_tier",
]
