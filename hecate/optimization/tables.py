"""
Tuning-Tabellen
===============

Versionierte Datentabellen fuer den Tuning-Resolver. Alle Schwellwerte und
Kurven liegen hier, der Resolver selbst enthaelt keine Konstanten.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from hecate.hardware.profiles import SystemProfile


TUNING_TABLE_VERSION = "2024.1"

# (RAM GB, Wert) - stueckweise linear, ausserhalb: Randwert
SWAPPINESS_ANCHORS: Tuple[Tuple[float, float], ...] = (
    (4, 60), (8, 40), (16, 30), (32, 20), (64, 10),
)
SWAPPINESS_BOUNDS = (10, 60)

ZRAM_FRACTION_ANCHORS: Tuple[Tuple[float, float], ...] = (
    (4, 1.0), (8, 0.75), (16, 0.5), (32, 0.25), (64, 0.125), (128, 0.0625),
)
ZRAM_ALGORITHM = "zstd"

DIRTY_RATIO_ANCHORS: Tuple[Tuple[float, float], ...] = (
    (4, 20), (16, 15), (64, 10), (128, 5),
)
DIRTY_BACKGROUND_RATIO_ANCHORS: Tuple[Tuple[float, float], ...] = (
    (4, 10), (16, 5), (64, 3), (128, 2),
)

# RAM-Annahme wenn unbekannt (konservativ: kleinste Stuetzstelle)
UNKNOWN_RAM_GB = 4.0


@dataclass(frozen=True)
class ProfilePolicy:
    """Profilabhaengige Vorgaben"""
    governor: str
    max_cstate: int
    transparent_hugepage: str
    persistence_mode: bool
    gpu_power_mode: str
    mitigations: str


PROFILE_POLICIES: Dict[SystemProfile, ProfilePolicy] = {
    SystemProfile.AI_FLAGSHIP: ProfilePolicy(
        governor="performance",
        max_cstate=1,
        transparent_hugepage="always",
        persistence_mode=True,
        gpu_power_mode="max_performance",
        mitigations="off",
    ),
    SystemProfile.PRO_WORKSTATION: ProfilePolicy(
        governor="performance",
        max_cstate=3,
        transparent_hugepage="always",
        persistence_mode=True,
        gpu_power_mode="max_performance",
        mitigations="auto",
    ),
    SystemProfile.GAMING_ENTHUSIAST: ProfilePolicy(
        governor="performance",
        max_cstate=1,
        transparent_hugepage="madvise",
        persistence_mode=False,
        gpu_power_mode="balanced",
        mitigations="off",
    ),
    SystemProfile.CONTENT_CREATOR: ProfilePolicy(
        governor="schedutil",
        max_cstate=3,
        transparent_hugepage="madvise",
        persistence_mode=False,
        gpu_power_mode="balanced",
        mitigations="auto",
    ),
    SystemProfile.DEVELOPER: ProfilePolicy(
        governor="schedutil",
        max_cstate=9,
        transparent_hugepage="madvise",
        persistence_mode=False,
        gpu_power_mode="balanced",
        mitigations="auto",
    ),
    SystemProfile.STANDARD: ProfilePolicy(
        governor="schedutil",
        max_cstate=9,
        transparent_hugepage="madvise",
        persistence_mode=False,
        gpu_power_mode="power_saver",
        mitigations="auto",
    ),
}

# NVIDIA-Serie -> Treiber-Branch
NVIDIA_DRIVER_MATRIX: Dict[int, str] = {
    50: "nvidia-570",
    40: "nvidia-550",
    30: "nvidia-550",
    20: "nvidia-535",
}
NVIDIA_DRIVER_DEFAULT = "nvidia-535"
INTEL_XE_MIN_GENERATION = 12

READ_AHEAD_KB: Dict[str, int] = {
    "hdd": 128,
    "sata_ssd": 256,
    "nvme_gen3": 512,
    "nvme_gen4": 1024,
    "nvme_gen5": 2048,
    "unknown": 128,
}
NVME_NO_SCHEDULER_MIN_GEN = 4

MITIGATION_VALUES = ("auto", "off", "auto,nosmt")


def driver_for(vendor: Optional[str], generation: Optional[int]) -> str:
    """Waehlt den Treiber aus der (Vendor, Generation)-Matrix"""
    if vendor == "nvidia":
        if generation is not None and generation > max(NVIDIA_DRIVER_MATRIX):
            return NVIDIA_DRIVER_MATRIX[max(NVIDIA_DRIVER_MATRIX)]
        return NVIDIA_DRIVER_MATRIX.get(generation, NVIDIA_DRIVER_DEFAULT)
    if vendor == "amd":
        return "amdgpu"
    if vendor == "intel":
        if generation is not None and generation >= INTEL_XE_MIN_GENERATION:
            return "xe"
        return "i915"
    if vendor is None:
        return "none"
    return "unknown"
