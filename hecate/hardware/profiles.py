"""
Profil-Klassifikation
=====================

Reine Funktion HardwareInventory -> SystemProfile. Die Regeln liegen als
versionierte Tabelle vor; die Reihenfolge der Zeilen ist die Tie-Break-Regel
(erste passende Regel gewinnt, ``STANDARD`` faengt alles auf).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from hecate.core.exceptions import NotFoundError
from hecate.hardware.inventory import GpuInfo, HardwareInventory


CLASSIFIER_VERSION = "2024.1"


class SystemProfile(str, Enum):
    """Grobe Einstufung der Maschine"""
    AI_FLAGSHIP = "AIFlagship"
    PRO_WORKSTATION = "ProWorkstation"
    GAMING_ENTHUSIAST = "GamingEnthusiast"
    CONTENT_CREATOR = "ContentCreator"
    DEVELOPER = "Developer"
    STANDARD = "Standard"

    @classmethod
    def parse(cls, value: str) -> "SystemProfile":
        """Akzeptiert Profilnamen und Kurzformen (ai, pro, gaming, ...)"""
        key = (value or "").strip().lower()
        for profile in cls:
            if key in (profile.value.lower(), profile.name.lower()):
                return profile
        if key in PROFILE_ALIASES:
            return PROFILE_ALIASES[key]
        raise NotFoundError("profile", value)


PROFILE_ALIASES: Dict[str, SystemProfile] = {
    "ai": SystemProfile.AI_FLAGSHIP,
    "pro": SystemProfile.PRO_WORKSTATION,
    "gaming": SystemProfile.GAMING_ENTHUSIAST,
    "creator": SystemProfile.CONTENT_CREATOR,
    "dev": SystemProfile.DEVELOPER,
    "standard": SystemProfile.STANDARD,
}


class GpuTier(str, Enum):
    HIGH = "high"
    CONSUMER = "consumer"
    ENTRY = "entry"


HIGH_TIER_MARKERS = (
    "4090", "5090", "A6000", "RTX 6000", "A100", "H100", "L40",
    "MI250", "MI300", "W7900",
)
CONSUMER_MARKERS = ("GEFORCE", "RTX", "GTX", "RADEON", "RX ", "ARC")

HIGH_TIER_VRAM_GB = 20.0
CONSUMER_TIER_VRAM_GB = 6.0


def gpu_tier(gpu: GpuInfo) -> GpuTier:
    """Stuft einen Beschleuniger ein (unbekannter VRAM zaehlt als Entry)"""
    name = (gpu.name or "").upper()
    vram = gpu.vram_gb or 0.0
    if vram >= HIGH_TIER_VRAM_GB or any(m in name for m in HIGH_TIER_MARKERS):
        return GpuTier.HIGH
    if vram >= CONSUMER_TIER_VRAM_GB or any(m in name for m in CONSUMER_MARKERS):
        return GpuTier.CONSUMER
    return GpuTier.ENTRY


@dataclass(frozen=True)
class ProfileRule:
    """
    Eine Zeile der Klassifikationstabelle.

    Alle gesetzten Bedingungen muessen erfuellt sein. ``None`` heisst
    "keine Bedingung".
    """
    profile: SystemProfile
    reason: str
    min_gpus: Optional[int] = None
    min_total_vram_gb: Optional[float] = None
    gpu_tier_at_least: Optional[GpuTier] = None
    min_any_vram_gb: Optional[float] = None
    min_ram_gb: Optional[float] = None
    max_ram_gb: Optional[float] = None
    min_nvme_gen: Optional[int] = None
    min_cores: Optional[int] = None

    def matches(self, inventory: HardwareInventory) -> bool:
        # Unbekannte Felder werden als 0 / kein NVMe gewertet
        ram = inventory.ram_gb or 0.0
        cores = inventory.cpu_cores or 0

        if self.min_gpus is not None and inventory.gpu_count < self.min_gpus:
            return False
        if self.min_total_vram_gb is not None and inventory.total_vram_gb < self.min_total_vram_gb:
            return False
        if self.gpu_tier_at_least is not None:
            allowed = _TIERS_AT_LEAST[self.gpu_tier_at_least]
            if not any(gpu_tier(g) in allowed for g in inventory.gpus):
                return False
        if self.min_any_vram_gb is not None:
            if not any((g.vram_gb or 0.0) >= self.min_any_vram_gb for g in inventory.gpus):
                return False
        if self.min_ram_gb is not None and ram < self.min_ram_gb:
            return False
        if self.max_ram_gb is not None and ram >= self.max_ram_gb:
            return False
        if self.min_nvme_gen is not None:
            if not inventory.is_nvme or (inventory.storage_gen or 0) < self.min_nvme_gen:
                return False
        if self.min_cores is not None and cores < self.min_cores:
            return False
        return True


_TIERS_AT_LEAST = {
    GpuTier.HIGH: (GpuTier.HIGH,),
    GpuTier.CONSUMER: (GpuTier.HIGH, GpuTier.CONSUMER),
    GpuTier.ENTRY: (GpuTier.HIGH, GpuTier.CONSUMER, GpuTier.ENTRY),
}


# Reihenfolge = Prioritaet
PROFILE_RULES: Tuple[ProfileRule, ...] = (
    ProfileRule(
        SystemProfile.AI_FLAGSHIP,
        "multi-GPU with >= 40 GB combined VRAM",
        min_gpus=2,
        min_total_vram_gb=40.0,
    ),
    ProfileRule(
        SystemProfile.PRO_WORKSTATION,
        "high-tier GPU with >= 64 GB RAM",
        min_gpus=1,
        gpu_tier_at_least=GpuTier.HIGH,
        min_ram_gb=64.0,
    ),
    ProfileRule(
        SystemProfile.GAMING_ENTHUSIAST,
        "consumer-tier GPU with 16-64 GB RAM",
        min_gpus=1,
        gpu_tier_at_least=GpuTier.CONSUMER,
        min_ram_gb=16.0,
        max_ram_gb=64.0,
    ),
    ProfileRule(
        SystemProfile.CONTENT_CREATOR,
        "GPU with >= 12 GB VRAM on NVMe gen4+",
        min_any_vram_gb=12.0,
        min_nvme_gen=4,
    ),
    ProfileRule(
        SystemProfile.DEVELOPER,
        ">= 8 cores with >= 32 GB RAM",
        min_cores=8,
        min_ram_gb=32.0,
    ),
    ProfileRule(SystemProfile.STANDARD, "default"),
)


def classify_with_reason(inventory: HardwareInventory) -> Tuple[SystemProfile, str]:
    """Klassifiziert und liefert die Begruendung der passenden Regel"""
    for rule in PROFILE_RULES:
        if rule.matches(inventory):
            return rule.profile, rule.reason
    return SystemProfile.STANDARD, "default"


def classify(inventory: HardwareInventory) -> SystemProfile:
    """
    Ordnet dem Inventar genau ein SystemProfile zu.

    Deterministisch und total: gleiche Eingabe liefert dasselbe Profil,
    ``STANDARD`` ist der Auffangwert.
    """
    return classify_with_reason(inventory)[0]
