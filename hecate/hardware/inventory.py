"""
Hardware-Inventar
=================

Datenmodell fuer die erkannten Hardware-Fakten. Alle Felder sind optional:
``None`` bedeutet "unbekannt, konservativen Standard verwenden".
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from hecate.core.utils import canonical_json, hash_content


STORAGE_TYPES = ("nvme", "sata_ssd", "hdd", "unknown")

_NVIDIA_SERIES = re.compile(r"(?:RTX|GTX)\s*(?:PRO\s*)?(\d{2})\d{2}", re.IGNORECASE)
_STORAGE_PATTERN = re.compile(r"^nvme(?:_gen(\d+))?$")


def nvidia_generation(name: str) -> Optional[int]:
    """Leitet die Serie (20/30/40/50) aus dem Modellnamen ab"""
    match = _NVIDIA_SERIES.search(name or "")
    if match:
        return int(match.group(1))
    return None


def parse_storage(value: Optional[str]) -> tuple[str, Optional[int]]:
    """
    Parst Speicher-Kurzformen wie ``nvme_gen4``, ``sata_ssd`` oder ``hdd``.

    Returns:
        (storage_type, storage_gen)
    """
    if not value:
        return "unknown", None
    value = value.strip().lower()
    match = _STORAGE_PATTERN.match(value)
    if match:
        gen = int(match.group(1)) if match.group(1) else None
        return "nvme", gen
    if value in ("sata", "ssd", "sata_ssd"):
        return "sata_ssd", None
    if value == "hdd":
        return "hdd", None
    return "unknown", None


@dataclass
class GpuInfo:
    """Beschleuniger im Inventar"""
    vendor: str = "unknown"
    name: str = ""
    vram_gb: Optional[float] = None
    generation: Optional[int] = None
    driver_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vendor": self.vendor,
            "name": self.name,
            "vram_gb": self.vram_gb,
            "generation": self.generation,
            "driver_version": self.driver_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GpuInfo":
        name = data.get("name", "") or ""
        vendor = (data.get("vendor") or "").lower()
        if not vendor:
            upper = name.upper()
            if "NVIDIA" in upper or "RTX" in upper or "GTX" in upper:
                vendor = "nvidia"
            elif "RADEON" in upper or "AMD" in upper or "INSTINCT" in upper:
                vendor = "amd"
            elif "INTEL" in upper or "ARC" in upper:
                vendor = "intel"
            else:
                vendor = "unknown"
        generation = data.get("generation")
        if generation is None and vendor == "nvidia":
            generation = nvidia_generation(name)
        vram = data.get("vram_gb")
        return cls(
            vendor=vendor,
            name=name,
            vram_gb=float(vram) if vram is not None else None,
            generation=int(generation) if generation is not None else None,
            driver_version=data.get("driver_version"),
        )


@dataclass
class HardwareInventory:
    """Best-Effort Hardware-Inventar einer Maschine"""
    cpu_vendor: Optional[str] = None
    cpu_model: Optional[str] = None
    cpu_generation: Optional[int] = None
    cpu_cores: Optional[int] = None
    cpu_threads: Optional[int] = None
    gpus: List[GpuInfo] = field(default_factory=list)
    ram_gb: Optional[float] = None
    ram_speed: Optional[int] = None
    storage_type: str = "unknown"
    storage_gen: Optional[int] = None
    probe_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def gpu_count(self) -> int:
        return len(self.gpus)

    @property
    def total_vram_gb(self) -> float:
        """Summe des bekannten VRAM (unbekannt zaehlt als 0)"""
        return sum(g.vram_gb or 0.0 for g in self.gpus)

    @property
    def is_nvme(self) -> bool:
        return self.storage_type == "nvme"

    @property
    def throughput_class(self) -> str:
        """Sequenzielle Durchsatzklasse fuer Read-Ahead"""
        if self.storage_type == "nvme":
            gen = self.storage_gen or 3
            if gen >= 5:
                return "nvme_gen5"
            if gen == 4:
                return "nvme_gen4"
            return "nvme_gen3"
        return self.storage_type

    def fingerprint(self) -> str:
        """Stabiler Hash der Hardware-Fakten (ohne Probe-Fehler)"""
        data = self.to_dict()
        data.pop("probe_errors", None)
        return hash_content(canonical_json(data))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_vendor": self.cpu_vendor,
            "cpu_model": self.cpu_model,
            "cpu_generation": self.cpu_generation,
            "cpu_cores": self.cpu_cores,
            "cpu_threads": self.cpu_threads,
            "gpus": [g.to_dict() for g in self.gpus],
            "ram_gb": self.ram_gb,
            "ram_speed": self.ram_speed,
            "storage_type": self.storage_type,
            "storage_gen": self.storage_gen,
            "probe_errors": list(self.probe_errors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HardwareInventory":
        """
        Erstellt ein Inventar aus einem Dictionary.

        Akzeptiert sowohl die Form von ``to_dict()`` als auch die Kurzform
        ``{"gpu": [{"vram_gb": 24}], "storage": "nvme_gen4"}``.
        Unbekannte Schluessel werden ignoriert.
        """
        raw_gpus = data.get("gpus", data.get("gpu", data.get("gpu_list", []))) or []
        if isinstance(raw_gpus, dict):
            raw_gpus = [raw_gpus]

        storage_type = data.get("storage_type")
        storage_gen = data.get("storage_gen")
        if storage_type is None:
            storage_type, parsed_gen = parse_storage(data.get("storage"))
            if storage_gen is None:
                storage_gen = parsed_gen
        if storage_type not in STORAGE_TYPES:
            storage_type = "unknown"

        ram = data.get("ram_gb")
        return cls(
            cpu_vendor=data.get("cpu_vendor"),
            cpu_model=data.get("cpu_model"),
            cpu_generation=data.get("cpu_generation"),
            cpu_cores=data.get("cpu_cores"),
            cpu_threads=data.get("cpu_threads"),
            gpus=[GpuInfo.from_dict(g) for g in raw_gpus],
            ram_gb=float(ram) if ram is not None else None,
            ram_speed=data.get("ram_speed"),
            storage_type=storage_type,
            storage_gen=storage_gen,
            probe_errors=list(data.get("probe_errors", [])),
        )
