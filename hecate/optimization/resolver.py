"""
Tuning-Resolver
===============

Reine Funktion (SystemProfile, HardwareInventory) -> TuningPlan,
vollstaendig tabellengetrieben.
"""

from typing import Optional

from hecate.core.exceptions import ValidationError
from hecate.core.logging import get_logger
from hecate.core.utils import clamp, interpolate
from hecate.hardware.inventory import GpuInfo, HardwareInventory
from hecate.hardware.profiles import SystemProfile
from hecate.optimization import tables
from hecate.optimization.plan import TuningPlan

logger = get_logger(__name__)


def swappiness_for(ram_gb: Optional[float]) -> int:
    """Swappiness invers zur RAM-Groesse, begrenzt auf [10, 60]"""
    if ram_gb is None:
        return int(tables.SWAPPINESS_BOUNDS[1])
    value = interpolate(ram_gb, tables.SWAPPINESS_ANCHORS)
    low, high = tables.SWAPPINESS_BOUNDS
    return int(round(clamp(value, low, high)))


def zram_size_mb(ram_gb: Optional[float]) -> int:
    """ZRAM-Groesse mit abnehmendem relativem Anteil bei mehr RAM"""
    ram = ram_gb if ram_gb is not None else tables.UNKNOWN_RAM_GB
    fraction = interpolate(ram, tables.ZRAM_FRACTION_ANCHORS)
    return int(round(ram * 1024 * fraction))


def dirty_ratios_for(ram_gb: Optional[float]) -> tuple[int, int]:
    ram = ram_gb if ram_gb is not None else tables.UNKNOWN_RAM_GB
    return (
        int(round(interpolate(ram, tables.DIRTY_RATIO_ANCHORS))),
        int(round(interpolate(ram, tables.DIRTY_BACKGROUND_RATIO_ANCHORS))),
    )


def primary_gpu(inventory: HardwareInventory) -> Optional[GpuInfo]:
    """GPU mit dem meisten VRAM (bei Gleichstand die erste)"""
    if not inventory.gpus:
        return None
    return max(inventory.gpus, key=lambda g: g.vram_gb or 0.0)


def resolve(
    profile: SystemProfile,
    inventory: HardwareInventory,
    mitigations_override: Optional[str] = None,
) -> TuningPlan:
    """
    Leitet den Tuning-Plan fuer Profil und Inventar ab.

    Args:
        profile: Klassifiziertes (oder erzwungenes) Profil
        inventory: Hardware-Inventar; unbekannte Felder -> konservative Werte
        mitigations_override: Explizite Mitigations-Vorgabe, hat Vorrang

    Returns:
        Vollstaendiger TuningPlan
    """
    policy = tables.PROFILE_POLICIES[profile]
    plan = TuningPlan(profile=profile)

    # Memory
    dirty_ratio, dirty_background = dirty_ratios_for(inventory.ram_gb)
    plan.add("sysctl", "vm.swappiness", swappiness_for(inventory.ram_gb))
    plan.add("sysctl", "vm.dirty_ratio", dirty_ratio)
    plan.add("sysctl", "vm.dirty_background_ratio", dirty_background)
    plan.add("zram", "zram.size_mb", zram_size_mb(inventory.ram_gb))
    plan.add("zram", "zram.algorithm", tables.ZRAM_ALGORITHM)

    # CPU
    plan.add("governor", "cpufreq.governor", policy.governor)

    # GPU
    gpu = primary_gpu(inventory)
    driver = tables.driver_for(gpu.vendor if gpu else None, gpu.generation if gpu else None)
    plan.add("gpu_power_mode", "gpu.power_mode", policy.gpu_power_mode)
    plan.add("gpu_power_mode", "gpu.driver", driver)
    plan.add("gpu_power_mode", "gpu.persistence_mode", policy.persistence_mode)

    # Storage
    nvme_fast = (
        inventory.is_nvme
        and (inventory.storage_gen or 0) >= tables.NVME_NO_SCHEDULER_MIN_GEN
    )
    plan.add("io_scheduler", "block.scheduler", "none" if nvme_fast else "mq-deadline")
    plan.add(
        "io_scheduler",
        "block.read_ahead_kb",
        tables.READ_AHEAD_KB.get(inventory.throughput_class, tables.READ_AHEAD_KB["unknown"]),
    )

    # Kernel
    mitigations = mitigations_override or policy.mitigations
    if mitigations not in tables.MITIGATION_VALUES:
        raise ValidationError(
            f"Unsupported mitigations value: {mitigations}", field="mitigations"
        )
    plan.add("kernel_params", "mitigations", mitigations)
    plan.add("kernel_params", "processor.max_cstate", policy.max_cstate)
    plan.add("kernel_params", "transparent_hugepage", policy.transparent_hugepage)

    plan.validate()
    logger.debug(
        "Tuning plan resolved",
        profile=profile.value,
        plan_hash=plan.content_hash()[:12],
        keys=len(plan.keys()),
    )
    return plan
