"""
GPU-Backends
============

Vendor-spezifischer Hardware-Zugriff hinter einer gemeinsamen Schnittstelle.
Der Manager kennt nur ``GpuBackend``.

- ``NvidiaBackend``: nvidia-smi / nvidia-settings
- ``AmdBackend``: amdgpu sysfs (hwmon, pp_dpm_*)
- ``UnknownBackend``: sonstige DRM-Geraete, nur lesend
"""

import re
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from hecate.core.exceptions import ApplyFailure, BackendUnavailable
from hecate.core.logging import get_logger
from hecate.gpu.models import (
    GpuCapabilities,
    GpuConfig,
    GpuDevice,
    GpuStatus,
    PowerMode,
)

logger = get_logger(__name__)

CommandRunner = Callable[[Sequence[str], float], str]


def run_checked(args: Sequence[str], timeout: float = 10.0) -> str:
    """Fuehrt einen Befehl aus; wirft bei Fehler oder Exit-Code != 0"""
    result = subprocess.run(
        list(args),
        capture_output=True,
        text=True,
        timeout=timeout,
        check=True,
    )
    return result.stdout.strip()


def _float(value: str) -> Optional[float]:
    value = value.strip()
    if not value or value.startswith("[") or value in ("N/A", "Not Supported"):
        return None
    try:
        return float(value)
    except ValueError:
        return None


class GpuBackend(ABC):
    """Gemeinsame Schnittstelle aller Vendor-Backends"""

    name: str = ""
    vendor: str = ""

    @abstractmethod
    def is_available(self) -> bool:
        """Ist das Backend auf diesem System erreichbar"""

    @abstractmethod
    def enumerate(self) -> List[GpuDevice]:
        """Liefert Geraete in stabiler Reihenfolge (index wird vom Manager vergeben)"""

    @abstractmethod
    def read_status(self, device: GpuDevice) -> GpuStatus:
        """Liest ein aktuelles Sample (kann blockieren)"""

    @abstractmethod
    def apply_config(self, device: GpuDevice, config: GpuConfig) -> None:
        """Wendet eine bereits validierte Konfiguration an"""

    @abstractmethod
    def reset(self, device: GpuDevice) -> None:
        """Setzt das Geraet auf Werkseinstellungen zurueck"""


# =============================================================================
# NVIDIA
# =============================================================================


class NvidiaBackend(GpuBackend):
    """NVIDIA ueber nvidia-smi (Limits, Persistenz) und nvidia-settings (Offsets, Luefter)"""

    name = "nvidia"
    vendor = "nvidia"

    TEMP_TARGET_RANGE = (60, 92)
    CORE_OFFSET_RANGE = (-500, 500)
    MEMORY_OFFSET_RANGE = (-1000, 1500)

    ENUM_FIELDS = (
        "index,uuid,name,memory.total,driver_version,"
        "power.min_limit,power.max_limit,power.default_limit"
    )
    STATUS_FIELDS = (
        "temperature.gpu,power.draw,power.limit,utilization.gpu,"
        "memory.used,memory.total,clocks.gr,clocks.mem,fan.speed"
    )

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = 10.0):
        self._run = runner or run_checked
        self.timeout = timeout

    def _smi(self, *args: str) -> str:
        return self._run(["nvidia-smi", *args], self.timeout)

    def is_available(self) -> bool:
        if self._run is run_checked and shutil.which("nvidia-smi") is None:
            return False
        try:
            return bool(self._smi("-L"))
        except (OSError, subprocess.SubprocessError):
            return False

    def enumerate(self) -> List[GpuDevice]:
        try:
            output = self._smi(
                f"--query-gpu={self.ENUM_FIELDS}", "--format=csv,noheader,nounits"
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise BackendUnavailable(f"nvidia-smi failed: {e}", vendor=self.vendor) from e

        devices = []
        for line in output.splitlines():
            parts = [p.strip() for p in line.split(",")]
            if len(parts) < 8:
                continue
            memory_mib = _float(parts[3]) or 0.0
            power_min, power_max, power_default = (_float(p) for p in parts[5:8])
            capabilities = GpuCapabilities(
                power_limit_min=int(power_min) if power_min is not None else None,
                power_limit_max=int(power_max) if power_max is not None else None,
                power_limit_default=int(power_default) if power_default is not None else None,
                temp_target_range=self.TEMP_TARGET_RANGE,
                core_offset_range=self.CORE_OFFSET_RANGE,
                memory_offset_range=self.MEMORY_OFFSET_RANGE,
                fan_control=True,
            )
            devices.append(GpuDevice(
                index=-1,
                uid=parts[1],
                vendor=self.vendor,
                name=parts[2],
                vram_total=int(memory_mib * 1024 * 1024),
                capabilities=capabilities,
                driver_version=parts[4],
                backend=self.name,
                handle=int(parts[0]),
            ))
        return devices

    def read_status(self, device: GpuDevice) -> GpuStatus:
        output = self._smi(
            "-i", str(device.handle),
            f"--query-gpu={self.STATUS_FIELDS}",
            "--format=csv,noheader,nounits",
        )
        parts = [p.strip() for p in output.splitlines()[0].split(",")] if output else []
        if len(parts) < 9:
            raise BackendUnavailable(
                f"Unexpected nvidia-smi output for GPU {device.index}", vendor=self.vendor
            )
        values = [_float(p) for p in parts]
        mib = 1024 * 1024
        return GpuStatus(
            index=device.index,
            temperature=values[0],
            power_draw=values[1],
            power_limit=values[2],
            utilization=values[3],
            memory_used=int((values[4] or 0) * mib),
            memory_total=int((values[5] or 0) * mib),
            clock_graphics=int(values[6]) if values[6] is not None else None,
            clock_memory=int(values[7]) if values[7] is not None else None,
            fan_speed=int(values[8]) if values[8] is not None else None,
            sample_timestamp=time.time(),
        )

    def apply_config(self, device: GpuDevice, config: GpuConfig) -> None:
        handle = str(device.handle)
        commands: List[List[str]] = []
        persistence = "0" if config.power_mode == PowerMode.POWER_SAVER else "1"
        commands.append(["nvidia-smi", "-i", handle, "-pm", persistence])
        if config.power_limit is not None:
            commands.append(["nvidia-smi", "-i", handle, "-pl", str(config.power_limit)])
        if config.temp_target is not None:
            commands.append(["nvidia-smi", "-i", handle, "-gtt", str(config.temp_target)])

        target = f"[gpu:{handle}]"
        if "core" in config.clock_offsets:
            commands.append([
                "nvidia-settings", "-a",
                f"{target}/GPUGraphicsClockOffsetAllPerformanceLevels={config.clock_offsets['core']}",
            ])
        if "memory" in config.clock_offsets:
            commands.append([
                "nvidia-settings", "-a",
                f"{target}/GPUMemoryTransferRateOffsetAllPerformanceLevels={config.clock_offsets['memory']}",
            ])
        if config.fan_curve is not None:
            status = self.read_status(device)
            speed = config.fan_curve.fan_speed_for(status.temperature or 0.0)
            commands.append(["nvidia-settings", "-a", f"{target}/GPUFanControlState=1"])
            commands.append(["nvidia-settings", "-a", f"[fan:{handle}]/GPUTargetFanSpeed={speed}"])

        for command in commands:
            try:
                self._run(command, self.timeout)
            except (OSError, subprocess.SubprocessError) as e:
                raise ApplyFailure(
                    f"{command[0]} failed on GPU {device.index}: {e}",
                    details={"command": " ".join(command)},
                ) from e
        logger.info("NVIDIA config applied", index=device.index, commands=len(commands))

    def reset(self, device: GpuDevice) -> None:
        handle = str(device.handle)
        default = device.capabilities.power_limit_default
        commands = [["nvidia-settings", "-a", f"[gpu:{handle}]/GPUFanControlState=0"]]
        if default is not None:
            commands.append(["nvidia-smi", "-i", handle, "-pl", str(default)])
        for command in commands:
            try:
                self._run(command, self.timeout)
            except (OSError, subprocess.SubprocessError) as e:
                raise ApplyFailure(f"Reset of GPU {device.index} failed: {e}") from e


# =============================================================================
# Sysfs-Basis (AMD / Unknown)
# =============================================================================


class SysfsBackend(GpuBackend):
    """Gemeinsame DRM/sysfs-Helfer"""

    pci_vendors: tuple = ()

    def __init__(self, sysroot: Path | str = "/"):
        self.sysroot = Path(sysroot)

    def _cards(self) -> List[Path]:
        drm = self.sysroot / "sys" / "class" / "drm"
        if not drm.is_dir():
            return []
        return sorted(
            (p for p in drm.iterdir() if re.fullmatch(r"card\d+", p.name)),
            key=lambda p: int(p.name[4:]),
        )

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError:
            return None

    def _read_int(self, path: Path) -> Optional[int]:
        value = self._read(path)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    def _vendor_id(self, card: Path) -> str:
        return (self._read(card / "device" / "vendor") or "").lower()

    def _matching_cards(self) -> List[Path]:
        return [c for c in self._cards() if self._matches(self._vendor_id(c))]

    def _matches(self, vendor_id: str) -> bool:
        return vendor_id in self.pci_vendors

    def _pci_slot(self, card: Path) -> str:
        uevent = self._read(card / "device" / "uevent") or ""
        for line in uevent.splitlines():
            if line.startswith("PCI_SLOT_NAME="):
                return line.split("=", 1)[1]
        return card.name

    def is_available(self) -> bool:
        return bool(self._matching_cards())


class AmdBackend(SysfsBackend):
    """AMD ueber amdgpu sysfs"""

    name = "amd"
    vendor = "amd"
    pci_vendors = ("0x1002",)

    PERFORMANCE_LEVELS = {
        PowerMode.MAX_PERFORMANCE: "high",
        PowerMode.BALANCED: "auto",
        PowerMode.POWER_SAVER: "low",
        PowerMode.CUSTOM: "manual",
        PowerMode.AUTO: "auto",
    }

    def _hwmon(self, device_path: Path) -> Optional[Path]:
        hwmon_dir = device_path / "hwmon"
        if not hwmon_dir.is_dir():
            return None
        candidates = sorted(p for p in hwmon_dir.iterdir() if p.name.startswith("hwmon"))
        return candidates[0] if candidates else None

    def enumerate(self) -> List[GpuDevice]:
        devices = []
        for card in self._matching_cards():
            device_path = card / "device"
            hwmon = self._hwmon(device_path)
            caps = GpuCapabilities(fan_control=hwmon is not None and (hwmon / "pwm1").exists())
            if hwmon is not None:
                cap_min = self._read_int(hwmon / "power1_cap_min")
                cap_max = self._read_int(hwmon / "power1_cap_max")
                cap_default = self._read_int(hwmon / "power1_cap_default")
                caps.power_limit_min = cap_min // 1_000_000 if cap_min is not None else None
                caps.power_limit_max = cap_max // 1_000_000 if cap_max is not None else None
                caps.power_limit_default = (
                    cap_default // 1_000_000 if cap_default is not None else None
                )
            devices.append(GpuDevice(
                index=-1,
                uid=self._pci_slot(card),
                vendor=self.vendor,
                name=self._read(device_path / "product_name") or "AMD Radeon",
                vram_total=self._read_int(device_path / "mem_info_vram_total") or 0,
                capabilities=caps,
                driver_version=self._read(self.sysroot / "sys" / "module" / "amdgpu" / "version"),
                backend=self.name,
                handle=str(device_path),
            ))
        return devices

    @staticmethod
    def _active_clock(table: Optional[str]) -> Optional[int]:
        # "1: 1800Mhz *" markiert die aktive DPM-Stufe
        for line in (table or "").splitlines():
            if line.strip().endswith("*"):
                match = re.search(r"(\d+)\s*Mhz", line, re.IGNORECASE)
                if match:
                    return int(match.group(1))
        return None

    def read_status(self, device: GpuDevice) -> GpuStatus:
        device_path = Path(device.handle)
        if not device_path.is_dir():
            raise BackendUnavailable(f"GPU {device.index} vanished", vendor=self.vendor)
        hwmon = self._hwmon(device_path)

        temperature = power_draw = power_limit = None
        fan_speed = None
        if hwmon is not None:
            temp_milli = self._read_int(hwmon / "temp1_input")
            temperature = temp_milli / 1000.0 if temp_milli is not None else None
            power_micro = self._read_int(hwmon / "power1_average")
            if power_micro is None:
                power_micro = self._read_int(hwmon / "power1_input")
            power_draw = power_micro / 1_000_000 if power_micro is not None else None
            cap = self._read_int(hwmon / "power1_cap")
            power_limit = cap / 1_000_000 if cap is not None else None
            pwm = self._read_int(hwmon / "pwm1")
            fan_speed = round(pwm * 100 / 255) if pwm is not None else None

        busy = self._read_int(device_path / "gpu_busy_percent")
        return GpuStatus(
            index=device.index,
            temperature=temperature,
            power_draw=power_draw,
            power_limit=power_limit,
            utilization=float(busy) if busy is not None else None,
            memory_used=self._read_int(device_path / "mem_info_vram_used") or 0,
            memory_total=self._read_int(device_path / "mem_info_vram_total") or device.vram_total,
            clock_graphics=self._active_clock(self._read(device_path / "pp_dpm_sclk")),
            clock_memory=self._active_clock(self._read(device_path / "pp_dpm_mclk")),
            fan_speed=fan_speed,
            sample_timestamp=time.time(),
        )

    def _write(self, path: Path, value: str) -> None:
        try:
            path.write_text(value, encoding="utf-8")
        except OSError as e:
            raise ApplyFailure(f"Write to {path.name} failed: {e}") from e

    def apply_config(self, device: GpuDevice, config: GpuConfig) -> None:
        device_path = Path(device.handle)
        hwmon = self._hwmon(device_path)
        self._write(
            device_path / "power_dpm_force_performance_level",
            self.PERFORMANCE_LEVELS[config.power_mode],
        )
        if config.power_limit is not None:
            if hwmon is None:
                raise ApplyFailure(f"GPU {device.index} has no power cap interface")
            self._write(hwmon / "power1_cap", str(config.power_limit * 1_000_000))
        if config.fan_curve is not None and hwmon is not None:
            temperature = (self._read_int(hwmon / "temp1_input") or 0) / 1000.0
            speed = config.fan_curve.fan_speed_for(temperature)
            self._write(hwmon / "pwm1_enable", "1")
            self._write(hwmon / "pwm1", str(speed * 255 // 100))
        logger.info("AMD config applied", index=device.index, mode=config.power_mode.value)

    def reset(self, device: GpuDevice) -> None:
        device_path = Path(device.handle)
        hwmon = self._hwmon(device_path)
        self._write(device_path / "power_dpm_force_performance_level", "auto")
        if hwmon is not None:
            if (hwmon / "pwm1_enable").exists():
                self._write(hwmon / "pwm1_enable", "2")
            default = device.capabilities.power_limit_default
            if default is not None:
                self._write(hwmon / "power1_cap", str(default * 1_000_000))


class UnknownBackend(SysfsBackend):
    """Sonstige DRM-Geraete: nur Basisdaten, keine Konfiguration"""

    name = "unknown"
    vendor = "unknown"

    KNOWN_VENDORS: Dict[str, str] = {"0x8086": "intel"}
    MANAGED_ELSEWHERE = ("0x10de", "0x1002")

    def _matches(self, vendor_id: str) -> bool:
        return bool(vendor_id) and vendor_id not in self.MANAGED_ELSEWHERE

    def enumerate(self) -> List[GpuDevice]:
        devices = []
        for card in self._matching_cards():
            vendor = self.KNOWN_VENDORS.get(self._vendor_id(card), "unknown")
            devices.append(GpuDevice(
                index=-1,
                uid=self._pci_slot(card),
                vendor=vendor,
                name=f"{vendor.capitalize()} Graphics",
                capabilities=GpuCapabilities(configurable=False),
                backend=self.name,
                handle=str(card / "device"),
            ))
        return devices

    def read_status(self, device: GpuDevice) -> GpuStatus:
        device_path = Path(device.handle)
        if not device_path.is_dir():
            raise BackendUnavailable(f"GPU {device.index} vanished", vendor=device.vendor)
        busy = self._read_int(device_path / "gpu_busy_percent")
        return GpuStatus(
            index=device.index,
            utilization=float(busy) if busy is not None else None,
            sample_timestamp=time.time(),
        )

    def apply_config(self, device: GpuDevice, config: GpuConfig) -> None:
        # Keine steuerbaren Funktionen; der Manager hat bereits alles verworfen
        logger.debug("Config ignored by read-only backend", index=device.index)

    def reset(self, device: GpuDevice) -> None:
        logger.debug("Reset ignored by read-only backend", index=device.index)


def default_backends(sysroot: Path | str = "/") -> List[GpuBackend]:
    """Backends in Prioritaetsreihenfolge"""
    return [NvidiaBackend(), AmdBackend(sysroot), UnknownBackend(sysroot)]
