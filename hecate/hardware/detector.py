"""
Hardware-Detektor
=================

Best-Effort Erkennung der Hardware-Fakten unter Linux. Reine Lese-Operation:
liest ``/proc``, ``/sys`` und fragt ``nvidia-smi`` / ``dmidecode`` ab.

Fehler einzelner Felder sind nicht fatal und werden in
``HardwareInventory.probe_errors`` gesammelt. Nur wenn gar keine CPU erkannt
wird, wird ``ProbeFailure(fatal=True)`` geworfen.
"""

import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import psutil

from hecate.core.exceptions import ProbeFailure
from hecate.core.logging import get_logger
from hecate.hardware.inventory import GpuInfo, HardwareInventory, nvidia_generation

logger = get_logger(__name__)

CommandRunner = Callable[[Sequence[str], float], str]

PCI_VENDORS = {
    "0x10de": "nvidia",
    "0x1002": "amd",
    "0x8086": "intel",
}

# PCIe Link-Geschwindigkeit (GT/s) -> Generation
PCIE_LINK_GEN = {
    2.5: 1,
    5.0: 2,
    8.0: 3,
    16.0: 4,
    32.0: 5,
    64.0: 6,
}

_INTEL_MODEL = re.compile(r"i[3579]-(\d{4,5})")
_RYZEN_MODEL = re.compile(r"Ryzen\s+(?:Threadripper\s+)?(?:PRO\s+)?\d*\s*(\d)\d{3}", re.IGNORECASE)
_MEMORY_SPEED = re.compile(r"(?:Configured Memory Speed|Speed):\s*(\d+)\s*(?:MT/s|MHz)")
_SKIP_BLOCK_PREFIXES = ("loop", "ram", "zram", "dm-", "sr", "md")


def run_command(args: Sequence[str], timeout: float = 10.0) -> str:
    """Fuehrt einen Befehl aus und gibt stdout zurueck ("" bei Fehler)"""
    try:
        result = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            encoding="utf-8",
            errors="replace",
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Command failed", command=args[0], error=str(e))
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def cpu_generation(vendor: Optional[str], model: Optional[str]) -> Optional[int]:
    """Leitet die CPU-Generation aus dem Modellnamen ab (i9-13900K -> 13)"""
    if not model:
        return None
    vendor = (vendor or "").lower()
    if "intel" in vendor:
        match = _INTEL_MODEL.search(model)
        if match:
            digits = match.group(1)
            return int(digits[:2]) if len(digits) == 5 else int(digits[0])
    elif "amd" in vendor:
        match = _RYZEN_MODEL.search(model)
        if match:
            return int(match.group(1))
    return None


def pcie_generation(link_speed: str) -> Optional[int]:
    """Parst ``current_link_speed`` (z.B. '16.0 GT/s PCIe') zur Generation"""
    match = re.match(r"\s*([\d.]+)\s*GT/s", link_speed or "")
    if not match:
        return None
    return PCIE_LINK_GEN.get(float(match.group(1)))


class HardwareDetector:
    """Erkennt Hardware-Fakten und baut ein HardwareInventory"""

    def __init__(
        self,
        sysroot: Path | str = "/",
        runner: Optional[CommandRunner] = None,
    ):
        self.sysroot = Path(sysroot)
        self._runner = runner or run_command
        self._live = self.sysroot == Path("/")

    def _path(self, path: str) -> Path:
        return self.sysroot / path.lstrip("/")

    def _read(self, path: str) -> Optional[str]:
        try:
            return self._path(path).read_text(encoding="utf-8", errors="replace").strip()
        except OSError:
            return None

    def detect(self) -> HardwareInventory:
        """
        Erkennt alle Hardware-Fakten.

        Raises:
            ProbeFailure: (fatal) wenn keine CPU identifiziert werden konnte
        """
        inventory = HardwareInventory()

        probes = [
            ("cpu", self._probe_cpu),
            ("memory", self._probe_memory),
            ("gpu", self._probe_gpus),
            ("storage", self._probe_storage),
        ]
        for field_name, probe in probes:
            try:
                probe(inventory)
            except (OSError, ValueError, IndexError, KeyError) as e:
                self._record(inventory, field_name, str(e))

        if not inventory.cpu_vendor and not inventory.cpu_model and not inventory.cpu_cores:
            raise ProbeFailure("No CPU identified", field="cpu", fatal=True)

        logger.info(
            "Hardware detected",
            cpu=inventory.cpu_model,
            cores=inventory.cpu_cores,
            ram_gb=inventory.ram_gb,
            gpus=inventory.gpu_count,
            storage=inventory.throughput_class,
            probe_errors=len(inventory.probe_errors),
        )
        return inventory

    def _record(self, inventory: HardwareInventory, field_name: str, reason: str) -> None:
        error = ProbeFailure(f"Probe for {field_name} failed: {reason}", field=field_name)
        inventory.probe_errors.append(error.to_dict())
        logger.warning("Probe failed", field=field_name, reason=reason)

    # --- CPU -------------------------------------------------------------

    def _probe_cpu(self, inventory: HardwareInventory) -> None:
        cpuinfo = self._read("/proc/cpuinfo")
        if cpuinfo:
            first: Dict[str, str] = {}
            processors = 0
            for line in cpuinfo.splitlines():
                if ":" not in line:
                    continue
                key, _, value = line.partition(":")
                key = key.strip()
                if key == "processor":
                    processors += 1
                if processors <= 1:
                    first.setdefault(key, value.strip())

            vendor = first.get("vendor_id", "")
            if "Intel" in vendor:
                inventory.cpu_vendor = "intel"
            elif "AMD" in vendor:
                inventory.cpu_vendor = "amd"
            elif vendor:
                inventory.cpu_vendor = vendor.lower()

            inventory.cpu_model = first.get("model name")
            if first.get("cpu cores", "").isdigit():
                inventory.cpu_cores = int(first["cpu cores"])
            if processors:
                inventory.cpu_threads = processors
        elif not self._live:
            self._record(inventory, "cpu", "cpuinfo not readable")
            return

        if self._live:
            inventory.cpu_cores = inventory.cpu_cores or psutil.cpu_count(logical=False)
            inventory.cpu_threads = inventory.cpu_threads or psutil.cpu_count(logical=True)

        inventory.cpu_generation = cpu_generation(inventory.cpu_vendor, inventory.cpu_model)
        if inventory.cpu_generation is None:
            self._record(inventory, "cpu_generation", "generation not derivable from model")

    # --- Memory ----------------------------------------------------------

    def _probe_memory(self, inventory: HardwareInventory) -> None:
        meminfo = self._read("/proc/meminfo")
        total_kb: Optional[int] = None
        if meminfo:
            for line in meminfo.splitlines():
                if line.startswith("MemTotal:"):
                    total_kb = int(line.split()[1])
                    break
        if total_kb is None and self._live:
            total_kb = psutil.virtual_memory().total // 1024

        if total_kb is None:
            self._record(inventory, "ram_gb", "meminfo not readable")
        else:
            inventory.ram_gb = round(total_kb / (1024 * 1024), 1)

        output = self._runner(["dmidecode", "-t", "memory"], 10.0)
        speeds = [int(m) for m in _MEMORY_SPEED.findall(output or "")]
        if speeds:
            inventory.ram_speed = max(speeds)
        else:
            self._record(inventory, "ram_speed", "dmidecode unavailable")

    # --- GPU -------------------------------------------------------------

    def _probe_gpus(self, inventory: HardwareInventory) -> None:
        gpus = self._nvidia_smi_gpus()
        seen_nvidia = bool(gpus)

        drm = self._path("/sys/class/drm")
        cards: List[Path] = []
        if drm.is_dir():
            cards = sorted(
                p for p in drm.iterdir() if re.fullmatch(r"card\d+", p.name)
            )

        for card in cards:
            vendor_id = self._read(str(card.relative_to(self.sysroot) / "device" / "vendor"))
            vendor = PCI_VENDORS.get((vendor_id or "").lower())
            if vendor is None:
                continue
            if vendor == "nvidia":
                if seen_nvidia:
                    continue
                gpus.append(GpuInfo(vendor="nvidia", name="NVIDIA GPU"))
            elif vendor == "amd":
                gpus.append(self._amd_gpu(card))
            elif vendor == "intel":
                gpus.append(self._intel_gpu(inventory))

        inventory.gpus = gpus

    def _nvidia_smi_gpus(self) -> List[GpuInfo]:
        output = self._runner(
            [
                "nvidia-smi",
                "--query-gpu=name,memory.total,driver_version",
                "--format=csv,noheader,nounits",
            ],
            10.0,
        )
        gpus = []
        for line in (output or "").splitlines():
            parts = [p.strip() for p in line.split(",")]
            if len(parts) < 3:
                continue
            try:
                vram_gb = round(int(parts[1]) / 1024, 1)
            except ValueError:
                vram_gb = None
            gpus.append(GpuInfo(
                vendor="nvidia",
                name=parts[0],
                vram_gb=vram_gb,
                generation=nvidia_generation(parts[0]),
                driver_version=parts[2],
            ))
        return gpus

    def _amd_gpu(self, card: Path) -> GpuInfo:
        rel = card.relative_to(self.sysroot) / "device"
        name = self._read(str(rel / "product_name")) or "AMD Radeon"
        vram_bytes = self._read(str(rel / "mem_info_vram_total"))
        vram_gb = None
        if vram_bytes and vram_bytes.isdigit():
            vram_gb = round(int(vram_bytes) / (1024 ** 3), 1)
        return GpuInfo(vendor="amd", name=name, vram_gb=vram_gb)

    def _intel_gpu(self, inventory: HardwareInventory) -> GpuInfo:
        # Xe-Grafik ab der 11. Core-Generation
        generation = None
        if inventory.cpu_generation is not None:
            generation = 12 if inventory.cpu_generation >= 11 else 9
        return GpuInfo(vendor="intel", name="Intel Graphics", generation=generation)

    # --- Storage ---------------------------------------------------------

    def _probe_storage(self, inventory: HardwareInventory) -> None:
        block = self._path("/sys/block")
        if not block.is_dir():
            self._record(inventory, "storage", "/sys/block not readable")
            return

        # (rank, type, gen); das schnellste Geraet bestimmt die Klasse
        best: tuple[int, str, Optional[int]] = (0, "unknown", None)
        for dev in sorted(block.iterdir()):
            if dev.name.startswith(_SKIP_BLOCK_PREFIXES):
                continue
            rel = f"/sys/block/{dev.name}"
            if dev.name.startswith("nvme"):
                gen = pcie_generation(self._read(f"{rel}/device/device/current_link_speed") or "")
                candidate = (10 + (gen or 3), "nvme", gen)
            else:
                rotational = self._read(f"{rel}/queue/rotational")
                if rotational == "0":
                    candidate = (5, "sata_ssd", None)
                else:
                    candidate = (1, "hdd", None)
            if candidate[0] > best[0]:
                best = candidate

        inventory.storage_type, inventory.storage_gen = best[1], best[2]
        if inventory.storage_type == "nvme" and inventory.storage_gen is None:
            self._record(inventory, "storage_gen", "PCIe link speed unknown")
