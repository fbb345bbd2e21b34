"""
Hecate Test Configuration

Pytest Fixtures und Konfiguration.
"""

import dataclasses
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from hecate.core.config import Config, set_config
from hecate.core.exceptions import ApplyFailure, BackendUnavailable
from hecate.core.logging import setup_logging
from hecate.gpu.backends import GpuBackend
from hecate.gpu.manager import GpuManager
from hecate.gpu.models import GpuCapabilities, GpuConfig, GpuDevice, GpuStatus
from hecate.hardware.inventory import HardwareInventory
from hecate.persistence.store import MemoryStore, set_store

GIB = 1024 ** 3


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Initialisiert die Testumgebung."""
    config = Config(
        environment="testing",
        debug=True,
        logging={"level": "DEBUG", "format": "human"},
    )
    set_config(config)
    set_store(MemoryStore())
    setup_logging()
    yield


# --- GPU ---


class FakeBackend(GpuBackend):
    """Backend ohne Hardware: Geraete und Samples werden vom Test vorgegeben."""

    name = "fake"
    vendor = "fake"

    def __init__(self, count: int = 2, available: bool = True):
        self.available = available
        self.uids: List[str] = [f"GPU-fake-{i}" for i in range(count)]
        self.statuses: Dict[str, GpuStatus] = {}
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, Exception] = {}
        self.applied: List[Tuple[str, GpuConfig]] = []
        self.resets: List[str] = []
        self.fail_apply = False
        self.apply_started = threading.Event()
        self.apply_gate: Optional[threading.Event] = None
        self.capabilities = GpuCapabilities(
            power_limit_min=100,
            power_limit_max=450,
            power_limit_default=350,
            temp_target_range=(60, 92),
            core_offset_range=(-500, 500),
            memory_offset_range=(-1000, 1500),
            fan_control=True,
        )

    def is_available(self) -> bool:
        return self.available

    def enumerate(self) -> List[GpuDevice]:
        if not self.available:
            raise BackendUnavailable("fake backend offline", vendor=self.vendor)
        return [
            GpuDevice(
                index=-1,
                uid=uid,
                vendor=self.vendor,
                name=f"Fake GPU {uid.rsplit('-', 1)[-1]}",
                vram_total=24 * GIB,
                capabilities=dataclasses.replace(self.capabilities),
                backend=self.name,
                handle=uid,
            )
            for uid in self.uids
        ]

    def set_status(self, uid: str, **values: Any) -> None:
        base = dict(
            temperature=50.0,
            power_draw=150.0,
            power_limit=350.0,
            utilization=10.0,
            memory_used=2 * GIB,
            memory_total=24 * GIB,
        )
        base.update(values)
        self.statuses[uid] = GpuStatus(index=-1, **base)

    def read_status(self, device: GpuDevice) -> GpuStatus:
        if device.uid in self.failures:
            raise self.failures[device.uid]
        delay = self.delays.get(device.uid)
        if delay:
            time.sleep(delay)
        if device.uid not in self.statuses:
            self.set_status(device.uid)
        return dataclasses.replace(self.statuses[device.uid], sample_timestamp=time.time())

    def apply_config(self, device: GpuDevice, config: GpuConfig) -> None:
        self.apply_started.set()
        if self.apply_gate is not None:
            self.apply_gate.wait(5.0)
        if self.fail_apply:
            raise ApplyFailure(f"fake apply failed on {device.uid}")
        self.applied.append((device.uid, config))

    def reset(self, device: GpuDevice) -> None:
        self.resets.append(device.uid)


@pytest.fixture
def test_config() -> Config:
    """Konfiguration mit kurzen Intervallen und Timeouts."""
    return Config(
        environment="testing",
        monitoring={
            "interval_seconds": 0.05,
            "backend_timeout_seconds": 0.2,
            "subscriber_buffer": 16,
            "history_capacity": 5,
        },
    )


@pytest.fixture
def backend_factory():
    """Erzeugt weitere Fake-Backends (z.B. mit geaenderten Faehigkeiten)."""
    return FakeBackend


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Zwei identische Fake-GPUs."""
    return FakeBackend(count=2)


@pytest.fixture
def manager(fake_backend, test_config):
    """GpuManager mit erkannten Fake-GPUs."""
    mgr = GpuManager(backends=[fake_backend], config=test_config, store=MemoryStore())
    mgr.detect_gpus()
    yield mgr
    mgr.shutdown()


# --- Inventar ---


@pytest.fixture
def workstation_inventory() -> HardwareInventory:
    """24 GB VRAM, 128 GB RAM, NVMe Gen4."""
    return HardwareInventory.from_dict({
        "cpu_vendor": "intel",
        "cpu_model": "13th Gen Intel(R) Core(TM) i9-13900K",
        "cpu_generation": 13,
        "cpu_cores": 24,
        "gpu": [{"vram_gb": 24}],
        "ram_gb": 128,
        "storage": "nvme_gen4",
    })


@pytest.fixture
def gaming_inventory() -> HardwareInventory:
    """RTX 4070 mit 32 GB RAM."""
    return HardwareInventory.from_dict({
        "cpu_vendor": "amd",
        "cpu_model": "AMD Ryzen 7 7800X3D 8-Core Processor",
        "cpu_cores": 8,
        "gpus": [{"name": "NVIDIA GeForce RTX 4070", "vram_gb": 12}],
        "ram_gb": 32,
        "storage": "nvme_gen3",
    })


@pytest.fixture
def minimal_inventory() -> HardwareInventory:
    """Nur eine CPU bekannt, alles andere unbekannt."""
    return HardwareInventory(cpu_vendor="intel", cpu_cores=4)


# --- Fake Sysroot ---


@pytest.fixture
def fake_sysroot(tmp_path) -> Path:
    """Minimales /proc und /sys fuer Detector und Applier."""
    root = tmp_path / "root"

    vm = root / "proc" / "sys" / "vm"
    vm.mkdir(parents=True)
    for name in ("swappiness", "dirty_ratio", "dirty_background_ratio"):
        (vm / name).write_text("60\n")

    for cpu in ("cpu0", "cpu1"):
        cpufreq = root / "sys" / "devices" / "system" / "cpu" / cpu / "cpufreq"
        cpufreq.mkdir(parents=True)
        (cpufreq / "scaling_governor").write_text("powersave\n")
        (cpufreq / "scaling_available_governors").write_text("performance powersave schedutil\n")

    queue = root / "sys" / "block" / "nvme0n1" / "queue"
    queue.mkdir(parents=True)
    (queue / "scheduler").write_text("[mq-deadline] none\n")
    (queue / "read_ahead_kb").write_text("128\n")
    (queue / "rotational").write_text("0\n")
    link = root / "sys" / "block" / "nvme0n1" / "device" / "device"
    link.mkdir(parents=True)
    (link / "current_link_speed").write_text("16.0 GT/s PCIe\n")

    (root / "proc" / "cpuinfo").write_text(
        "processor\t: 0\n"
        "vendor_id\t: GenuineIntel\n"
        "model name\t: 13th Gen Intel(R) Core(TM) i9-13900K\n"
        "cpu cores\t: 24\n"
        "\n"
        "processor\t: 1\n"
        "vendor_id\t: GenuineIntel\n"
        "model name\t: 13th Gen Intel(R) Core(TM) i9-13900K\n"
        "cpu cores\t: 24\n"
    )
    (root / "proc" / "meminfo").write_text(
        "MemTotal:       131072000 kB\n"
        "MemFree:        100000000 kB\n"
    )
    return root
