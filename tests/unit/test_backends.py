"""Tests für die Vendor-Backends."""

import shutil
import subprocess

import pytest

from hecate.core.exceptions import ApplyFailure, BackendUnavailable
from hecate.gpu.backends import AmdBackend, NvidiaBackend, UnknownBackend, default_backends
from hecate.gpu.models import FanCurve, GpuConfig, PowerMode

MIB = 1024 * 1024

ENUM_OUTPUT = "0, GPU-4090-abc, NVIDIA GeForce RTX 4090, 24564, 550.54.14, 150.00, 600.00, 450.00"
STATUS_OUTPUT = "65, 320.50, 450.00, 87, 12000, 24564, 2520, 10501, 55"


class SmiRunner:
    """Simuliert nvidia-smi und nvidia-settings."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def __call__(self, args, timeout):
        args = list(args)
        self.calls.append(args)
        if self.fail_on and self.fail_on in args:
            raise subprocess.CalledProcessError(1, args)
        if "-L" in args:
            return "GPU 0: NVIDIA GeForce RTX 4090 (UUID: GPU-4090-abc)"
        if any(a.startswith("--query-gpu=index") for a in args):
            return ENUM_OUTPUT
        if any(a.startswith("--query-gpu=temperature") for a in args):
            return STATUS_OUTPUT
        return ""


@pytest.fixture
def drm_root(tmp_path):
    """Sysroot mit einer AMD- und einer Intel-Karte."""
    drm = tmp_path / "sys" / "class" / "drm"

    amd = drm / "card0" / "device"
    hwmon = amd / "hwmon" / "hwmon3"
    hwmon.mkdir(parents=True)
    (amd / "vendor").write_text("0x1002\n")
    (amd / "uevent").write_text("DRIVER=amdgpu\nPCI_SLOT_NAME=0000:03:00.0\n")
    (amd / "product_name").write_text("AMD Radeon RX 7900 XTX\n")
    (amd / "mem_info_vram_total").write_text(str(24 * 1024 * MIB))
    (amd / "mem_info_vram_used").write_text(str(6 * 1024 * MIB))
    (amd / "gpu_busy_percent").write_text("42\n")
    (amd / "pp_dpm_sclk").write_text("0: 500Mhz\n1: 2500Mhz *\n")
    (hwmon / "temp1_input").write_text("65000\n")
    (hwmon / "power1_average").write_text("250000000\n")
    (hwmon / "power1_cap").write_text("300000000\n")
    (hwmon / "power1_cap_min").write_text("100000000\n")
    (hwmon / "power1_cap_max").write_text("350000000\n")
    (hwmon / "power1_cap_default").write_text("300000000\n")
    (hwmon / "pwm1").write_text("128\n")

    intel = drm / "card1" / "device"
    intel.mkdir(parents=True)
    (intel / "vendor").write_text("0x8086\n")

    (drm / "card0-DP-1").mkdir()
    return tmp_path


class TestNvidiaBackend:
    """Tests für NvidiaBackend."""

    def test_available(self):
        """Testet Erkennung über nvidia-smi -L."""
        assert NvidiaBackend(SmiRunner()).is_available() is True

    def test_enumerate(self):
        """Testet Geräteliste und Fähigkeiten."""
        (device,) = NvidiaBackend(SmiRunner()).enumerate()

        assert device.uid == "GPU-4090-abc"
        assert device.name == "NVIDIA GeForce RTX 4090"
        assert device.vram_total == 24564 * MIB
        assert device.driver_version == "550.54.14"
        assert device.capabilities.power_limit_range == (150, 600)
        assert device.capabilities.power_limit_default == 450
        assert device.capabilities.fan_control is True
        assert device.handle == 0

    def test_enumerate_failure(self):
        """Testet nicht erreichbares nvidia-smi."""
        backend = NvidiaBackend(SmiRunner(fail_on="--format=csv,noheader,nounits"))

        with pytest.raises(BackendUnavailable):
            backend.enumerate()

    def test_read_status(self):
        """Testet Parsen eines Samples."""
        backend = NvidiaBackend(SmiRunner())
        (device,) = backend.enumerate()

        status = backend.read_status(device)

        assert status.temperature == 65.0
        assert status.power_draw == 320.5
        assert status.utilization == 87.0
        assert status.memory_used == 12000 * MIB
        assert status.clock_graphics == 2520
        assert status.fan_speed == 55

    def test_apply_config(self):
        """Testet die erzeugten Befehle."""
        runner = SmiRunner()
        backend = NvidiaBackend(runner)
        (device,) = backend.enumerate()
        runner.calls.clear()

        backend.apply_config(device, GpuConfig(
            power_mode=PowerMode.MAX_PERFORMANCE,
            power_limit=400,
            temp_target=85,
            clock_offsets={"core": 100},
        ))

        assert runner.calls[0] == ["nvidia-smi", "-i", "0", "-pm", "1"]
        assert ["nvidia-smi", "-i", "0", "-pl", "400"] in runner.calls
        assert ["nvidia-smi", "-i", "0", "-gtt", "85"] in runner.calls
        assert runner.calls[-1] == [
            "nvidia-settings", "-a", "[gpu:0]/GPUGraphicsClockOffsetAllPerformanceLevels=100",
        ]

    def test_apply_failure(self):
        """Testet fehlschlagenden Befehl."""
        backend = NvidiaBackend(SmiRunner(fail_on="-pl"))
        (device,) = backend.enumerate()

        with pytest.raises(ApplyFailure):
            backend.apply_config(device, GpuConfig(power_limit=400))


class TestAmdBackend:
    """Tests für AmdBackend über sysfs."""

    def test_enumerate(self, drm_root):
        """Testet nur AMD-Karten."""
        backend = AmdBackend(drm_root)

        (device,) = backend.enumerate()

        assert backend.is_available() is True
        assert device.uid == "0000:03:00.0"
        assert device.name == "AMD Radeon RX 7900 XTX"
        assert device.vram_gb == 24.0
        assert device.capabilities.power_limit_range == (100, 350)
        assert device.capabilities.power_limit_default == 300
        assert device.capabilities.fan_control is True

    def test_read_status(self, drm_root):
        """Testet hwmon- und DPM-Werte."""
        backend = AmdBackend(drm_root)
        (device,) = backend.enumerate()

        status = backend.read_status(device)

        assert status.temperature == 65.0
        assert status.power_draw == 250.0
        assert status.power_limit == 300.0
        assert status.utilization == 42.0
        assert status.memory_percent == pytest.approx(25.0)
        assert status.clock_graphics == 2500
        assert status.clock_memory is None
        assert status.fan_speed == 50

    def test_apply_config(self, drm_root):
        """Testet Schreiben von Leistungsstufe, Power Cap und Lüfter."""
        backend = AmdBackend(drm_root)
        (device,) = backend.enumerate()
        device_path = drm_root / "sys/class/drm/card0/device"
        hwmon = device_path / "hwmon" / "hwmon3"

        backend.apply_config(device, GpuConfig(
            power_mode=PowerMode.MAX_PERFORMANCE,
            power_limit=320,
            fan_curve=FanCurve(points=[(40, 20), (80, 100)]),
        ))

        assert (device_path / "power_dpm_force_performance_level").read_text() == "high"
        assert (hwmon / "power1_cap").read_text() == "320000000"
        assert (hwmon / "pwm1_enable").read_text() == "1"
        assert (hwmon / "pwm1").read_text() == str(70 * 255 // 100)

    def test_reset(self, drm_root):
        """Testet Rückkehr zu den Defaults."""
        backend = AmdBackend(drm_root)
        (device,) = backend.enumerate()
        device_path = drm_root / "sys/class/drm/card0/device"
        hwmon = device_path / "hwmon" / "hwmon3"
        (hwmon / "pwm1_enable").write_text("1")
        (hwmon / "power1_cap").write_text("320000000")

        backend.reset(device)

        assert (device_path / "power_dpm_force_performance_level").read_text() == "auto"
        assert (hwmon / "pwm1_enable").read_text() == "2"
        assert (hwmon / "power1_cap").read_text() == "300000000"

    def test_vanished_device(self, drm_root):
        """Testet entfernte Karte."""
        backend = AmdBackend(drm_root)
        (device,) = backend.enumerate()
        shutil.rmtree(drm_root / "sys/class/drm/card0")

        with pytest.raises(BackendUnavailable):
            backend.read_status(device)


class TestUnknownBackend:
    """Tests für UnknownBackend."""

    def test_enumerate_other_vendors(self, drm_root):
        """Testet Geräte ohne eigenes Backend."""
        (device,) = UnknownBackend(drm_root).enumerate()

        assert device.vendor == "intel"
        assert device.name == "Intel Graphics"
        assert device.uid == "card1"
        assert device.capabilities.configurable is False

    def test_read_only(self, drm_root):
        """Testet Status ohne Sensoren und ignorierte Konfiguration."""
        backend = UnknownBackend(drm_root)
        (device,) = backend.enumerate()

        backend.apply_config(device, GpuConfig(power_limit=100))
        status = backend.read_status(device)

        assert status.utilization is None
        assert status.temperature is None

    def test_no_drm(self, tmp_path):
        """Testet System ohne DRM-Geräte."""
        backend = UnknownBackend(tmp_path)

        assert backend.is_available() is False
        assert backend.enumerate() == []


class TestDefaultBackends:
    """Tests für die Backend-Reihenfolge."""

    def test_priority_order(self, tmp_path):
        """Testet NVIDIA vor AMD vor Unknown."""
        names = [b.name for b in default_backends(tmp_path)]

        assert names == ["nvidia", "amd", "unknown"]
