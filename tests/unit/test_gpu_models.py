"""Tests für die GPU-Datenmodelle."""

import pytest

from hecate.core.utils import format_bytes
from hecate.gpu.models import (
    FanCurve,
    GpuConfig,
    GpuDevice,
    GpuStatus,
    PowerMode,
    efficiency_score,
    gpu_summary,
)

GIB = 1024 ** 3


class TestFanCurve:
    """Tests für Lüfterkurven."""

    def test_interpolation(self):
        """Testet lineare Interpolation zwischen Stützstellen."""
        curve = FanCurve.aggressive()

        assert curve.fan_speed_for(60) == 50
        assert curve.fan_speed_for(20) == 20
        assert curve.fan_speed_for(95) == 100

    def test_unsorted_points(self):
        """Testet unsortierte Stützstellen."""
        curve = FanCurve(points=[(80, 70), (40, 0), (60, 30)])

        assert curve.fan_speed_for(50) == 15

    def test_empty_curve(self):
        """Testet Default ohne Stützstellen."""
        assert FanCurve().fan_speed_for(70) == 50

    def test_quiet_is_quieter(self):
        """Testet Presets gegeneinander."""
        assert FanCurve.quiet().fan_speed_for(60) < FanCurve.aggressive().fan_speed_for(60)


class TestGpuConfig:
    """Tests für GpuConfig."""

    def test_presets(self):
        """Testet vordefinierte Konfigurationen."""
        assert GpuConfig.balanced().temp_target == 83
        assert GpuConfig.max_performance().clock_offsets == {"core": 100, "memory": 500}
        saver = GpuConfig.preset("power_saver")
        assert saver.power_mode == PowerMode.POWER_SAVER
        assert saver.auto_load_balance is False
        assert GpuConfig.preset("custom").power_mode == PowerMode.CUSTOM

    def test_from_dict_ignores_unknown_keys(self):
        """Testet unbekannte und fehlende Schlüssel."""
        config = GpuConfig.from_dict({
            "power_limit": 300,
            "fan_curve": {"points": [[40, 20], [80, 90]]},
            "turbo": True,
        })

        assert config.power_mode == PowerMode.BALANCED
        assert config.power_limit == 300
        assert config.fan_curve.points == [(40, 20), (80, 90)]
        assert config.auto_load_balance is True


class TestGpuStatus:
    """Tests für abgeleitete Status-Werte."""

    def test_percentages(self):
        """Testet VRAM- und Leistungsanteil."""
        status = GpuStatus(
            index=0, power_draw=300.0, power_limit=400.0, memory_used=6 * GIB, memory_total=24 * GIB
        )

        assert status.memory_percent == pytest.approx(25.0)
        assert status.power_percent == pytest.approx(75.0)
        assert status.alert_values()["vram_percent"] == pytest.approx(25.0)

    def test_unknown_values(self):
        """Testet fehlende Messwerte."""
        status = GpuStatus(index=0)

        assert status.memory_percent is None
        assert status.power_percent is None


class TestHelpers:
    """Tests für Effizienz-Score und Zusammenfassung."""

    def test_efficiency_score(self):
        """Testet Mittel aus Leistung, Thermik und Auslastung."""
        status = GpuStatus(
            index=0, temperature=45.0, power_draw=200.0, power_limit=400.0, utilization=80.0
        )

        assert efficiency_score(status) == pytest.approx((0.5 + 0.5 + 0.8) / 3)

    def test_efficiency_without_power(self):
        """Testet neutralen Leistungswert."""
        assert efficiency_score(GpuStatus(index=0)) == pytest.approx(0.5)

    def test_gpu_summary(self):
        """Testet einzeilige Ausgabe."""
        device = GpuDevice(index=0, uid="GPU-0", vendor="nvidia", name="RTX 4090")
        status = GpuStatus(
            index=0,
            temperature=65.0,
            power_draw=320.0,
            power_limit=450.0,
            utilization=87.0,
            memory_used=12 * GIB,
            memory_total=24 * GIB,
        )

        summary = gpu_summary(device, status)

        assert summary == (
            "RTX 4090: 65C, 320W/450W, GPU: 87%, VRAM: 12.00 GiB/24.00 GiB (50%)"
        )

    def test_gpu_summary_stale(self):
        """Testet Markierung veralteter Samples."""
        device = GpuDevice(index=0, uid="GPU-0", vendor="amd", name="RX 7900")

        summary = gpu_summary(device, GpuStatus(index=0, stale=True))

        assert summary.startswith("RX 7900: ?, ?/?, GPU: ?")
        assert summary.endswith("[stale]")

    def test_format_bytes(self):
        """Testet binäre Einheiten."""
        assert format_bytes(512) == "512.00 B"
        assert format_bytes(24 * GIB) == "24.00 GiB"
