"""Tests für die Konfiguration."""

import pytest

from hecate.core.config import (
    AlertConfig,
    Config,
    LoadBalancingConfig,
    LoggingConfig,
    MonitoringConfig,
)
from hecate.core.exceptions import (
    ConflictError,
    NotFoundError,
    OutOfRangeError,
    ProbeFailure,
    StaleSampleError,
)
from hecate.core.utils import canonical_json, clamp, interpolate


class TestConfig:
    """Tests für Config-Klasse."""

    def test_default_config(self):
        """Testet Standard-Konfiguration."""
        config = Config()

        assert config.environment == "development"
        assert config.debug is False
        assert config.logging.level == "INFO"
        assert config.monitoring.interval_seconds == 1.0
        assert config.load_balancing.enabled is False

    def test_custom_config(self):
        """Testet benutzerdefinierte Konfiguration."""
        config = Config(
            environment="production",
            debug=True,
            logging=LoggingConfig(level="DEBUG"),
        )

        assert config.environment == "production"
        assert config.debug is True
        assert config.logging.level == "DEBUG"

    def test_invalid_environment(self):
        """Testet ungültige Umgebung."""
        with pytest.raises(ValueError):
            Config(environment="invalid")

    def test_invalid_log_level(self):
        """Testet ungültiges Log-Level."""
        with pytest.raises(ValueError):
            LoggingConfig(level="INVALID")

    def test_env_override(self, monkeypatch):
        """Testet verschachtelte Umgebungsvariablen."""
        monkeypatch.setenv("HECATE_MONITORING__INTERVAL_SECONDS", "0.5")
        monkeypatch.setenv("HECATE_TUNING__MITIGATIONS", "off")

        config = Config()

        assert config.monitoring.interval_seconds == 0.5
        assert config.tuning.mitigations == "off"

    def test_from_yaml(self, tmp_path):
        """Testet Laden aus YAML."""
        path = tmp_path / "hecate.yaml"
        path.write_text(
            "environment: testing\n"
            "load_balancing:\n"
            "  enabled: true\n"
            "  strategy: THERMAL_OPTIMIZED\n"
            "alerts:\n"
            "  temperature_threshold: 80\n"
        )

        config = Config.from_yaml(path)

        assert config.environment == "testing"
        assert config.load_balancing.enabled is True
        assert config.load_balancing.strategy == "thermal_optimized"
        assert config.alerts.temperature_threshold == 80


class TestMonitoringConfig:
    """Tests für MonitoringConfig."""

    def test_defaults(self):
        """Testet Standard-Werte."""
        config = MonitoringConfig()

        assert config.history_capacity == 60
        assert config.device_history_size == 300
        assert config.subscriber_buffer == 64

    def test_validation(self):
        """Testet Validierung."""
        with pytest.raises(ValueError):
            MonitoringConfig(interval_seconds=0)

        with pytest.raises(ValueError):
            MonitoringConfig(history_capacity=0)

        with pytest.raises(ValueError):
            MonitoringConfig(device_history_size=5)


class TestAlertAndBalancingConfig:
    """Tests für Alert- und Load-Balancing-Konfiguration."""

    def test_alert_defaults(self):
        """Testet die Standard-Schwellen."""
        config = AlertConfig()

        assert config.temperature_threshold == 85.0
        assert config.temperature_critical == 90.0
        assert config.temperature_margin == 5.0

    def test_default_weights(self):
        """Testet die Standard-Gewichte der Custom-Strategie."""
        config = LoadBalancingConfig()

        assert sum(config.weights.values()) == pytest.approx(1.0)
        assert config.weights["least_utilized"] == 0.4

    def test_invalid_strategy(self):
        """Testet unbekannte Strategie."""
        with pytest.raises(ValueError):
            LoadBalancingConfig(strategy="round_robin")


class TestExceptions:
    """Tests für die Fehlerhierarchie."""

    def test_not_found(self):
        """Testet NotFoundError-Details."""
        error = NotFoundError("gpu", 7)

        assert error.code == "NOT_FOUND"
        assert error.to_dict()["details"] == {"kind": "gpu", "key": 7}

    def test_out_of_range_message(self):
        """Testet die Nachricht mit Grenzen."""
        error = OutOfRangeError("power_limit", 600, (100, 450))

        assert error.message == "power_limit=600 outside of [100, 450]"
        assert error.details["field"] == "power_limit"

    def test_probe_failure_fatal_flag(self):
        """Testet das fatal-Flag."""
        error = ProbeFailure("No CPU identified", field="cpu", fatal=True)

        assert error.fatal is True
        assert error.details == {"field": "cpu", "fatal": True}

    def test_stale_and_conflict(self):
        """Testet Index in Stale- und Conflict-Fehlern."""
        assert StaleSampleError(2).details == {"index": 2, "reason": "timeout"}
        assert ConflictError(1).code == "CONFLICT"


class TestUtils:
    """Tests für Hilfsfunktionen."""

    def test_interpolate_between_anchors(self):
        """Testet lineare Interpolation."""
        anchors = ((4, 60), (8, 40))

        assert interpolate(6, anchors) == pytest.approx(50.0)

    def test_interpolate_edges(self):
        """Testet Randwerte ausserhalb der Stützstellen."""
        anchors = ((4, 60), (8, 40), (64, 10))

        assert interpolate(1, anchors) == 60.0
        assert interpolate(512, anchors) == 10.0

    def test_interpolate_requires_anchor(self):
        """Testet leere Stützstellen."""
        with pytest.raises(ValueError):
            interpolate(1, ())

    def test_clamp(self):
        """Testet Begrenzung."""
        assert clamp(5, 10, 60) == 10
        assert clamp(70, 10, 60) == 60
        assert clamp(30, 10, 60) == 30

    def test_canonical_json_is_order_independent(self):
        """Testet deterministische Serialisierung."""
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})
