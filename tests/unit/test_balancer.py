"""Tests für Load Balancing und Performance-Vorhersage."""

import pytest

from hecate.core.exceptions import ConfigurationError, LoadBalancerUnavailable
from hecate.gpu.balancer import (
    LoadBalancer,
    LoadBalancingStrategy,
    least_utilized_score,
    memory_score,
    power_score,
    thermal_score,
)
from hecate.gpu.models import GpuDevice, GpuStatus
from hecate.gpu.prediction import PerformancePredictor
from hecate.persistence.store import MemoryStore


def _candidate(index, utilization=0.0, temperature=50.0, power_draw=None, memory_used=0):
    device = GpuDevice(index=index, uid=f"GPU-{index}", vendor="fake", name=f"GPU {index}")
    status = GpuStatus(
        index=index,
        utilization=utilization,
        temperature=temperature,
        power_draw=power_draw,
        power_limit=400.0,
        memory_used=memory_used,
        memory_total=1000,
    )
    return device, status


class TestScores:
    """Tests für die Score-Funktionen."""

    def test_least_utilized(self):
        """Testet Auslastungs-Score."""
        assert least_utilized_score(GpuStatus(index=0, utilization=30.0)) == pytest.approx(0.7)

    def test_thermal(self):
        """Testet Temperatur-Score."""
        assert thermal_score(GpuStatus(index=0, temperature=80.0)) == pytest.approx(0.2)

    def test_power_unknown(self):
        """Testet neutralen Score ohne Leistungsdaten."""
        assert power_score(GpuStatus(index=0)) == 0.5
        assert power_score(GpuStatus(index=0, power_draw=100.0, power_limit=400.0)) == 0.75

    def test_memory(self):
        """Testet Speicher-Score."""
        assert memory_score(GpuStatus(index=0)) == 0.5
        assert memory_score(GpuStatus(index=0, memory_used=250, memory_total=1000)) == 0.75

    def test_unknown_utilization_and_temperature(self):
        """Testet schlechtesten Score ohne Messwert."""
        assert least_utilized_score(GpuStatus(index=0)) == 0.0
        assert thermal_score(GpuStatus(index=0)) == 0.0

    def test_scores_bounded(self):
        """Testet Begrenzung auf [0, 1]."""
        assert least_utilized_score(GpuStatus(index=0, utilization=120.0)) == 0.0
        assert power_score(GpuStatus(index=0, power_draw=500.0, power_limit=400.0)) == 0.0


class TestLoadBalancer:
    """Tests für LoadBalancer."""

    def test_least_utilized_assignment(self):
        """Testet Auslastung 30 % gegen 72 %."""
        balancer = LoadBalancer(LoadBalancingStrategy.LEAST_UTILIZED)

        assignment = balancer.assign([_candidate(0, 30.0), _candidate(1, 72.0)], "inference")

        assert assignment.gpu_index == 0
        assert assignment.confidence == pytest.approx(0.42)
        assert assignment.strategy == "least_utilized"
        assert assignment.workload_type == "inference"
        assert assignment.reason == "least_utilized: score 0.70 (best of 2)"

    def test_tie_breaks_on_lowest_index(self):
        """Testet Gleichstand -> niedrigster Index."""
        balancer = LoadBalancer()

        assignment = balancer.assign([_candidate(2, 50.0), _candidate(1, 50.0)], "training")

        assert assignment.gpu_index == 1
        assert assignment.confidence == 0.0

    def test_single_candidate_full_confidence(self):
        """Testet Konfidenz bei nur einer GPU."""
        assignment = LoadBalancer().assign([_candidate(0, 90.0)], "training")

        assert assignment.gpu_index == 0
        assert assignment.confidence == 1.0

    def test_no_candidates(self):
        """Testet leere Kandidatenliste."""
        with pytest.raises(LoadBalancerUnavailable):
            LoadBalancer().assign([], "training")

    def test_strategy_per_call(self):
        """Testet Strategie nur für einen Aufruf."""
        balancer = LoadBalancer(LoadBalancingStrategy.LEAST_UTILIZED)
        candidates = [
            _candidate(0, utilization=10.0, temperature=85.0),
            _candidate(1, utilization=60.0, temperature=40.0),
        ]

        assert balancer.assign(candidates, "x").gpu_index == 0
        assert balancer.assign(candidates, "x", LoadBalancingStrategy.THERMAL_OPTIMIZED).gpu_index == 1

    def test_memory_optimized(self):
        """Testet Auswahl nach freiem VRAM."""
        balancer = LoadBalancer(LoadBalancingStrategy.MEMORY_OPTIMIZED)

        assignment = balancer.assign(
            [_candidate(0, memory_used=900), _candidate(1, memory_used=100)], "training"
        )

        assert assignment.gpu_index == 1

    def test_custom_weights(self):
        """Testet gewichtetes Mittel der Strategien."""
        balancer = LoadBalancer(
            LoadBalancingStrategy.CUSTOM,
            {"least_utilized": 1.0, "thermal_optimized": 1.0},
        )
        candidates = [
            _candidate(0, utilization=0.0, temperature=90.0),
            _candidate(1, utilization=50.0, temperature=30.0),
        ]

        assignment = balancer.assign(candidates, "training")

        assert assignment.gpu_index == 1
        assert assignment.scores[0] == pytest.approx(0.55)
        assert assignment.scores[1] == pytest.approx(0.6)

    @pytest.mark.parametrize("weights", [
        {"round_robin": 1.0},
        {"least_utilized": -1.0, "thermal_optimized": 2.0},
        {},
    ])
    def test_invalid_custom_weights(self, weights):
        """Testet ungültige Gewichte."""
        with pytest.raises(ConfigurationError):
            LoadBalancer(LoadBalancingStrategy.CUSTOM, weights)

    @pytest.mark.parametrize("strategy", [
        LoadBalancingStrategy.LEAST_UTILIZED,
        LoadBalancingStrategy.THERMAL_OPTIMIZED,
    ])
    def test_device_without_sensors_loses(self, strategy):
        """Testet: GPU ohne Sensorwerte gewinnt nicht gegen eine ausgelastete."""
        balancer = LoadBalancer(strategy)
        candidates = [
            _candidate(0, utilization=None, temperature=None),
            _candidate(1, utilization=30.0, temperature=60.0),
        ]

        assignment = balancer.assign(candidates, "inference")

        assert assignment.gpu_index == 1
        assert assignment.scores[0] == 0.0

    def test_performance_without_scorer(self):
        """Testet neutralen Performance-Score ohne Vorhersage."""
        balancer = LoadBalancer(LoadBalancingStrategy.PERFORMANCE_OPTIMIZED)

        assignment = balancer.assign([_candidate(0), _candidate(1)], "training")

        assert assignment.gpu_index == 0
        assert assignment.scores == {0: 0.5, 1: 0.5}

    def test_performance_with_scorer(self):
        """Testet Performance-Score aus einer Vorhersagequelle."""
        balancer = LoadBalancer(
            LoadBalancingStrategy.PERFORMANCE_OPTIMIZED,
            performance_scorer=lambda device, status, workload: 0.9 if device.index == 1 else 0.3,
        )

        assignment = balancer.assign([_candidate(0), _candidate(1)], "training")

        assert assignment.gpu_index == 1
        assert assignment.confidence == pytest.approx(0.6)


class TestPerformancePredictor:
    """Tests für PerformancePredictor."""

    def test_heuristic_without_history(self):
        """Testet Default mit niedriger Konfidenz."""
        prediction = PerformancePredictor().predict("GPU-0", "training")

        assert prediction.score == 0.5
        assert prediction.confidence == 0.1
        assert prediction.source == "heuristic"

    def test_heuristic_uses_vram_and_utilization(self):
        """Testet Heuristik aus VRAM und Auslastung."""
        status = GpuStatus(index=0, utilization=20.0)

        prediction = PerformancePredictor().predict("GPU-0", "training", status, vram_gb=24.0)

        assert prediction.score == pytest.approx(0.9)

    def test_history_mean_and_confidence(self):
        """Testet Mittelwert und Konfidenz aus Samples."""
        predictor = PerformancePredictor()
        for _ in range(3):
            predictor.record("GPU-0", "training", 0.8)

        prediction = predictor.predict("GPU-0", "training")

        assert prediction.score == 0.8
        assert prediction.confidence == pytest.approx(0.375)
        assert prediction.samples == 3
        assert prediction.source == "history"

    def test_spread_lowers_confidence(self):
        """Testet: Streuung senkt die Konfidenz."""
        steady, noisy = PerformancePredictor(), PerformancePredictor()
        for value in (0.5, 0.5, 0.5, 0.5):
            steady.record("GPU-0", "x", value)
        for value in (0.2, 0.8, 0.2, 0.8):
            noisy.record("GPU-0", "x", value)

        assert noisy.predict("GPU-0", "x").confidence < steady.predict("GPU-0", "x").confidence

    def test_record_clamps(self):
        """Testet Begrenzung auf [0, 1]."""
        predictor = PerformancePredictor()

        assert predictor.record("GPU-0", "x", 1.7) == 1.0
        assert predictor.record("GPU-0", "x", -0.2) == 0.0

    def test_bounded_samples(self):
        """Testet maximale Sample-Anzahl."""
        predictor = PerformancePredictor(max_samples=3)
        for value in (0.1, 0.2, 0.3, 0.4, 0.5):
            predictor.record("GPU-0", "x", value)

        assert predictor.sample_count("GPU-0", "x") == 3
        assert predictor.predict("GPU-0", "x").score == pytest.approx(0.4)

    def test_samples_persisted(self):
        """Testet Nachladen aus dem Store."""
        store = MemoryStore()
        PerformancePredictor(store).record("GPU-abc", "inference", 0.6)

        prediction = PerformancePredictor(store).predict("GPU-abc", "inference")

        assert prediction.samples == 1
        assert prediction.score == 0.6
