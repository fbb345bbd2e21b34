"""
Load Balancing
==============

Scoring-Strategien fuer die Verteilung neuer Workloads auf GPUs.
Jede Strategie liefert pro Geraet einen Score in [0, 1]; gewaehlt wird
der hoechste Score, bei Gleichstand der niedrigste Index.
"""

from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from hecate.core.exceptions import ConfigurationError, LoadBalancerUnavailable
from hecate.gpu.models import GpuDevice, GpuStatus, LoadBalanceAssignment


class LoadBalancingStrategy(str, Enum):
    LEAST_UTILIZED = "least_utilized"
    THERMAL_OPTIMIZED = "thermal_optimized"
    POWER_EFFICIENT = "power_efficient"
    MEMORY_OPTIMIZED = "memory_optimized"
    PERFORMANCE_OPTIMIZED = "performance_optimized"
    CUSTOM = "custom"


Candidate = Tuple[GpuDevice, GpuStatus]
PerformanceScorer = Callable[[GpuDevice, GpuStatus, str], float]


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))


# Fehlende Auslastung oder Temperatur zaehlt als schlechtester Fall
def least_utilized_score(status: GpuStatus) -> float:
    if status.utilization is None:
        return 0.0
    return _unit(1.0 - status.utilization / 100.0)


def thermal_score(status: GpuStatus) -> float:
    if status.temperature is None:
        return 0.0
    return _unit(1.0 - status.temperature / 100.0)


def power_score(status: GpuStatus) -> float:
    if status.power_draw is None or not status.power_limit:
        return 0.5
    return _unit(1.0 - status.power_draw / status.power_limit)


def memory_score(status: GpuStatus) -> float:
    if not status.memory_total:
        return 0.5
    return _unit(1.0 - status.memory_used / status.memory_total)


_STATUS_SCORERS: Dict[LoadBalancingStrategy, Callable[[GpuStatus], float]] = {
    LoadBalancingStrategy.LEAST_UTILIZED: least_utilized_score,
    LoadBalancingStrategy.THERMAL_OPTIMIZED: thermal_score,
    LoadBalancingStrategy.POWER_EFFICIENT: power_score,
    LoadBalancingStrategy.MEMORY_OPTIMIZED: memory_score,
}


class LoadBalancer:
    """
    Waehlt eine GPU fuer einen Workload.

    Args:
        strategy: Scoring-Strategie
        weights: Gewichte fuer CUSTOM (Strategie-Name -> Gewicht)
        performance_scorer: Score-Quelle fuer PERFORMANCE_OPTIMIZED
    """

    def __init__(
        self,
        strategy: LoadBalancingStrategy = LoadBalancingStrategy.LEAST_UTILIZED,
        weights: Optional[Dict[str, float]] = None,
        performance_scorer: Optional[PerformanceScorer] = None,
    ):
        self.strategy = LoadBalancingStrategy(strategy)
        self.weights = dict(weights or {})
        self.performance_scorer = performance_scorer
        if self.strategy == LoadBalancingStrategy.CUSTOM:
            self._validate_weights(self.weights)

    @staticmethod
    def _validate_weights(weights: Dict[str, float]) -> None:
        allowed = {s.value for s in LoadBalancingStrategy if s != LoadBalancingStrategy.CUSTOM}
        unknown = set(weights) - allowed
        if unknown:
            raise ConfigurationError(
                f"Unknown strategies in custom weights: {sorted(unknown)}",
                details={"allowed": sorted(allowed)},
            )
        if any(w < 0 for w in weights.values()) or sum(weights.values()) <= 0:
            raise ConfigurationError("Custom weights must be non-negative with a positive sum")

    def score(
        self,
        device: GpuDevice,
        status: GpuStatus,
        workload_type: str,
        strategy: Optional[LoadBalancingStrategy] = None,
    ) -> float:
        strategy = LoadBalancingStrategy(strategy or self.strategy)
        if strategy in _STATUS_SCORERS:
            return _STATUS_SCORERS[strategy](status)
        if strategy == LoadBalancingStrategy.PERFORMANCE_OPTIMIZED:
            if self.performance_scorer is None:
                return 0.5
            return _unit(self.performance_scorer(device, status, workload_type))

        # CUSTOM: gewichtetes Mittel, normiert auf die Gesamtgewichtung
        total = sum(self.weights.values())
        combined = sum(
            weight * self.score(device, status, workload_type, LoadBalancingStrategy(name))
            for name, weight in self.weights.items()
            if weight > 0
        )
        return _unit(combined / total)

    def assign(
        self,
        candidates: Sequence[Candidate],
        workload_type: str,
        strategy: Optional[LoadBalancingStrategy] = None,
    ) -> LoadBalanceAssignment:
        """
        Bewertet alle Kandidaten und waehlt den besten.

        Args:
            candidates: (Geraet, Status)-Paare der gesunden GPUs
            workload_type: Art des Workloads (z.B. "training", "inference")
            strategy: optionale Strategie fuer diesen Aufruf

        Raises:
            LoadBalancerUnavailable: Keine Kandidaten
        """
        if not candidates:
            raise LoadBalancerUnavailable("No healthy GPU available for assignment")

        strategy = LoadBalancingStrategy(strategy or self.strategy)
        if strategy == LoadBalancingStrategy.CUSTOM and strategy != self.strategy:
            self._validate_weights(self.weights)

        scores = {
            device.index: self.score(device, status, workload_type, strategy)
            for device, status in candidates
        }
        ranked: List[Tuple[int, float]] = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        best_index, best_score = ranked[0]
        if len(ranked) > 1:
            confidence = _unit(best_score - ranked[1][1])
        else:
            confidence = 1.0

        return LoadBalanceAssignment(
            gpu_index=best_index,
            confidence=round(confidence, 4),
            reason=f"{strategy.value}: score {best_score:.2f} (best of {len(ranked)})",
            workload_type=workload_type,
            strategy=strategy.value,
            scores=scores,
        )
