"""
Performance-Vorhersage
======================

Schaetzt die Leistung eines Geraets fuer einen Workload-Typ aus
historischen Samples. Ohne Historie gibt es einen heuristischen
Default mit niedriger Konfidenz statt eines Fehlers.
"""

import statistics
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple

from hecate.core.logging import get_logger
from hecate.core.utils import clamp
from hecate.gpu.models import GpuStatus
from hecate.persistence.store import KeyValueStore

logger = get_logger(__name__)


@dataclass
class Prediction:
    score: float
    confidence: float
    samples: int = 0
    source: str = "history"

    def to_dict(self) -> Dict[str, object]:
        return {
            "score": self.score,
            "confidence": self.confidence,
            "samples": self.samples,
            "source": self.source,
        }


class PerformancePredictor:
    """
    Vorhersage aus (Geraet, Workload)-Samples.

    Samples werden unter der stabilen Geraete-UID gespeichert und beim
    ersten Zugriff aus dem Store nachgeladen.
    """

    HEURISTIC_CONFIDENCE = 0.1
    CONFIDENCE_HALF_SAMPLES = 5
    REFERENCE_VRAM_GB = 24.0

    def __init__(self, store: Optional[KeyValueStore] = None, max_samples: int = 100):
        self.store = store
        self.max_samples = max_samples
        self._samples: Dict[Tuple[str, str], Deque[float]] = {}
        self._lock = threading.Lock()

    def _series(self, uid: str, workload: str) -> Deque[float]:
        key = (uid, workload)
        series = self._samples.get(key)
        if series is None:
            loaded = (
                self.store.get_samples(uid, workload, self.max_samples)
                if self.store is not None
                else []
            )
            series = deque(loaded, maxlen=self.max_samples)
            self._samples[key] = series
        return series

    def record(self, uid: str, workload: str, score: float) -> float:
        """Speichert ein Sample (auf [0, 1] begrenzt)"""
        score = clamp(float(score), 0.0, 1.0)
        with self._lock:
            self._series(uid, workload).append(score)
        if self.store is not None:
            self.store.add_sample(uid, workload, score)
        logger.debug("Performance sample recorded", device=uid, workload=workload, score=score)
        return score

    def sample_count(self, uid: str, workload: str) -> int:
        with self._lock:
            return len(self._series(uid, workload))

    def predict(
        self,
        uid: str,
        workload: str,
        status: Optional[GpuStatus] = None,
        vram_gb: Optional[float] = None,
    ) -> Prediction:
        """
        Liefert (score, confidence).

        Die Konfidenz steigt mit der Anzahl der Samples und sinkt mit
        ihrer Streuung.
        """
        with self._lock:
            series = list(self._series(uid, workload))

        if series:
            n = len(series)
            mean = statistics.fmean(series)
            std = statistics.pstdev(series) if n > 1 else 0.0
            confidence = (n / (n + self.CONFIDENCE_HALF_SAMPLES)) * (1.0 - min(1.0, 2.0 * std))
            return Prediction(
                score=round(mean, 4),
                confidence=round(clamp(confidence, 0.0, 1.0), 4),
                samples=n,
                source="history",
            )

        if vram_gb is None and status is None:
            score = 0.5
        else:
            vram_part = min(1.0, (vram_gb or 0.0) / self.REFERENCE_VRAM_GB)
            util = status.utilization if status is not None and status.utilization is not None else 50.0
            score = 0.5 * vram_part + 0.5 * (1.0 - util / 100.0)
        return Prediction(
            score=round(clamp(score, 0.0, 1.0), 4),
            confidence=self.HEURISTIC_CONFIDENCE,
            samples=0,
            source="heuristic",
        )
