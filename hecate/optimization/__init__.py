"""
Hecate Optimization
===================

Tuning-Tabellen, Resolver, Applier und der Optimierungs-Ablauf.
"""

from hecate.optimization.plan import CATEGORIES, REQUIRED_KEYS, TuningPlan
from hecate.optimization.resolver import resolve
from hecate.optimization.applier import (
    ApplyResult,
    ApplyStatus,
    CategoryOutcome,
    CategoryStatus,
    OptimizationApplier,
)
from hecate.optimization.pipeline import (
    OptimizationContext,
    OptimizationReport,
    plan_for,
    run_optimization,
    rollback_optimization,
)

__all__ = [
    "CATEGORIES",
    "REQUIRED_KEYS",
    "TuningPlan",
    "resolve",
    "ApplyResult",
    "ApplyStatus",
    "CategoryOutcome",
    "CategoryStatus",
    "OptimizationApplier",
    "OptimizationContext",
    "OptimizationReport",
    "plan_for",
    "run_optimization",
    "rollback_optimization",
]
