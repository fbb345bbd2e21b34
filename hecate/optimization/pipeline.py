"""
Optimierungs-Ablauf
===================

Erkennen -> Klassifizieren -> Aufloesen -> Anwenden. Der gesamte Zustand
wird ueber einen expliziten ``OptimizationContext`` gereicht.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from hecate.core.config import Config, get_config
from hecate.core.logging import get_logger
from hecate.hardware.detector import HardwareDetector
from hecate.hardware.inventory import HardwareInventory
from hecate.hardware.profiles import SystemProfile, classify_with_reason
from hecate.optimization.applier import ApplyResult, OptimizationApplier
from hecate.optimization.plan import TuningPlan
from hecate.optimization.resolver import resolve
from hecate.persistence.store import KeyValueStore, get_store

logger = get_logger(__name__)


@dataclass
class OptimizationContext:
    """Explizite Abhaengigkeiten eines Optimierungslaufs"""
    store: KeyValueStore
    sysroot: Path = Path("/")
    profile_override: Optional[SystemProfile] = None
    mitigations_override: Optional[str] = None
    dry_run: bool = False
    detector: Optional[HardwareDetector] = None

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        store: Optional[KeyValueStore] = None,
        **overrides: Any,
    ) -> "OptimizationContext":
        config = config or get_config()
        profile = overrides.pop("profile_override", None) or config.tuning.profile
        return cls(
            store=store or get_store(),
            sysroot=Path(overrides.pop("sysroot", None) or config.tuning.sysroot),
            profile_override=SystemProfile.parse(profile) if isinstance(profile, str) else profile,
            mitigations_override=overrides.pop("mitigations_override", None) or config.tuning.mitigations,
            **overrides,
        )

    def get_detector(self) -> HardwareDetector:
        if self.detector is None:
            self.detector = HardwareDetector(sysroot=self.sysroot)
        return self.detector

    def get_applier(self) -> OptimizationApplier:
        return OptimizationApplier(self.store, sysroot=self.sysroot)


@dataclass
class OptimizationReport:
    inventory: HardwareInventory
    profile: SystemProfile
    reason: str
    plan: TuningPlan
    result: Optional[ApplyResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inventory": self.inventory.to_dict(),
            "profile": self.profile.value,
            "reason": self.reason,
            "plan": self.plan.to_dict(),
            "result": self.result.to_dict() if self.result else None,
        }


def plan_for(
    context: OptimizationContext,
    inventory: Optional[HardwareInventory] = None,
) -> OptimizationReport:
    """Erkennen, klassifizieren und aufloesen, ohne anzuwenden"""
    inventory = inventory or context.get_detector().detect()
    if context.profile_override is not None:
        profile, reason = context.profile_override, "profile override"
    else:
        profile, reason = classify_with_reason(inventory)
    plan = resolve(profile, inventory, mitigations_override=context.mitigations_override)
    logger.info("Profile selected", profile=profile.value, reason=reason)
    return OptimizationReport(inventory=inventory, profile=profile, reason=reason, plan=plan)


def run_optimization(
    context: OptimizationContext,
    inventory: Optional[HardwareInventory] = None,
) -> OptimizationReport:
    """
    Fuehrt den vollstaendigen Ablauf aus.

    Raises:
        ProbeFailure: (fatal) wenn keine CPU erkannt wurde
    """
    report = plan_for(context, inventory)
    report.result = context.get_applier().apply(report.plan, dry_run=context.dry_run)
    return report


def rollback_optimization(context: OptimizationContext) -> Dict[str, Any]:
    """Nimmt den zuletzt angewendeten Plan zurueck"""
    outcomes = context.get_applier().rollback()
    return {c: o.to_dict() for c, o in outcomes.items()}
