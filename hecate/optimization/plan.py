"""
Tuning-Plan
===========

Abbildung Tunable-Schluessel -> Wert, gruppiert nach Kategorie.
Schluessel sind planweit eindeutig.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from hecate.core.exceptions import ValidationError
from hecate.core.utils import canonical_json, hash_content
from hecate.hardware.profiles import SystemProfile
from hecate.optimization.tables import TUNING_TABLE_VERSION


# Reihenfolge = Anwendungsreihenfolge
CATEGORIES: Tuple[str, ...] = (
    "sysctl",
    "zram",
    "governor",
    "io_scheduler",
    "gpu_power_mode",
    "kernel_params",
)

REQUIRED_KEYS: Dict[str, Tuple[str, ...]] = {
    "kernel_params": ("mitigations", "processor.max_cstate", "transparent_hugepage"),
    "sysctl": ("vm.swappiness", "vm.dirty_ratio", "vm.dirty_background_ratio"),
    "governor": ("cpufreq.governor",),
    "io_scheduler": ("block.scheduler", "block.read_ahead_kb"),
    "gpu_power_mode": ("gpu.power_mode", "gpu.driver", "gpu.persistence_mode"),
    "zram": ("zram.size_mb", "zram.algorithm"),
}


@dataclass
class TuningPlan:
    """Konkreter Satz von OS/Treiber-Einstellungen fuer Profil + Inventar"""
    profile: SystemProfile
    version: str = TUNING_TABLE_VERSION
    categories: Dict[str, Dict[str, Any]] = field(
        default_factory=lambda: {c: {} for c in CATEGORIES}
    )

    def add(self, category: str, key: str, value: Any) -> None:
        """Fuegt einen Eintrag hinzu. Doppelte Schluessel sind ein Fehler."""
        if category not in self.categories:
            raise ValidationError(f"Unknown tuning category: {category}", field="category")
        owner = self.category_of(key)
        if owner is not None:
            raise ValidationError(
                f"Duplicate tuning key {key} (already in {owner})", field=key
            )
        self.categories[category][key] = value

    def category_of(self, key: str) -> Optional[str]:
        for category, values in self.categories.items():
            if key in values:
                return category
        return None

    def get(self, key: str, default: Any = None) -> Any:
        category = self.category_of(key)
        if category is None:
            return default
        return self.categories[category][key]

    def keys(self) -> List[str]:
        return [k for values in self.categories.values() for k in values]

    def missing_keys(self) -> List[str]:
        return [
            key
            for category, keys in REQUIRED_KEYS.items()
            for key in keys
            if key not in self.categories.get(category, {})
        ]

    def validate(self) -> None:
        """Prueft Vollstaendigkeit des Plans"""
        missing = self.missing_keys()
        if missing:
            raise ValidationError(
                f"Tuning plan incomplete: {', '.join(missing)}",
                details={"missing": missing},
            )

    def category_hash(self, category: str) -> str:
        return hash_content(canonical_json(self.categories.get(category, {})))

    def content_hash(self) -> str:
        """sha256 ueber die kanonische Darstellung (Profil, Version, Werte)"""
        return hash_content(canonical_json({
            "profile": self.profile.value,
            "version": self.version,
            "categories": self.categories,
        }))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile.value,
            "version": self.version,
            "categories": {c: dict(v) for c, v in self.categories.items()},
            "hash": self.content_hash(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TuningPlan":
        plan = cls(
            profile=SystemProfile(data["profile"]),
            version=data.get("version", TUNING_TABLE_VERSION),
        )
        for category, values in data.get("categories", {}).items():
            # Unbekannte Kategorien werden ignoriert
            if category not in plan.categories:
                continue
            for key, value in values.items():
                plan.add(category, key, value)
        return plan
