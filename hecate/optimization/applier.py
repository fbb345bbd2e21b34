"""
Optimization Applier
====================

Wendet einen TuningPlan kategorienweise auf das System an und kann ihn
zuruecknehmen.

- Vor jeder Mutation wird der bisherige Zustand der Kategorie gesichert.
- Jede Kategorie ist eine atomare Einheit: schlaegt sie fehl, wird genau
  diese Kategorie zurueckgesetzt, die anderen laufen weiter.
- Der zuletzt angewendete Plan (Hash + Snapshot) liegt im Store; ein
  identischer, vollstaendig angewendeter Plan ist ein No-Op.

Alle Pfade werden relativ zu ``sysroot`` aufgeloest.
"""

import glob
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from hecate.core.exceptions import ApplyFailure, NotFoundError, ValidationError
from hecate.core.logging import LogContext, get_logger
from hecate.core.utils import now_utc
from hecate.optimization.plan import CATEGORIES, TuningPlan
from hecate.persistence.store import KeyValueStore

logger = get_logger(__name__)

LAST_APPLIED_KEY = "tuning.last_applied"


class CategoryStatus(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    PLANNED = "planned"


class ApplyStatus(str, Enum):
    APPLIED = "applied"
    PARTIAL = "partial"
    REJECTED = "rejected"
    UNCHANGED = "unchanged"
    DRY_RUN = "dry_run"


@dataclass
class CategoryOutcome:
    category: str
    status: CategoryStatus
    reason: Optional[str] = None
    reboot_required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "status": self.status.value,
            "reason": self.reason,
            "reboot_required": self.reboot_required,
        }


@dataclass
class ApplyResult:
    """Ergebnis eines apply()-Aufrufs mit Ergebnis pro Kategorie"""
    plan_hash: str
    profile: str
    outcomes: Dict[str, CategoryOutcome] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def status(self) -> ApplyStatus:
        if self.dry_run:
            return ApplyStatus.DRY_RUN
        statuses = [o.status for o in self.outcomes.values()]
        failed = statuses.count(CategoryStatus.FAILED)
        if failed == len(statuses):
            return ApplyStatus.REJECTED
        if failed:
            return ApplyStatus.PARTIAL
        if all(s == CategoryStatus.UNCHANGED for s in statuses):
            return ApplyStatus.UNCHANGED
        return ApplyStatus.APPLIED

    @property
    def reboot_required(self) -> bool:
        return any(
            o.reboot_required and o.status == CategoryStatus.APPLIED
            for o in self.outcomes.values()
        )

    @property
    def failed(self) -> List[str]:
        return [c for c, o in self.outcomes.items() if o.status == CategoryStatus.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_hash": self.plan_hash,
            "profile": self.profile,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "reboot_required": self.reboot_required,
            "outcomes": {c: o.to_dict() for c, o in self.outcomes.items()},
        }


# =============================================================================
# Kategorie-Handler
# =============================================================================


class CategoryHandler(ABC):
    """Mechanismus fuer genau eine Tuning-Kategorie"""

    category: str = ""
    reboot_required: bool = False

    def __init__(self, sysroot: Path):
        self.sysroot = Path(sysroot)

    def path(self, path: str) -> Path:
        return self.sysroot / path.lstrip("/")

    @abstractmethod
    def snapshot(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Sichert den Zustand, den apply() veraendern wuerde"""

    @abstractmethod
    def apply(self, values: Dict[str, Any]) -> None:
        """Wendet die Werte an; wirft ApplyFailure oder OSError"""

    @abstractmethod
    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Stellt einen Snapshot exakt wieder her"""

    # Gemeinsame Datei-Helfer

    def _read_optional(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def _restore_file(self, path: Path, content: Optional[str]) -> None:
        if content is None:
            if path.exists():
                path.unlink()
        else:
            self._write(path, content)


class ConfigFileHandler(CategoryHandler):
    """Kategorie, die ausschliesslich eine persistierte Konfigurationsdatei schreibt"""

    config_path: str = ""

    def snapshot(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {"file": self._read_optional(self.path(self.config_path))}

    def apply(self, values: Dict[str, Any]) -> None:
        self._write(self.path(self.config_path), self.render(values))

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self._restore_file(self.path(self.config_path), snapshot.get("file"))

    @abstractmethod
    def render(self, values: Dict[str, Any]) -> str:
        """Erzeugt den Dateiinhalt"""


class SysctlHandler(CategoryHandler):
    """Live-Schreiben nach /proc/sys plus persistiertes sysctl.d Drop-in"""

    category = "sysctl"
    config_path = "/etc/sysctl.d/99-hecate.conf"

    def _proc_path(self, key: str) -> Path:
        return self.path("/proc/sys/" + key.replace(".", "/"))

    def snapshot(self, values: Dict[str, Any]) -> Dict[str, Any]:
        live = {}
        for key in values:
            current = self._read_optional(self._proc_path(key))
            live[key] = current.strip() if current is not None else None
        return {"live": live, "file": self._read_optional(self.path(self.config_path))}

    def apply(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            target = self._proc_path(key)
            if not target.exists():
                raise ApplyFailure(f"sysctl {key} not available", category=self.category)
            target.write_text(f"{value}\n", encoding="utf-8")
        lines = ["# Managed by hecate"] + [f"{k} = {v}" for k, v in sorted(values.items())]
        self._write(self.path(self.config_path), "\n".join(lines) + "\n")

    def restore(self, snapshot: Dict[str, Any]) -> None:
        for key, value in snapshot.get("live", {}).items():
            if value is not None:
                self._proc_path(key).write_text(f"{value}\n", encoding="utf-8")
        self._restore_file(self.path(self.config_path), snapshot.get("file"))


class GovernorHandler(CategoryHandler):
    """Live cpufreq-Governor fuer alle CPUs"""

    category = "governor"

    def _governor_files(self) -> List[Path]:
        pattern = str(self.path("/sys/devices/system/cpu/cpu[0-9]*/cpufreq/scaling_governor"))
        return [Path(p) for p in sorted(glob.glob(pattern))]

    def snapshot(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {
            str(p.relative_to(self.sysroot)): p.read_text(encoding="utf-8").strip()
            for p in self._governor_files()
        }

    def apply(self, values: Dict[str, Any]) -> None:
        governor = values["cpufreq.governor"]
        files = self._governor_files()
        if not files:
            raise ApplyFailure("cpufreq not available", category=self.category)
        for gov_file in files:
            available = self._read_optional(gov_file.parent / "scaling_available_governors")
            if available is not None and governor not in available.split():
                raise ApplyFailure(
                    f"governor {governor} not supported", category=self.category
                )
            gov_file.write_text(f"{governor}\n", encoding="utf-8")

    def restore(self, snapshot: Dict[str, Any]) -> None:
        for rel, value in snapshot.items():
            self.path(rel).write_text(f"{value}\n", encoding="utf-8")


class IoSchedulerHandler(CategoryHandler):
    """Live I/O-Scheduler und Read-Ahead fuer physische Block-Geraete"""

    category = "io_scheduler"
    _skip_prefixes = ("loop", "ram", "zram", "dm-", "sr", "md")

    def _devices(self) -> List[Path]:
        block = self.path("/sys/block")
        if not block.is_dir():
            return []
        return [
            d for d in sorted(block.iterdir())
            if not d.name.startswith(self._skip_prefixes) and (d / "queue" / "scheduler").exists()
        ]

    @staticmethod
    def _active(scheduler_text: str) -> str:
        # "[mq-deadline] kyber none" -> "mq-deadline"
        text = scheduler_text.strip()
        if "[" in text:
            return text[text.index("[") + 1:text.index("]")]
        return text

    def snapshot(self, values: Dict[str, Any]) -> Dict[str, Any]:
        state = {}
        for dev in self._devices():
            queue = dev / "queue"
            read_ahead = self._read_optional(queue / "read_ahead_kb")
            state[dev.name] = {
                "scheduler": self._active((queue / "scheduler").read_text(encoding="utf-8")),
                "read_ahead_kb": read_ahead.strip() if read_ahead is not None else None,
            }
        return state

    def apply(self, values: Dict[str, Any]) -> None:
        devices = self._devices()
        if not devices:
            raise ApplyFailure("no block devices with scheduler", category=self.category)
        scheduler = values["block.scheduler"]
        for dev in devices:
            queue = dev / "queue"
            options = (queue / "scheduler").read_text(encoding="utf-8")
            available = options.replace("[", " ").replace("]", " ").split()
            if "[" in options and scheduler not in available:
                raise ApplyFailure(
                    f"scheduler {scheduler} not available on {dev.name}",
                    category=self.category,
                )
            (queue / "scheduler").write_text(f"{scheduler}\n", encoding="utf-8")
            (queue / "read_ahead_kb").write_text(
                f"{values['block.read_ahead_kb']}\n", encoding="utf-8"
            )

    def restore(self, snapshot: Dict[str, Any]) -> None:
        for name, state in snapshot.items():
            queue = self.path(f"/sys/block/{name}/queue")
            (queue / "scheduler").write_text(f"{state['scheduler']}\n", encoding="utf-8")
            if state.get("read_ahead_kb") is not None:
                (queue / "read_ahead_kb").write_text(
                    f"{state['read_ahead_kb']}\n", encoding="utf-8"
                )


class KernelParamsHandler(ConfigFileHandler):
    """Bootloader Drop-in; wirksam erst nach Neustart"""

    category = "kernel_params"
    config_path = "/etc/default/grub.d/99-hecate.cfg"
    reboot_required = True

    def render(self, values: Dict[str, Any]) -> str:
        params = " ".join(f"{k}={v}" for k, v in values.items())
        return (
            "# Managed by hecate\n"
            f'GRUB_CMDLINE_LINUX_DEFAULT="$GRUB_CMDLINE_LINUX_DEFAULT {params}"\n'
        )


class ZramHandler(ConfigFileHandler):
    """zram-generator Konfiguration"""

    category = "zram"
    config_path = "/etc/systemd/zram-generator.conf"

    def render(self, values: Dict[str, Any]) -> str:
        return (
            "# Managed by hecate\n"
            "[zram0]\n"
            f"zram-size = {values['zram.size_mb']}\n"
            f"compression-algorithm = {values['zram.algorithm']}\n"
        )


class GpuPowerModeHandler(ConfigFileHandler):
    """GPU-Vorgaben fuer den Accelerator Manager (YAML)"""

    category = "gpu_power_mode"
    config_path = "/etc/hecate/gpu.conf"

    def render(self, values: Dict[str, Any]) -> str:
        data = {
            "power_mode": values["gpu.power_mode"],
            "driver": values["gpu.driver"],
            "persistence_mode": bool(values["gpu.persistence_mode"]),
        }
        return "# Managed by hecate\n" + yaml.safe_dump(data, sort_keys=True)


HANDLER_TYPES = (
    SysctlHandler,
    ZramHandler,
    GovernorHandler,
    IoSchedulerHandler,
    GpuPowerModeHandler,
    KernelParamsHandler,
)


def default_handlers(sysroot: Path | str) -> Dict[str, CategoryHandler]:
    return {cls.category: cls(Path(sysroot)) for cls in HANDLER_TYPES}


# =============================================================================
# Applier
# =============================================================================


class OptimizationApplier:
    """
    Wendet Tuning-Plaene an und nimmt sie zurueck.

    Example:
        applier = OptimizationApplier(store, sysroot="/")
        result = applier.apply(plan)
        applier.rollback(result)
    """

    def __init__(
        self,
        store: KeyValueStore,
        sysroot: Path | str = "/",
        handlers: Optional[Dict[str, CategoryHandler]] = None,
    ):
        self.store = store
        self.sysroot = Path(sysroot)
        self.handlers = handlers or default_handlers(self.sysroot)
        missing = [c for c in CATEGORIES if c not in self.handlers]
        if missing:
            raise ValidationError(f"No handler for categories: {missing}")

    def last_applied(self) -> Optional[Dict[str, Any]]:
        return self.store.get(LAST_APPLIED_KEY)

    def apply(self, plan: TuningPlan, dry_run: bool = False) -> ApplyResult:
        """
        Wendet den Plan an.

        Args:
            plan: Vollstaendiger TuningPlan
            dry_run: Nur die geplanten Ergebnisse ermitteln, nichts veraendern

        Returns:
            ApplyResult mit Ergebnis pro Kategorie
        """
        plan.validate()
        plan_hash = plan.content_hash()
        result = ApplyResult(plan_hash=plan_hash, profile=plan.profile.value, dry_run=dry_run)
        previous = self.last_applied() or {}
        prev_outcomes = previous.get("outcomes", {})
        prev_hashes = previous.get("category_hashes", {})
        prev_snapshot = previous.get("snapshot", {})

        with LogContext(plan_hash=plan_hash[:12]):
            if previous.get("plan_hash") == plan_hash and previous.get("complete"):
                for category in CATEGORIES:
                    result.outcomes[category] = CategoryOutcome(
                        category, CategoryStatus.UNCHANGED
                    )
                logger.info("Tuning plan already applied", profile=plan.profile.value)
                return result

            snapshot: Dict[str, Any] = dict(prev_snapshot)
            category_hashes: Dict[str, str] = {}

            for category in CATEGORIES:
                handler = self.handlers[category]
                values = plan.categories[category]
                category_hashes[category] = plan.category_hash(category)
                unchanged = (
                    prev_hashes.get(category) == category_hashes[category]
                    and prev_outcomes.get(category) in (
                        CategoryStatus.APPLIED.value, CategoryStatus.UNCHANGED.value
                    )
                )
                if unchanged:
                    result.outcomes[category] = CategoryOutcome(
                        category, CategoryStatus.UNCHANGED
                    )
                    continue
                if dry_run:
                    result.outcomes[category] = CategoryOutcome(
                        category,
                        CategoryStatus.PLANNED,
                        reboot_required=handler.reboot_required,
                    )
                    continue

                outcome, before = self._apply_category(handler, values)
                result.outcomes[category] = outcome
                # Nur der urspruengliche Zustand wird fuer rollback() behalten
                if outcome.status == CategoryStatus.APPLIED and category not in snapshot:
                    snapshot[category] = before

            if dry_run:
                logger.info("Dry run finished", profile=plan.profile.value)
                return result

            record = {
                "plan_hash": plan_hash,
                "profile": plan.profile.value,
                "category_hashes": category_hashes,
                "outcomes": {c: o.status.value for c, o in result.outcomes.items()},
                "snapshot": snapshot,
                "complete": not result.failed,
                "applied_at": now_utc().isoformat(),
            }
            self.store.set(LAST_APPLIED_KEY, record)
            logger.info(
                "Tuning plan applied",
                profile=plan.profile.value,
                status=result.status.value,
                failed=result.failed,
                reboot_required=result.reboot_required,
            )
        return result

    def _apply_category(
        self, handler: CategoryHandler, values: Dict[str, Any]
    ) -> tuple[CategoryOutcome, Dict[str, Any]]:
        category = handler.category
        try:
            before = handler.snapshot(values)
        except OSError as e:
            logger.error("Snapshot failed", category=category, error=str(e))
            return CategoryOutcome(category, CategoryStatus.FAILED, reason=f"snapshot: {e}"), {}

        try:
            handler.apply(values)
        except (ApplyFailure, OSError) as e:
            reason = e.message if isinstance(e, ApplyFailure) else str(e)
            try:
                handler.restore(before)
            except OSError as restore_error:
                reason = f"{reason}; restore failed: {restore_error}"
            logger.error("Category apply failed", category=category, reason=reason)
            return CategoryOutcome(category, CategoryStatus.FAILED, reason=reason), before

        outcome = CategoryOutcome(
            category, CategoryStatus.APPLIED, reboot_required=handler.reboot_required
        )
        return outcome, before

    def rollback(self, result: Optional[ApplyResult] = None) -> Dict[str, CategoryOutcome]:
        """
        Stellt den Zustand vor dem ersten Apply wieder her.

        Args:
            result: Optional das ApplyResult, das zurueckgenommen werden soll

        Raises:
            NotFoundError: wenn kein angewendeter Plan gespeichert ist
            ValidationError: wenn ``result`` nicht zum gespeicherten Plan passt
        """
        record = self.last_applied()
        if record is None:
            raise NotFoundError("tuning snapshot", LAST_APPLIED_KEY)
        if result is not None and not result.dry_run and result.plan_hash != record["plan_hash"]:
            raise ValidationError(
                "Apply result does not match the last applied plan",
                details={"expected": record["plan_hash"], "got": result.plan_hash},
            )

        outcomes: Dict[str, CategoryOutcome] = {}
        remaining: Dict[str, Any] = {}
        for category in reversed(CATEGORIES):
            if category not in record["snapshot"]:
                continue
            handler = self.handlers[category]
            try:
                handler.restore(record["snapshot"][category])
            except OSError as e:
                remaining[category] = record["snapshot"][category]
                outcomes[category] = CategoryOutcome(category, CategoryStatus.FAILED, reason=str(e))
                logger.error("Category rollback failed", category=category, error=str(e))
                continue
            outcomes[category] = CategoryOutcome(
                category, CategoryStatus.APPLIED, reboot_required=handler.reboot_required
            )

        if remaining:
            record["snapshot"] = remaining
            record["complete"] = False
            self.store.set(LAST_APPLIED_KEY, record)
        else:
            self.store.delete(LAST_APPLIED_KEY)
        logger.info("Tuning rolled back", categories=list(outcomes), failed=list(remaining))
        return outcomes
