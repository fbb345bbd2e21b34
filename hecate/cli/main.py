"""
Hecate CLI

Kommandozeilen-Interface für Hecate. Reine Präsentationsschicht, die
Logik liegt im Kern.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hecate import __version__
from hecate.core.config import Config, get_config, set_config
from hecate.core.exceptions import HecateError
from hecate.core.logging import get_logger, setup_logging
from hecate.core.utils import format_bytes
from hecate.gpu.manager import GpuManager
from hecate.gpu.models import gpu_summary
from hecate.optimization.applier import CategoryStatus
from hecate.optimization.pipeline import (
    OptimizationContext,
    plan_for,
    rollback_optimization,
    run_optimization,
)
from hecate.persistence.store import get_store

app = typer.Typer(
    name="hecate",
    help="Hecate - Hardware-adaptive Optimierung und GPU-Verwaltung",
    no_args_is_help=True,
)

console = Console()

OK = "[green][OK][/green]"
FAIL = "[red][FAIL][/red]"
WARN = "[yellow][WARN][/yellow]"
BULLET = "*"

STATUS_STYLE = {
    CategoryStatus.APPLIED: "green",
    CategoryStatus.UNCHANGED: "dim",
    CategoryStatus.PLANNED: "cyan",
    CategoryStatus.FAILED: "red",
}


def version_callback(value: bool) -> None:
    if value:
        console.print(f"Hecate version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Zeigt die Version an",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Debug-Modus aktivieren",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML-Konfigurationsdatei",
        exists=True,
    ),
) -> None:
    """Hecate - Hardware-adaptive Optimierung und GPU-Verwaltung"""
    if config_file is not None:
        set_config(Config.from_yaml(config_file))
    if debug:
        config = get_config()
        logging_config = config.logging.model_copy(update={"level": "DEBUG"})
        set_config(config.model_copy(update={"debug": True, "logging": logging_config}))
    setup_logging(format_type="human")


def _context(
    profile: Optional[str] = None,
    mitigations: Optional[str] = None,
    sysroot: Optional[Path] = None,
    dry_run: bool = False,
) -> OptimizationContext:
    return OptimizationContext.from_config(
        get_config(),
        store=get_store(),
        profile_override=profile,
        mitigations_override=mitigations,
        sysroot=sysroot,
        dry_run=dry_run,
    )


def _fail(error: HecateError) -> None:
    console.print(f"\n{FAIL} {error.message}")
    for key, value in error.details.items():
        console.print(f"  {BULLET} {key}: {value}")
    raise typer.Exit(1)


@app.command()
def detect(
    sysroot: Optional[Path] = typer.Option(None, "--sysroot", help="Wurzel der Systempfade"),
) -> None:
    """Erkennt die Hardware und zeigt das gewählte Profil."""
    try:
        report = plan_for(_context(sysroot=sysroot))
    except HecateError as e:
        _fail(e)
        return

    inventory = report.inventory
    table = Table(title="Hardware-Inventar")
    table.add_column("Eigenschaft", style="cyan")
    table.add_column("Wert", style="green")
    table.add_row("CPU", f"{inventory.cpu_vendor or '?'} {inventory.cpu_model or ''}".strip())
    table.add_row("CPU-Generation", str(inventory.cpu_generation or "?"))
    table.add_row("Kerne / Threads", f"{inventory.cpu_cores or '?'} / {inventory.cpu_threads or '?'}")
    table.add_row("RAM", f"{inventory.ram_gb or '?'} GB")
    table.add_row("Storage", inventory.throughput_class)
    for gpu in inventory.gpus:
        table.add_row("GPU", f"{gpu.name} ({gpu.vram_gb or '?'} GB)")
    table.add_row("Profil", f"[bold]{report.profile.value}[/bold]")
    table.add_row("Begründung", report.reason)
    console.print(table)

    for error in inventory.probe_errors:
        console.print(f"{WARN} {error.get('message')}")


@app.command()
def optimize(
    profile: Optional[str] = typer.Option(
        None, "--profile", "-p", help="Profil erzwingen (ai, pro, gaming, creator, dev, standard)"
    ),
    mitigations: Optional[str] = typer.Option(
        None, "--mitigations", help="Mitigations überschreiben (auto, off, auto,nosmt)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Nur anzeigen, nichts ändern"),
    sysroot: Optional[Path] = typer.Option(None, "--sysroot", help="Wurzel der Systempfade"),
) -> None:
    """Wendet den Tuning-Plan für das erkannte Profil an."""
    logger = get_logger(__name__)
    try:
        report = run_optimization(_context(profile, mitigations, sysroot, dry_run))
    except HecateError as e:
        logger.error("Optimization failed", **e.to_dict())
        _fail(e)
        return

    result = report.result
    console.print(f"\n[bold]Profil:[/bold] {report.profile.value} ({report.reason})")
    console.print(f"[bold]Plan:[/bold] {result.plan_hash[:12]}\n")

    table = Table(title="Tuning-Kategorien")
    table.add_column("Kategorie", style="cyan")
    table.add_column("Status")
    table.add_column("Werte")
    table.add_column("Hinweis")
    for category, outcome in result.outcomes.items():
        style = STATUS_STYLE[outcome.status]
        values = ", ".join(f"{k}={v}" for k, v in report.plan.categories.get(category, {}).items())
        table.add_row(
            category,
            f"[{style}]{outcome.status.value}[/{style}]",
            values,
            outcome.reason or "",
        )
    console.print(table)

    if result.reboot_required:
        console.print(f"\n{WARN} Neustart erforderlich (Kernel-Parameter)")
    if result.failed:
        console.print(f"\n{FAIL} Status: {result.status.value}")
        raise typer.Exit(1)
    console.print(f"\n{OK} Status: {result.status.value}")


@app.command()
def rollback(
    sysroot: Optional[Path] = typer.Option(None, "--sysroot", help="Wurzel der Systempfade"),
) -> None:
    """Nimmt den zuletzt angewendeten Tuning-Plan zurück."""
    try:
        outcomes = rollback_optimization(_context(sysroot=sysroot))
    except HecateError as e:
        _fail(e)
        return

    failed = False
    for category, outcome in outcomes.items():
        if outcome["status"] == CategoryStatus.FAILED.value:
            failed = True
            console.print(f"{FAIL} {category}: {outcome['reason']}")
        else:
            console.print(f"{OK} {category}")
    if failed:
        raise typer.Exit(1)


@app.command()
def gpus() -> None:
    """Zeigt alle erkannten GPUs mit einem aktuellen Sample."""
    manager = GpuManager(store=get_store())
    try:
        devices = manager.detect_gpus()
        if not devices:
            console.print(f"{WARN} Keine GPU erkannt")
            return
        manager.poll_once()

        table = Table(title="GPUs")
        table.add_column("Index", style="cyan")
        table.add_column("Vendor")
        table.add_column("VRAM", style="green")
        table.add_column("Status")
        for device, status in manager.device_statuses():
            table.add_row(
                str(device.index),
                device.vendor,
                format_bytes(device.vram_total),
                gpu_summary(device, status),
            )
        console.print(table)
    finally:
        manager.shutdown()


@app.command()
def assign(
    workload_type: str = typer.Argument(..., help="Workload-Typ, z.B. training oder inference"),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Scoring-Strategie"),
) -> None:
    """Wählt die GPU für einen neuen Workload."""
    manager = GpuManager(store=get_store())
    try:
        manager.detect_gpus()
        manager.poll_once()
        manager.enable_load_balancing(strategy)
        assignment = manager.assign_workload(workload_type)
    except HecateError as e:
        _fail(e)
        return
    finally:
        manager.shutdown()

    console.print(
        f"{OK} GPU {assignment.gpu_index} "
        f"(Konfidenz {assignment.confidence:.2f}): {assignment.reason}"
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host-Adresse"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Auto-Reload aktivieren"),
) -> None:
    """Startet den API-Server mit Telemetrie-Stream."""
    from hecate.api.server import run_server

    config = get_config()
    console.print(
        f"\n[bold]Hecate API Server[/bold] auf "
        f"http://{host or config.api.host}:{port or config.api.port}\n"
    )
    run_server(host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
