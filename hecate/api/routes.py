"""
Hecate API Routes

REST-Endpunkte für GPU-Abfragen und -Konfiguration sowie WebSocket-Streams
für Telemetrie-Snapshots und Alert-/Lebenszyklus-Events.
"""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from hecate import __version__
from hecate.core.config import get_config
from hecate.core.logging import get_logger
from hecate.gpu.manager import GpuManager
from hecate.gpu.models import FanCurve, GpuConfig, PowerMode, efficiency_score
from hecate.optimization.pipeline import OptimizationContext, plan_for
from hecate.protocols.events import Subscription
from hecate.telemetry.aggregator import TelemetryAggregator

logger = get_logger(__name__)

router = APIRouter()
stream_router = APIRouter()

STREAM_POLL_SECONDS = 1.0


def get_manager(request: Request) -> GpuManager:
    return request.app.state.manager


def get_aggregator(request: Request) -> TelemetryAggregator:
    return request.app.state.aggregator


# --- Schemas ---


class HealthResponse(BaseModel):
    """Health Check Response."""

    status: str = "healthy"
    version: str
    environment: str
    gpus: int
    monitoring: bool


class GpuConfigRequest(BaseModel):
    """Konfigurationsanfrage für eine GPU (unbekannte Felder werden ignoriert)."""

    power_mode: PowerMode = Field(default=PowerMode.BALANCED)
    power_limit: Optional[int] = Field(default=None, description="Leistungslimit in Watt")
    temp_target: Optional[int] = Field(default=None, description="Zieltemperatur in C")
    fan_curve: Optional[list[tuple[int, int]]] = Field(
        default=None, description="(Temperatur, Drehzahl %)-Stützstellen"
    )
    clock_offsets: dict[str, int] = Field(default_factory=dict)
    auto_load_balance: bool = True

    def to_config(self) -> GpuConfig:
        return GpuConfig(
            power_mode=self.power_mode,
            power_limit=self.power_limit,
            temp_target=self.temp_target,
            fan_curve=FanCurve(points=list(self.fan_curve)) if self.fan_curve else None,
            clock_offsets=dict(self.clock_offsets),
            auto_load_balance=self.auto_load_balance,
        )


class AssignRequest(BaseModel):
    """Anfrage zur Workload-Zuweisung."""

    workload_type: str = Field(..., description="z.B. 'training', 'inference'")
    strategy: Optional[str] = Field(default=None, description="Strategie nur für diesen Aufruf")


# --- System ---


@stream_router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(request: Request) -> HealthResponse:
    """Health Check Endpunkt."""
    manager = get_manager(request)
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=get_config().environment,
        gpus=len(manager.list_devices()),
        monitoring=manager.monitoring,
    )


@router.get("/system/profile", tags=["System"])
async def system_profile(request: Request) -> dict[str, Any]:
    """Inventar, erkanntes Profil und der daraus abgeleitete Tuning-Plan."""
    context: OptimizationContext = request.app.state.context
    report = await asyncio.to_thread(plan_for, context, request.app.state.inventory)
    return report.to_dict()


# --- GPUs ---


@router.get("/gpus", tags=["GPU"])
async def list_gpus(request: Request) -> dict[str, Any]:
    """Alle aktiven GPUs mit aktuellem Status."""
    manager = get_manager(request)
    return {
        "gpus": [
            {**device.to_dict(), "status": status.to_dict()}
            for device, status in manager.device_statuses()
        ],
        "load_balancing": manager.load_balancing_enabled,
    }


@router.get("/gpus/{index}", tags=["GPU"])
async def get_gpu(index: int, request: Request) -> dict[str, Any]:
    """Geräteinformationen, Status, Konfiguration und aktive Alerts einer GPU."""
    manager = get_manager(request)
    device = manager.get_device(index)
    config = manager.get_config(index)
    status = manager.get_status(index)
    return {
        "device": device.to_dict(),
        "status": status.to_dict(),
        "efficiency": None if status.stale else round(efficiency_score(status), 3),
        "config": config.to_dict() if config else None,
        "healthy": manager.is_healthy(index),
        "alerts": manager.active_alerts(index),
    }


@router.post("/gpus/{index}/config", tags=["GPU"])
async def configure_gpu(index: int, body: GpuConfigRequest, request: Request) -> dict[str, Any]:
    """Wendet eine Konfiguration an und liefert die effektiven Werte."""
    manager = get_manager(request)
    effective = await asyncio.to_thread(manager.apply_config, index, body.to_config())
    return {"index": index, "config": effective.to_dict()}


@router.post("/gpus/assign", tags=["GPU"])
async def assign_workload(body: AssignRequest, request: Request) -> dict[str, Any]:
    """Wählt die GPU für einen neuen Workload."""
    manager = get_manager(request)
    return manager.assign_workload(body.workload_type, body.strategy).to_dict()


@router.get("/gpus/{index}/prediction", tags=["GPU"])
async def predict(
    index: int,
    request: Request,
    workload_type: str = Query(..., description="Workload-Typ"),
) -> dict[str, Any]:
    """Performance-Vorhersage für (GPU, Workload)."""
    manager = get_manager(request)
    prediction = manager.predict_performance(index, workload_type)
    return {"index": index, "workload_type": workload_type, **prediction.to_dict()}


# --- Telemetrie ---


@router.get("/telemetry/history", tags=["Telemetry"])
async def telemetry_history(
    request: Request,
    limit: Optional[int] = Query(default=None, ge=0),
) -> dict[str, Any]:
    """Gespeicherte Snapshots in Aufnahmereihenfolge."""
    aggregator = get_aggregator(request)
    snapshots = aggregator.history.list(limit)
    return {
        "capacity": aggregator.history.capacity,
        "snapshots": [s.to_dict() for s in snapshots],
    }


# --- Streams ---


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    """
    Leitet Elemente einer Subscription an den Client weiter.

    Endet, wenn der Client trennt oder die Subscription serverseitig
    geschlossen wird (z.B. beim Stoppen des Monitorings).
    """
    await websocket.accept()
    receiver = asyncio.ensure_future(websocket.receive())
    getter = asyncio.ensure_future(asyncio.to_thread(subscription.get, STREAM_POLL_SECONDS))
    client_gone = False
    try:
        while True:
            done, _ = await asyncio.wait(
                {receiver, getter}, return_when=asyncio.FIRST_COMPLETED
            )
            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    client_gone = True
                    break
                # Nachrichten des Clients werden ignoriert
                receiver = asyncio.ensure_future(websocket.receive())
            if getter in done:
                item = getter.result()
                if item is not None:
                    await websocket.send_json(item.to_dict())
                elif subscription.closed:
                    break
                getter = asyncio.ensure_future(
                    asyncio.to_thread(subscription.get, STREAM_POLL_SECONDS)
                )
    except WebSocketDisconnect:
        client_gone = True
    finally:
        subscription.close()
        receiver.cancel()
        await asyncio.gather(receiver, getter, return_exceptions=True)
        logger.debug("Stream closed", subscription=subscription.id, dropped=subscription.dropped)

    if not client_gone:
        await websocket.close()


@stream_router.websocket("/ws")
async def telemetry_stream(websocket: WebSocket) -> None:
    """Ein Snapshot pro Nachricht; keine Wiederholung verpasster Snapshots."""
    aggregator: TelemetryAggregator = websocket.app.state.aggregator
    await _pump(websocket, aggregator.subscribe())


@stream_router.websocket("/ws/events")
async def event_stream(websocket: WebSocket) -> None:
    """Alert- und Lebenszyklus-Events."""
    manager: GpuManager = websocket.app.state.manager
    await _pump(websocket, manager.subscribe_events())
