"""
Hecate API Application

FastAPI-Anwendung für GPU-Verwaltung und Telemetrie-Streams.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hecate import __version__
from hecate.api.routes import router, stream_router
from hecate.core.config import get_config
from hecate.core.exceptions import (
    BackendUnavailable,
    ConfigurationError,
    ConflictError,
    HecateError,
    LoadBalancerUnavailable,
    NotFoundError,
    OutOfRangeError,
    ValidationError,
)
from hecate.core.logging import get_logger, setup_logging
from hecate.gpu.manager import GpuManager, get_gpu_manager
from hecate.hardware.inventory import HardwareInventory
from hecate.optimization.pipeline import OptimizationContext
from hecate.telemetry.aggregator import TelemetryAggregator

logger = get_logger(__name__)

STATUS_CODES: dict[type, int] = {
    NotFoundError: 404,
    ConflictError: 409,
    OutOfRangeError: 422,
    ValidationError: 422,
    ConfigurationError: 422,
    BackendUnavailable: 503,
    LoadBalancerUnavailable: 503,
}


async def hecate_error_handler(request: Request, exc: HecateError) -> JSONResponse:
    """Bildet Hecate-Fehler auf HTTP-Statuscodes ab."""
    status_code = next(
        (code for error_type, code in STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, **exc.to_dict())
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(
    manager: Optional[GpuManager] = None,
    aggregator: Optional[TelemetryAggregator] = None,
    context: Optional[OptimizationContext] = None,
    inventory: Optional[HardwareInventory] = None,
    start_background: bool = True,
) -> FastAPI:
    """
    Erstellt die FastAPI-Anwendung.

    Args:
        manager: GPU-Manager (Default: neu erzeugt)
        aggregator: Telemetrie-Aggregator (Default: neu erzeugt)
        context: Optimierungs-Kontext für die Profil-Abfrage
        inventory: Festes Inventar statt Hardware-Erkennung
        start_background: Monitoring und Telemetrie im Lifespan starten
    """
    config = get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """Application Lifespan Handler."""
        # Startup
        setup_logging()
        logger.info("Hecate API starting", version=__version__)
        if start_background:
            app.state.manager.start_monitoring()
            app.state.aggregator.start()

        yield

        # Shutdown
        if start_background:
            app.state.aggregator.stop()
            app.state.manager.stop_monitoring()
        logger.info("Hecate API shutting down")

    app = FastAPI(
        title="Hecate API",
        description="GPU-Verwaltung und Live-Telemetrie für Hecate",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    manager = manager or get_gpu_manager()
    app.state.manager = manager
    app.state.aggregator = aggregator or TelemetryAggregator(manager, config=config)
    app.state.context = context or OptimizationContext.from_config(config)
    app.state.inventory = inventory

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(HecateError, hecate_error_handler)

    # Router einbinden
    app.include_router(router, prefix="/api/v1")
    app.include_router(stream_router)

    return app
