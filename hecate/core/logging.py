"""
Hecate Logging System

structlog über dem Standard-Logging: Hecate-Module, uvicorn und FastAPI
landen in denselben Handlern und im selben Format.

- ``structured``: eine JSON-Zeile pro Ereignis (Journal, Log-Shipper)
- ``human``: farbige Konsolenausgabe für die CLI
- optionale Log-Datei mit Rotation
"""

import logging
import logging.handlers
import socket
import sys
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from hecate.core.config import get_config

_HANDLER_MARK = "_hecate_handler"


def add_host(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Fügt Dienst- und Hostnamen hinzu."""
    event_dict.setdefault("service", "hecate")
    event_dict.setdefault("host", socket.gethostname())
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_host,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(format_type: str, stream: Any) -> Processor:
    if format_type == "structured":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=hasattr(stream, "isatty") and stream.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def _handler(handler: logging.Handler, renderer: Processor) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    setattr(handler, _HANDLER_MARK, True)
    return handler


def setup_logging(
    level: Optional[str] = None,
    format_type: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> None:
    """
    Initialisiert das Logging-System.

    Mehrfache Aufrufe ersetzen die zuvor installierten Handler.

    Args:
        level: Log-Level (DEBUG, INFO, WARNING, ERROR)
        format_type: 'structured' (JSON) oder 'human' (lesbar)
        log_file: Optionale Log-Datei, immer als JSON geschrieben
    """
    config = get_config().logging

    level = (level or config.level).upper()
    format_type = format_type or config.format
    log_file = log_file or config.file

    handlers = [_handler(logging.StreamHandler(sys.stderr), _renderer(format_type, sys.stderr))]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            _handler(
                logging.handlers.RotatingFileHandler(
                    path,
                    maxBytes=config.max_bytes,
                    backupCount=config.backup_count,
                    encoding="utf-8",
                ),
                structlog.processors.JSONRenderer(),
            )
        )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(existing)
        existing.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(getattr(logging, level))

    # uvicorn bringt eigene Handler mit
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """
    Erstellt einen Logger mit optionalem gebundenem Kontext.

    Example:
        logger = get_logger(__name__, gpu_index=0)
        logger.info("Sample recorded", temperature=71)
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


class LogContext:
    """
    Bindet Kontext für alle Log-Aufrufe innerhalb des Blocks.

    Example:
        with LogContext(plan_hash="ab12"):
            logger.info("Applying category")
    """

    def __init__(self, **context: Any):
        self.context = context

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
