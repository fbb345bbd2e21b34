"""
Hecate REST API

FastAPI-basierte REST API und WebSocket-Streams für Hecate.
"""

from hecate.api.app import create_app
from hecate.api.routes import router, stream_router

__all__ = ["create_app", "router", "stream_router"]
