"""
Hecate API Server

Startet den Hecate API Server.
"""

from typing import Optional

import uvicorn

from hecate.core.config import get_config


def run_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False,
) -> None:
    """Startet den API-Server."""
    config = get_config()

    uvicorn.run(
        "hecate.api.app:create_app",
        factory=True,
        host=host or config.api.host,
        port=port or config.api.port,
        reload=reload,
        log_level="debug" if config.debug else "info",
        log_config=None,
    )


if __name__ == "__main__":
    run_server()
