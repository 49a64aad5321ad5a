"""
Liveness and readiness endpoints for the controller process.

/healthz answers as long as the event loop is serving requests; /readyz
answers once the manager has synced its field index and started workers.
"""

import logging
from collections.abc import Callable

import uvicorn
from fastapi import FastAPI, HTTPException

logger = logging.getLogger(__name__)


def create_probe_app(is_ready: Callable[[], bool]) -> FastAPI:
    """
    Create the probe application.

    Args:
        is_ready: Callable reporting whether the controller is ready
    """
    app = FastAPI(title="leviathan-build-controller probes")

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        if not is_ready():
            raise HTTPException(status_code=503, detail="controller not ready")
        return {"status": "ok"}

    return app


def create_probe_server(
    is_ready: Callable[[], bool], port: int, host: str = "0.0.0.0"
) -> uvicorn.Server:
    """Create a uvicorn server for the probe app, to be run with serve()."""
    config = uvicorn.Config(
        create_probe_app(is_ready), host=host, port=port, log_level="warning"
    )
    logger.info(f"Health probes listening on {host}:{port}")
    return uvicorn.Server(config)
