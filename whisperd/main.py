"""
whisperd FastAPI application.

Provides a small REST API around the supervised whisper.cpp server: status,
start/stop, health, resource usage and recent output. The server is started
on application startup (unless WHISPER_AUTOSTART=false) and always stopped on
shutdown.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from .config import ServerConfig, config
from .errors import (
    AlreadyRunningError,
    ConfigurationError,
    ReadinessTimeoutError,
    SpawnError,
    StartCancelledError,
)
from .health import check_health
from .process import ServerState, WhisperServer

# Configure logging with rotation
log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

file_handler = RotatingFileHandler(
    config.supervisor_log,
    maxBytes=config.log_max_bytes,
    backupCount=config.log_backup_count,
)
file_handler.setFormatter(log_formatter)

console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)

logging.basicConfig(
    level=logging.INFO,
    handlers=[file_handler, console_handler],
)
logger = logging.getLogger(__name__)


class OutputBuffer:
    """Keeps the most recent output lines of the managed server."""

    def __init__(self, maxlen: int = 1000):
        self._lines: deque = deque(maxlen=maxlen)

    def __call__(self, stream: str, level: str, message: str):
        self._lines.append({
            "timestamp": datetime.now().isoformat(),
            "stream": stream,
            "level": level,
            "message": message,
        })

    def tail(self, lines: int) -> list[dict]:
        return list(self._lines)[-lines:]


def build_server(output: OutputBuffer) -> WhisperServer:
    """Create the supervisor from environment settings."""
    return WhisperServer(ServerConfig.from_settings(config), on_output=output)


async def _autostart(server: WhisperServer):
    try:
        await asyncio.to_thread(server.start)
    except AlreadyRunningError:
        pass
    except Exception as e:
        logger.error(f"Autostart of whisper server failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting whisperd...")

    output = OutputBuffer()
    app.state.output = output
    app.state.server = None
    app.state.config_error = None

    try:
        app.state.server = build_server(output)
    except ConfigurationError as e:
        logger.error(f"Whisper server is not configured: {e}")
        app.state.config_error = str(e)

    startup_task = None
    if app.state.server and config.autostart:
        startup_task = asyncio.create_task(_autostart(app.state.server))

    yield

    logger.info("Shutting down whisperd...")
    if app.state.server:
        await asyncio.to_thread(app.state.server.stop)
    if startup_task:
        await startup_task


app = FastAPI(
    title="whisperd",
    description="Supervisor for a local whisper.cpp server",
    version="0.1.0",
    lifespan=lifespan,
)


class StatusResponse(BaseModel):
    configured: bool
    running: bool
    state: str
    address: str | None = None
    pid: int | None = None
    adopted: bool = False
    started_at: str | None = None
    error: str | None = None


def _get_server(request: Request) -> WhisperServer:
    server = getattr(request.app.state, "server", None)
    if server is None:
        error = getattr(request.app.state, "config_error", None) or "Whisper server not configured"
        raise HTTPException(status_code=503, detail=error)
    return server


@app.get("/api/status", response_model=StatusResponse)
async def get_status(request: Request):
    server = getattr(request.app.state, "server", None)
    if server is None:
        return StatusResponse(
            configured=False,
            running=False,
            state="unconfigured",
            error=getattr(request.app.state, "config_error", None),
        )
    return StatusResponse(configured=True, **server.status())


@app.post("/api/server/start")
async def start_server(request: Request):
    server = _get_server(request)

    try:
        await asyncio.to_thread(server.start)
    except AlreadyRunningError:
        raise HTTPException(status_code=409, detail="Whisper server already running")
    except SpawnError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ReadinessTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except StartCancelledError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"status": "started", "address": server.get_address(), "pid": server.pid}


@app.post("/api/server/stop")
async def stop_server(request: Request):
    server = _get_server(request)

    # A start still waiting for readiness counts as active and gets cancelled
    if server.state not in (ServerState.STARTING, ServerState.RUNNING):
        return {"status": "not_running"}

    await asyncio.to_thread(server.stop)
    return {"status": "stopped"}


@app.get("/api/server/health")
async def get_server_health(request: Request):
    server = _get_server(request)
    healthy = await asyncio.to_thread(
        check_health, server.get_address(), server.config.health_path, server.config.probe_timeout
    )
    return {"running": server.is_running(), "healthy": healthy, "address": server.get_address()}


@app.get("/api/server/metrics")
async def get_server_metrics(request: Request):
    server = _get_server(request)
    metrics = await asyncio.to_thread(server.get_metrics)
    if metrics is None:
        raise HTTPException(status_code=404, detail="No managed server process running")
    return metrics


@app.get("/api/server/logs")
async def get_server_logs(request: Request, lines: int = Query(100, ge=1, le=1000)):
    output: OutputBuffer = getattr(request.app.state, "output", None)
    return {"lines": output.tail(lines) if output else []}


@app.get("/api/supervisor/logs")
async def get_supervisor_logs(lines: int = Query(100, ge=1, le=1000)):
    """Tail of whisperd's own log file."""
    if not config.supervisor_log.exists():
        return {"lines": []}

    with open(config.supervisor_log) as f:
        all_lines = f.readlines()
    return {"lines": [line.rstrip("\n") for line in all_lines[-lines:]]}
