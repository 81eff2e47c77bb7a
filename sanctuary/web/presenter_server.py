"""
Sanctuary Presenter Remote.

Small FastAPI app served from inside the presenter surface process. The
presenter surface, its rotation scheduler and its local elapsed timer all
live on that process's event loop, so the routes drive them directly:
navigation, rotation start/stop and group selection, and timer
start/pause/reset.
"""

import logging
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..const import DEFAULT_PRESENTER_PORT, DEFAULT_WEB_HOST
from ..core.content_store import RotationGroupNotFoundError
from ..surfaces.keyboard import command_for_key
from ..surfaces.presenter import PresenterSurface

logger = logging.getLogger(__name__)


class JumpRequest(BaseModel):
    """Request model for jumping to a slide."""

    index: int = Field(..., ge=0, description="Zero-based slide position")


class GroupRequest(BaseModel):
    """Request model naming a rotation group."""

    group_id: Optional[str] = Field(None, description="Rotation group; omit for the selected group")


app = FastAPI(
    title="Sanctuary Presenter Remote",
    description="Notes, preview and timer control for the presenter view",
    version=__version__,
    docs_url="/api/presenter/docs",
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state
presenter_surface: Optional[PresenterSurface] = None
_opened_by_app = False


def attach_presenter(surface: Optional[PresenterSurface]) -> None:
    """Set the presenter surface the routes drive."""
    global presenter_surface
    presenter_surface = surface


def get_presenter() -> PresenterSurface:
    if presenter_surface is None or not presenter_surface.is_open:
        raise HTTPException(status_code=503, detail="Presenter surface not ready")
    return presenter_surface


@app.on_event("startup")
async def startup_event():
    """Open the attached surface unless the hosting process already did."""
    global _opened_by_app
    if presenter_surface is not None and not presenter_surface.is_open:
        await presenter_surface.open()
        _opened_by_app = True


@app.on_event("shutdown")
async def shutdown_event():
    global _opened_by_app
    if presenter_surface is not None and _opened_by_app:
        await presenter_surface.close()
    _opened_by_app = False


def _state_response(surface: PresenterSurface) -> Dict[str, Any]:
    return {"slide_index": surface.current_index, "state": surface.state_dict()}


@app.get("/api/presenter/state")
async def get_state():
    return get_presenter().state_dict()


# Navigation endpoints
@app.post("/api/presenter/next")
async def next_slide():
    surface = get_presenter()
    await surface.advance()
    return _state_response(surface)


@app.post("/api/presenter/previous")
async def previous_slide():
    surface = get_presenter()
    await surface.back()
    return _state_response(surface)


@app.post("/api/presenter/first")
async def first_slide():
    surface = get_presenter()
    await surface.first()
    return _state_response(surface)


@app.post("/api/presenter/last")
async def last_slide():
    surface = get_presenter()
    await surface.last()
    return _state_response(surface)


@app.post("/api/presenter/jump")
async def jump_to_slide(request: JumpRequest):
    surface = get_presenter()
    try:
        await surface.jump_to(request.index)
    except IndexError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return _state_response(surface)


@app.post("/api/presenter/keys/{key}")
async def press_key(key: str):
    """Forward a key press. Escape stops rotation but does not end the process."""
    surface = get_presenter()
    if command_for_key(key) is None:
        raise HTTPException(status_code=404, detail=f"Key not bound: {key}")
    await surface.handle_key(key)
    surface.exit_requested = False
    return _state_response(surface)


# Rotation endpoints
@app.post("/api/presenter/rotation/select")
async def select_group(request: GroupRequest):
    surface = get_presenter()
    try:
        surface.select_group(request.group_id)
    except RotationGroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Rotation group not found: {request.group_id}") from e
    return _state_response(surface)


@app.post("/api/presenter/rotation/start")
async def start_rotation(request: Optional[GroupRequest] = None):
    surface = get_presenter()
    group_id = request.group_id if request else None
    if await surface.start_rotation(group_id):
        return {"status": "started", "group_id": surface.scheduler.group_id, "state": surface.state_dict()}
    message = surface.notices[-1] if surface.notices else "Rotation could not be started"
    return {"status": "error", "message": message}


@app.post("/api/presenter/rotation/stop")
async def stop_rotation():
    surface = get_presenter()
    was_active = await surface.stop_rotation()
    return {"status": "stopped" if was_active else "idle", "state": surface.state_dict()}


# Timer endpoints
@app.post("/api/presenter/timer/{action}")
async def timer_action(action: str):
    """start, pause, toggle or reset the local elapsed timer."""
    surface = get_presenter()
    timer = surface.timer
    if action == "start":
        timer.start()
    elif action == "pause":
        timer.pause()
    elif action == "toggle":
        timer.toggle()
    elif action == "reset":
        timer.reset()
    else:
        raise HTTPException(status_code=404, detail=f"Unknown timer action: {action}")
    return {"elapsed": timer.format(), "running": timer.running}


def create_presenter_server(
    surface: PresenterSurface, host: str = DEFAULT_WEB_HOST, port: int = DEFAULT_PRESENTER_PORT
) -> uvicorn.Server:
    """Build a uvicorn server for the presenter remote, to be served on the surface's loop."""
    attach_presenter(surface)
    config = uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False)
    return uvicorn.Server(config)


async def serve_presenter(server: uvicorn.Server) -> None:
    """Serve until ``server.should_exit`` is set. A failed bind is logged, not fatal to the surface."""
    try:
        await server.serve()
    except SystemExit:
        logger.error(f"Presenter remote could not start on {server.config.host}:{server.config.port}")
