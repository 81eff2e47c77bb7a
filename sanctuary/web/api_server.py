"""
Sanctuary Operator Remote.

FastAPI backend hosting the control surface of one presentation. Provides
endpoints for slide navigation, rotation start/stop, rotation group
authoring, slide deletion and output window tracking, and pushes state
changes to connected browsers over a WebSocket.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..const import DEFAULT_ROTATION_INTERVAL, DEFAULT_SOCKET_PATH, DEFAULT_TRANSITION, DEFAULT_WEB_HOST, DEFAULT_WEB_PORT
from ..core.content_store import (
    ContentStoreError,
    PresentationStore,
    RotationGroupNotFoundError,
    SlideNotFoundError,
)
from ..core.models import RotationMode
from ..core.register_sync import RegisterSyncClient
from ..core.shared_register import SharedRegister
from ..surfaces.control import ControlSurface
from ..surfaces.keyboard import command_for_key

logger = logging.getLogger(__name__)


# Request models
class JumpRequest(BaseModel):
    """Request model for jumping to a slide."""

    index: int = Field(..., ge=0, description="Zero-based slide position")


class StartRotationRequest(BaseModel):
    """Request model for starting rotation."""

    group_id: Optional[str] = Field(None, description="Rotation group to run; omit to resume the last group")


class RotationGroupRequest(BaseModel):
    """Request model for creating a rotation group."""

    name: str = Field(..., min_length=1, description="Group name")
    slide_ids: List[str] = Field(..., min_length=1, description="Member slide ids in rotation order")
    interval_seconds: float = Field(DEFAULT_ROTATION_INTERVAL, gt=0, description="Seconds between advances")
    mode: RotationMode = Field(RotationMode.LOOP, description="loop or ping-pong")
    repeat: bool = Field(True, description="Wrap or reverse at the end instead of stopping")
    stop_on_interaction: bool = Field(True, description="Stop rotation on manual navigation")
    transition: str = Field(DEFAULT_TRANSITION, description="Transition name")


class RotationGroupUpdate(BaseModel):
    """Request model for editing a rotation group. Only the given fields change."""

    name: Optional[str] = Field(None, min_length=1)
    slide_ids: Optional[List[str]] = Field(None, min_length=1)
    interval_seconds: Optional[float] = Field(None, gt=0)
    mode: Optional[RotationMode] = None
    repeat: Optional[bool] = None
    stop_on_interaction: Optional[bool] = None
    transition: Optional[str] = None


class SystemStatus(BaseModel):
    """Current system status."""

    is_online: bool = Field(True, description="Server online status")
    presentation_id: Optional[str] = Field(None, description="Presentation under control")
    slide_index: int = Field(0, description="Currently displayed slide")
    slide_count: int = Field(0, description="Slides in the presentation")
    rotation_active: bool = Field(False, description="Whether rotation is running")
    output_open: bool = Field(False, description="Whether the output window is open")
    register_connected: bool = Field(False, description="Connected to the register sync service")
    uptime: float = Field(0.0, description="Server uptime in seconds")
    memory_usage: float = Field(0.0, description="Memory usage percentage")
    cpu_usage: float = Field(0.0, description="CPU usage percentage")
    active_connections: int = Field(0, description="Connected WebSocket clients")


app = FastAPI(
    title="Sanctuary Operator Remote",
    description="Live slide control for worship presentations",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state
server_config: Dict[str, Any] = {
    "presentation_id": None,
    "presentations_dir": None,
    "socket_path": DEFAULT_SOCKET_PATH,
}
content_store: Optional[PresentationStore] = None
register: Optional[SharedRegister] = None
control_surface: Optional[ControlSurface] = None
start_time = time.time()


# WebSocket connections for live updates
class ConnectionManager:
    """Manages WebSocket connections for live updates."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket connected: {len(self.active_connections)} total connections")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info(f"WebSocket disconnected: {len(self.active_connections)} total connections")

    async def broadcast(self, message: dict):
        """Broadcast message to all connected clients."""
        if not self.active_connections:
            return

        disconnected = []
        for connection in self.active_connections:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send WebSocket message: {e}")
                disconnected.append(connection)

        for connection in disconnected:
            self.disconnect(connection)


manager = ConnectionManager()


def configure_server(
    presentation_id: str,
    presentations_dir: Optional[Union[str, Path]] = None,
    socket_path: str = DEFAULT_SOCKET_PATH,
    content: Optional[PresentationStore] = None,
    shared_register: Optional[SharedRegister] = None,
) -> None:
    """
    Set what the server controls. Must be called before startup.

    ``content`` and ``shared_register`` override the presentation directory
    and the register sync service.
    """
    global content_store, register
    server_config.update(
        {"presentation_id": presentation_id, "presentations_dir": presentations_dir, "socket_path": socket_path}
    )
    content_store = content
    register = shared_register


def get_surface() -> ControlSurface:
    if control_surface is None or not control_surface.is_open:
        raise HTTPException(status_code=503, detail="Control surface not ready")
    return control_surface


def _schedule_broadcast(message: dict) -> None:
    """Queue a WebSocket broadcast from a synchronous surface callback."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    loop.create_task(manager.broadcast(message))


def _on_surface_render(surface: ControlSurface) -> None:
    if not surface.is_open:
        return
    _schedule_broadcast({"type": "state_updated", "state": surface.state_dict(), "timestamp": time.time()})


def _on_surface_notice(message: str) -> None:
    _schedule_broadcast({"type": "notice", "message": message, "timestamp": time.time()})


@app.on_event("startup")
async def startup_event():
    """Open the control surface on application startup."""
    global content_store, register, control_surface

    presentation_id = server_config["presentation_id"]
    if not presentation_id:
        raise RuntimeError("No presentation configured; call configure_server() first")

    if content_store is None:
        content_store = PresentationStore(server_config["presentations_dir"])
        content_store.load_all()

    if register is None:
        client = RegisterSyncClient(
            server_config["socket_path"], client_name="web_interface", loop=asyncio.get_running_loop()
        )
        if client.connect():
            logger.info("Connected to register synchronization service")
        else:
            logger.warning("Failed to connect to register synchronization service")
        register = client

    control_surface = ControlSurface(presentation_id, content_store, register)
    control_surface.on_render = _on_surface_render
    control_surface.on_notice = _on_surface_notice
    await control_surface.open()
    logger.info(f"Operator remote controlling presentation {presentation_id}")


@app.on_event("shutdown")
async def shutdown_event():
    """Close the control surface on application shutdown."""
    global control_surface

    if control_surface:
        await control_surface.close()
        control_surface = None

    if isinstance(register, RegisterSyncClient):
        register.disconnect()
        logger.info("Disconnected from register synchronization service")


def _state_response(surface: ControlSurface) -> Dict[str, Any]:
    return {"slide_index": surface.current_index, "state": surface.state_dict()}


# Status endpoints
@app.get("/api/status", response_model=SystemStatus)
async def get_system_status():
    """Get current system status."""
    status = SystemStatus(
        uptime=time.time() - start_time,
        active_connections=len(manager.active_connections),
        presentation_id=server_config["presentation_id"],
    )

    try:
        status.memory_usage = psutil.virtual_memory().percent
        status.cpu_usage = psutil.cpu_percent(interval=None)
    except Exception as e:
        logger.warning(f"Failed to read system metrics: {e}")

    if control_surface is not None and control_surface.is_open:
        status.slide_index = control_surface.current_index
        status.slide_count = control_surface.slide_count
        status.rotation_active = control_surface.rotating
        status.output_open = control_surface.output_open
    status.register_connected = getattr(register, "connected", register is not None)

    return status


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": __version__,
        "active_connections": len(manager.active_connections),
    }


@app.get("/api/state")
async def get_state():
    """Full control surface state."""
    return get_surface().state_dict()


# Navigation endpoints
@app.post("/api/control/next")
async def next_slide():
    surface = get_surface()
    await surface.advance()
    return _state_response(surface)


@app.post("/api/control/previous")
async def previous_slide():
    surface = get_surface()
    await surface.back()
    return _state_response(surface)


@app.post("/api/control/first")
async def first_slide():
    surface = get_surface()
    await surface.first()
    return _state_response(surface)


@app.post("/api/control/last")
async def last_slide():
    surface = get_surface()
    await surface.last()
    return _state_response(surface)


@app.post("/api/control/exit")
async def exit_presentation():
    """Operator left the live view; stops rotation if its group stops on interaction."""
    surface = get_surface()
    await surface.exit()
    surface.exit_requested = False
    return {"status": "exited", "state": surface.state_dict()}


@app.post("/api/control/jump")
async def jump_to_slide(request: JumpRequest):
    surface = get_surface()
    try:
        await surface.jump_to(request.index)
    except IndexError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return _state_response(surface)


@app.post("/api/keys/{key}")
async def press_key(key: str):
    """Forward a key press from a remote keyboard."""
    surface = get_surface()
    if command_for_key(key) is None:
        raise HTTPException(status_code=404, detail=f"Key not bound: {key}")
    await surface.handle_key(key)
    surface.exit_requested = False
    return _state_response(surface)


# Rotation endpoints
@app.post("/api/rotation/start")
async def start_rotation(request: Optional[StartRotationRequest] = None):
    surface = get_surface()
    group_id = request.group_id if request else None
    if await surface.start_rotation(group_id):
        return {"status": "started", "group_id": surface.scheduler.group_id, "state": surface.state_dict()}
    message = surface.notices[-1] if surface.notices else "Rotation could not be started"
    return {"status": "error", "message": message}


@app.post("/api/rotation/stop")
async def stop_rotation():
    surface = get_surface()
    was_active = await surface.stop_rotation()
    return {"status": "stopped" if was_active else "idle", "state": surface.state_dict()}


@app.get("/api/rotation-groups")
async def list_rotation_groups():
    surface = get_surface()
    return {
        "groups": [group.to_dict() for group in surface.rotation_groups],
        "selected_group_id": surface.selected_group_id,
    }


@app.post("/api/rotation-groups")
async def create_rotation_group(request: RotationGroupRequest):
    surface = get_surface()
    try:
        group = surface.create_rotation_group(
            name=request.name,
            slide_ids=request.slide_ids,
            interval_seconds=request.interval_seconds,
            mode=request.mode,
            repeat=request.repeat,
            stop_on_interaction=request.stop_on_interaction,
            transition=request.transition,
        )
    except SlideNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Unknown slide: {e.args[0]}") from e
    except ContentStoreError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    await manager.broadcast({"type": "state_updated", "state": surface.state_dict(), "timestamp": time.time()})
    return {"status": "created", "group": group.to_dict()}


@app.put("/api/rotation-groups/{group_id}")
async def update_rotation_group(group_id: str, request: RotationGroupUpdate):
    surface = get_surface()
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    try:
        group = await surface.update_rotation_group(group_id, **changes)
    except RotationGroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Rotation group not found: {group_id}") from e
    except SlideNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Unknown slide: {e.args[0]}") from e
    except (ContentStoreError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return {"status": "updated", "group": group.to_dict()}


@app.delete("/api/rotation-groups/{group_id}")
async def delete_rotation_group(group_id: str):
    surface = get_surface()
    try:
        group = await surface.delete_rotation_group(group_id)
    except RotationGroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Rotation group not found: {group_id}") from e
    return {"status": "deleted", "group_id": group.id}


# Content endpoints
@app.delete("/api/slides/{slide_id}")
async def delete_slide(slide_id: str):
    surface = get_surface()
    try:
        removal = await surface.delete_slide(slide_id)
    except SlideNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Slide not found: {slide_id}") from e
    return {
        "status": "deleted",
        "slide_id": removal.slide.id,
        "pruned_group_ids": removal.pruned_group_ids,
        "deleted_group_ids": removal.deleted_group_ids,
        "state": surface.state_dict(),
    }


@app.post("/api/output/open")
async def open_output():
    surface = get_surface()
    surface.mark_output_opened()
    return {"status": "open", "output_open": surface.output_open}


# WebSocket endpoint for live updates
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for real-time updates."""
    await manager.connect(websocket)

    try:
        state = control_surface.state_dict() if control_surface and control_surface.is_open else None
        await websocket.send_json({"type": "initial_state", "state": state, "timestamp": time.time()})

        while True:
            message = await websocket.receive_json()
            logger.debug(f"Received WebSocket message: {message}")

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.disconnect(websocket)


def create_app():
    """Create and configure the FastAPI application."""
    return app


def run_server(
    host: str = DEFAULT_WEB_HOST,
    port: int = DEFAULT_WEB_PORT,
    presentation_id: Optional[str] = None,
    presentations_dir: Optional[Union[str, Path]] = None,
    socket_path: str = DEFAULT_SOCKET_PATH,
):
    """Run the API server."""
    if presentation_id is None:
        raise ValueError("presentation_id is required")
    configure_server(presentation_id, presentations_dir=presentations_dir, socket_path=socket_path)

    uvicorn.run(
        app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
        access_log=False,
    )


if __name__ == "__main__":
    import argparse

    from ..utils.logging_utils import setup_process_logging

    parser = argparse.ArgumentParser(description="Sanctuary Operator Remote")
    parser.add_argument("presentation_id", help="Presentation to control")
    parser.add_argument("--host", default=DEFAULT_WEB_HOST, help="Host to bind to")
    parser.add_argument("--port", type=int, default=DEFAULT_WEB_PORT, help="Port to bind to")
    parser.add_argument("--presentations-dir", help="Directory of presentation JSON documents")
    parser.add_argument("--socket-path", default=DEFAULT_SOCKET_PATH, help="Register sync service socket")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args()
    setup_process_logging("web", debug=args.debug, console_level=logging.DEBUG if args.debug else logging.INFO)

    run_server(
        host=args.host,
        port=args.port,
        presentation_id=args.presentation_id,
        presentations_dir=args.presentations_dir,
        socket_path=args.socket_path,
    )
