"""
Headless surface process.

Runs one output or presenter surface against the register sync service
until a shutdown event is set or the surface requests exit. Rendering goes
through LoggingRenderer, so the process logs every slide it would show.

A presenter process given a ``remote_port`` also serves the presenter
remote (sanctuary.web.presenter_server) on the same event loop; that is how
the presenter navigates, starts and stops rotation and runs its timer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Type, Union

from ..const import DEFAULT_SOCKET_PATH, DEFAULT_WEB_HOST, SLIDE_WIDTH
from ..core.content_store import PresentationStore
from ..core.register_sync import RegisterSyncClient
from .base import SurfaceController, SurfaceRole
from .control import ControlSurface
from .output import OutputSurface
from .presenter import PresenterSurface
from .renderer import LoggingRenderer

logger = logging.getLogger(__name__)

SURFACE_TYPES = {
    SurfaceRole.CONTROL: ControlSurface,
    SurfaceRole.OUTPUT: OutputSurface,
    SurfaceRole.PRESENTER: PresenterSurface,
}

SHUTDOWN_POLL_INTERVAL = 0.25


def surface_class(role: Union[str, SurfaceRole]) -> Type[SurfaceController]:
    return SURFACE_TYPES[SurfaceRole(role)]


async def _run(
    role: SurfaceRole,
    presentation_id: str,
    socket_path: str,
    presentations_dir: Optional[Union[str, Path]],
    width: float,
    ready_event,
    shutdown_event,
    remote_host: str,
    remote_port: Optional[int],
) -> int:
    content = PresentationStore(presentations_dir)
    content.load_all()
    # Fails early with PresentationNotFoundError
    content.get_presentation(presentation_id)

    loop = asyncio.get_running_loop()
    register = RegisterSyncClient(socket_path, client_name=f"{role.value}-{presentation_id}", loop=loop)
    if not register.connect():
        logger.warning("Register sync service unavailable; running with local state only")

    surface = surface_class(role)(
        presentation_id, content, register, renderer=LoggingRenderer(role.value), width=width
    )
    server = None
    serve_task = None
    try:
        await surface.open()

        if role is SurfaceRole.PRESENTER and remote_port is not None:
            from ..web.presenter_server import create_presenter_server, serve_presenter

            server = create_presenter_server(surface, host=remote_host, port=remote_port)
            serve_task = asyncio.create_task(serve_presenter(server))
            logger.info(f"Presenter remote at http://{remote_host}:{remote_port}/api/presenter/state")

        if ready_event is not None:
            ready_event.set()

        while not getattr(surface, "exit_requested", False):
            if shutdown_event is not None and shutdown_event.is_set():
                break
            await asyncio.sleep(SHUTDOWN_POLL_INTERVAL)
    finally:
        if server is not None:
            server.should_exit = True
            await serve_task
        await surface.close()
        register.disconnect()
    return 0


def run_surface(
    role: Union[str, SurfaceRole],
    presentation_id: str,
    socket_path: str = DEFAULT_SOCKET_PATH,
    presentations_dir: Optional[Union[str, Path]] = None,
    width: float = SLIDE_WIDTH,
    ready_event=None,
    shutdown_event=None,
    remote_host: str = DEFAULT_WEB_HOST,
    remote_port: Optional[int] = None,
) -> int:
    """
    Run a surface process until shutdown.

    Args:
        role: Surface variant to run
        presentation_id: Presentation to follow
        socket_path: Register sync service socket
        presentations_dir: Directory of presentation JSON documents
        width: Display width in pixels, used for the render scale
        ready_event: Optional multiprocessing.Event set once the surface is open
        shutdown_event: Optional multiprocessing.Event that stops the surface
        remote_host: Bind address of the presenter remote
        remote_port: Port of the presenter remote; None disables it (presenter only)

    Returns:
        Process exit code
    """
    role = SurfaceRole(role)
    logger.info(f"Starting {role.value} surface for presentation {presentation_id}")
    try:
        return asyncio.run(
            _run(
                role,
                presentation_id,
                socket_path,
                presentations_dir,
                width,
                ready_event,
                shutdown_event,
                remote_host,
                remote_port,
            )
        )
    except KeyboardInterrupt:
        logger.info(f"{role.value} surface interrupted")
        return 0
    except Exception as e:
        logger.error(f"{role.value} surface failed: {e}")
        return 1
