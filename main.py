#!/usr/bin/env python3
"""
Sanctuary System Orchestrator.

Main entry point that coordinates startup and management of all system processes:
- Register Synchronization Service (Unix domain sockets)
- Web API Server (FastAPI, hosts the control surface)
- Output Surface Process (audience display)
- Presenter Surface Process (notes, next slide, timer)

This orchestrator ensures proper startup sequencing, monitors process health,
and handles graceful shutdown coordination.
"""

import argparse
import json
import logging
import multiprocessing
import os
import signal
import sys
import time
from typing import Dict, Optional

from sanctuary import paths
from sanctuary.const import DEFAULT_PRESENTER_PORT, DEFAULT_SOCKET_PATH, DEFAULT_WEB_HOST, DEFAULT_WEB_PORT, SLIDE_WIDTH
from sanctuary.core.content_store import PresentationNotFoundError, PresentationStore
from sanctuary.core.models import OutputState
from sanctuary.core.register_sync import RegisterSyncClient, RegisterSyncService
from sanctuary.core.shared_register import OutputChannel
from sanctuary.surfaces.base import SurfaceRole
from sanctuary.utils.logging_utils import get_app_start_time, set_app_start_time, setup_process_logging

logger = logging.getLogger(__name__)


def _setup_child_logging(surface: str, config: Dict) -> None:
    setup_process_logging(
        surface,
        log_file=config.get("log_file"),
        debug=config.get("debug", False),
        app_start_time=config.get("app_start_time"),
    )


def register_service_worker(config: Dict, ready_event, shutdown_event) -> None:
    """Register sync service process worker."""
    _setup_child_logging("register", config)
    try:
        service = RegisterSyncService(socket_path=config["socket_path"], store_path=config.get("register_store"))
        if not service.start():
            logger.error("Failed to start register sync service")
            return

        ready_event.set()

        while service.running and not shutdown_event.is_set():
            time.sleep(0.5)
        service.stop()

    except Exception as e:
        logger.error(f"Register sync service error: {e}")


def web_server_worker(config: Dict, ready_event) -> None:
    """Web server process worker."""
    _setup_child_logging("control", config)
    try:
        from sanctuary.web.api_server import run_server

        ready_event.set()

        # Blocks until shutdown
        run_server(
            host=config.get("web_host", DEFAULT_WEB_HOST),
            port=config.get("web_port", DEFAULT_WEB_PORT),
            presentation_id=config["presentation_id"],
            presentations_dir=config.get("presentations_dir"),
            socket_path=config["socket_path"],
        )

    except Exception as e:
        logger.error(f"Web server error: {e}")


def surface_worker(role: str, config: Dict, ready_event, shutdown_event) -> None:
    """Output or presenter surface process worker."""
    _setup_child_logging(role, config)
    from sanctuary.surfaces.runner import run_surface

    exit_code = run_surface(
        role,
        config["presentation_id"],
        socket_path=config["socket_path"],
        presentations_dir=config.get("presentations_dir"),
        width=config.get(f"{role}_width", SLIDE_WIDTH),
        ready_event=ready_event,
        shutdown_event=shutdown_event,
        remote_host=config.get("web_host", DEFAULT_WEB_HOST),
        remote_port=config.get("presenter_port") if role == SurfaceRole.PRESENTER.value else None,
    )
    if exit_code:
        logger.error(f"{role} surface exited with code {exit_code}")


class ProcessManager:
    """Manages all system processes and coordinates their lifecycle."""

    def __init__(self, config: Dict):
        """
        Initialize process manager.

        Args:
            config: System configuration dictionary
        """
        self.config = config
        self.processes: Dict[str, multiprocessing.Process] = {}
        self.shutdown_requested = False

        self.shutdown_event = multiprocessing.Event()

        # Clean up any orphaned Unix domain socket from previous runs
        self._cleanup_orphaned_socket()

        # Process startup coordination
        self.register_ready = multiprocessing.Event()
        self.web_server_ready = multiprocessing.Event()
        self.output_ready = multiprocessing.Event()
        self.presenter_ready = multiprocessing.Event()

    def start_all_processes(self) -> bool:
        """
        Start all system processes in proper sequence.

        Returns:
            True if all processes started successfully
        """
        try:
            logger.info("Starting Sanctuary system processes...")

            # Register service first (required by every surface)
            self._start_process(
                "register_service", register_service_worker, (self.config, self.register_ready, self.shutdown_event)
            )
            if not self.register_ready.wait(timeout=15):
                logger.error("Register sync service startup timeout")
                return False

            self._start_process("web_server", web_server_worker, (self.config, self.web_server_ready))

            if self.config.get("enable_output", True):
                self._start_process(
                    "output",
                    surface_worker,
                    (SurfaceRole.OUTPUT.value, self.config, self.output_ready, self.shutdown_event),
                )

            if self.config.get("enable_presenter", True):
                self._start_process(
                    "presenter",
                    surface_worker,
                    (SurfaceRole.PRESENTER.value, self.config, self.presenter_ready, self.shutdown_event),
                )

            logger.info("Waiting for all processes to initialize...")

            if not self.web_server_ready.wait(timeout=30):
                logger.error("Web server startup timeout")
                return False

            if "output" in self.processes:
                if not self.output_ready.wait(timeout=30):
                    logger.error("Output surface startup timeout")
                    return False
                self._announce_output_open()

            if "presenter" in self.processes and not self.presenter_ready.wait(timeout=30):
                logger.error("Presenter surface startup timeout")
                return False

            logger.info("All processes started successfully!")
            return True

        except Exception as e:
            logger.error(f"Failed to start processes: {e}")
            self.stop_all_processes()
            return False

    def _start_process(self, name: str, target, args) -> None:
        logger.info(f"Starting {name}...")
        process = multiprocessing.Process(target=target, args=args, name=name)
        process.start()
        self.processes[name] = process

    def _announce_output_open(self) -> None:
        """Tell the control surface that the output window is up."""
        self._publish_output_state(OutputState(open=True))

    def _announce_output_closed(self) -> None:
        """Send the closed signal for an output process that died without sending it."""
        self._publish_output_state(OutputState(open=False))

    def _publish_output_state(self, state: OutputState) -> None:
        client = RegisterSyncClient(self.config["socket_path"], client_name="orchestrator")
        if not client.connect():
            logger.warning("Could not announce output window state: register service unreachable")
            return
        try:
            OutputChannel(client, self.config["presentation_id"]).write(state)
        finally:
            client.disconnect()

    def stop_all_processes(self) -> None:
        """Stop all processes gracefully."""
        try:
            logger.info("Stopping all processes...")
            self.shutdown_requested = True
            self.shutdown_event.set()

            # Surfaces first so their last writes reach the register service
            process_order = ["presenter", "output", "web_server", "register_service"]

            for process_name in process_order:
                if process_name in self.processes:
                    process = self.processes[process_name]

                    if process.is_alive():
                        logger.info(f"Stopping {process_name}...")
                        if process_name == "web_server":
                            process.terminate()

                        process.join(timeout=10)

                        if process.is_alive():
                            logger.warning(f"Terminating {process_name}")
                            process.terminate()
                            process.join(timeout=5)

                        if process.is_alive():
                            logger.warning(f"Force killing {process_name}")
                            process.kill()
                            process.join(timeout=5)

            logger.info("All processes stopped")

        except Exception as e:
            logger.error(f"Error stopping processes: {e}")

    def monitor_processes(self) -> None:
        """Monitor process health until shutdown."""
        logger.info("Starting process monitoring loop...")
        start_time = time.time()
        last_log_time = start_time
        reported_dead = set()
        while not self.shutdown_requested:
            try:
                current_time = time.time()
                # Log every 10 minutes
                if current_time - last_log_time >= 600:
                    uptime_seconds = int(current_time - start_time)
                    hours = uptime_seconds // 3600
                    minutes = (uptime_seconds % 3600) // 60
                    seconds = uptime_seconds % 60
                    logger.info(f"Monitor loop - Uptime: {hours:02d}:{minutes:02d}:{seconds:02d}")
                    last_log_time = current_time

                self._check_processes(reported_dead)
                time.sleep(2)

            except Exception as e:
                logger.error(f"Error monitoring processes: {e}")
                time.sleep(2)

    def _check_processes(self, reported_dead: set) -> None:
        """Report processes that exited since the last check."""
        for name, process in self.processes.items():
            if process.is_alive() or name in reported_dead:
                continue
            reported_dead.add(name)
            if name == "register_service":
                logger.error("Register sync service has died; shutting down")
                self.shutdown_requested = True
                continue
            logger.error(f"Process {name} has exited (code {process.exitcode})")
            if name == "output" and not self.shutdown_requested:
                # A crashed or killed output process never wrote its closed signal
                self._announce_output_closed()

    def _cleanup_orphaned_socket(self) -> None:
        """Clean up any orphaned Unix domain socket from previous runs."""
        try:
            socket_path = self.config.get("socket_path", DEFAULT_SOCKET_PATH)
            if os.path.exists(socket_path):
                os.unlink(socket_path)
                logger.info("Cleaned up orphaned register socket")
        except OSError as e:
            logger.warning(f"Error cleaning up orphaned socket: {e}")

    def cleanup_all_resources(self) -> None:
        """Comprehensive cleanup of all system resources."""
        if self.shutdown_event.is_set():
            return

        logger.info("Performing comprehensive cleanup...")
        self.stop_all_processes()
        self._cleanup_orphaned_socket()


def setup_logging(debug: bool = False) -> str:
    """Setup logging for the orchestrator process. Returns the log file path."""
    set_app_start_time(time.time())

    log_file = paths.get_log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Clear the log file on startup
    try:
        log_file.write_text("")
    except OSError:
        pass

    setup_process_logging("main", log_file=log_file, debug=debug)
    return str(log_file)


def signal_handler(signum, frame, process_manager: ProcessManager) -> None:
    """Handle shutdown signals."""
    print(f"Sanctuary: Received signal {signum}, shutting down...")
    process_manager.shutdown_requested = True


# Get the project root directory (where main.py is located)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config", "config.json")


def load_config_file(config_path: Optional[str] = None) -> Dict:
    """Load configuration from JSON file."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                loaded_config = json.load(f)
                # Filter out comments and null values
                config = {k: v for k, v in loaded_config.items() if k != "comments" and v is not None}
            logger.info(f"Loaded configuration from {config_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config file {config_path}: {e}")
    else:
        logger.warning(f"Config file not found: {config_path}")
    return config


def main():
    """Main entry point."""

    # Parse just the config argument first to know which config file to load
    parser_config = argparse.ArgumentParser(add_help=False)
    parser_config.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to configuration file")
    config_args, remaining = parser_config.parse_known_args()

    file_config = load_config_file(config_args.config)

    parser = argparse.ArgumentParser(description="Sanctuary Live Presentation System")
    parser.add_argument("--config", default=config_args.config, help="Path to configuration file")
    parser.add_argument(
        "presentation_id",
        nargs="?",
        default=file_config.get("presentation_id"),
        help="Presentation to run live",
    )
    parser.add_argument(
        "--debug", action="store_true", default=file_config.get("debug", False), help="Enable debug logging"
    )
    parser.add_argument("--web-host", default=file_config.get("web_host", DEFAULT_WEB_HOST), help="Web server host")
    parser.add_argument(
        "--web-port", type=int, default=file_config.get("web_port", DEFAULT_WEB_PORT), help="Web server port"
    )
    parser.add_argument(
        "--presenter-port",
        type=int,
        default=file_config.get("presenter_port", DEFAULT_PRESENTER_PORT),
        help="Presenter remote port",
    )
    parser.add_argument(
        "--presentations-dir",
        default=file_config.get("presentations_dir", str(paths.PRESENTATIONS_DIR)),
        help="Directory of presentation JSON documents",
    )
    parser.add_argument(
        "--socket-path", default=file_config.get("socket_path", DEFAULT_SOCKET_PATH), help="Register service socket"
    )
    parser.add_argument(
        "--no-output",
        dest="enable_output",
        action="store_false",
        default=file_config.get("enable_output", True),
        help="Do not start the output surface process",
    )
    parser.add_argument(
        "--no-presenter",
        dest="enable_presenter",
        action="store_false",
        default=file_config.get("enable_presenter", True),
        help="Do not start the presenter surface process",
    )

    args = parser.parse_args()

    paths.ensure_directories()
    log_file = setup_logging(args.debug)

    if not args.presentation_id:
        logger.error("No presentation given (argument or presentation_id in config)")
        sys.exit(2)

    # Fail before spawning anything if the presentation is missing
    content = PresentationStore(args.presentations_dir)
    content.load_all()
    try:
        content.get_presentation(args.presentation_id)
    except PresentationNotFoundError:
        logger.error(f"Presentation {args.presentation_id} not found in {args.presentations_dir}")
        sys.exit(1)

    config = {
        "debug": args.debug,
        "presentation_id": args.presentation_id,
        "presentations_dir": args.presentations_dir,
        "socket_path": args.socket_path,
        "register_store": file_config.get("register_store", str(paths.get_register_store_path())),
        "web_host": args.web_host,
        "web_port": args.web_port,
        "presenter_port": args.presenter_port,
        "enable_output": args.enable_output,
        "enable_presenter": args.enable_presenter,
        "output_width": file_config.get("output_width", SLIDE_WIDTH),
        "presenter_width": file_config.get("presenter_width", SLIDE_WIDTH),
        "log_file": log_file,
        "app_start_time": get_app_start_time(),
    }

    process_manager = ProcessManager(config)

    signal.signal(signal.SIGINT, lambda s, f: signal_handler(s, f, process_manager))
    signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s, f, process_manager))

    try:
        if not process_manager.start_all_processes():
            logger.error("Failed to start system")
            process_manager.cleanup_all_resources()
            sys.exit(1)

        logger.info(f"Sanctuary running: operator remote at http://{args.web_host}:{args.web_port}")
        process_manager.monitor_processes()

    finally:
        process_manager.cleanup_all_resources()
        logger.info("Sanctuary shutdown complete")


if __name__ == "__main__":
    main()
