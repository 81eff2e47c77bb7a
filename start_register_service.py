#!/usr/bin/env python3
"""
Start the Register Synchronization Service.

This script starts the register synchronization service that shares the
control, rotation and output slots of every presentation across all surface
processes using Unix domain sockets.
"""

import argparse
import logging
import signal
import sys
import time
from typing import Optional

from sanctuary import paths
from sanctuary.const import DEFAULT_SOCKET_PATH
from sanctuary.core.register_sync import RegisterSyncService
from sanctuary.utils.logging_utils import setup_process_logging

logger = logging.getLogger(__name__)

# Global service instance for signal handling
service_instance: Optional[RegisterSyncService] = None


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info(f"Received signal {signum}, shutting down register service...")
    if service_instance:
        service_instance.stop()
    sys.exit(0)


def main():
    global service_instance

    parser = argparse.ArgumentParser(
        description="Start the Sanctuary register synchronization service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with default socket path and store
  python start_register_service.py

  # Start with custom socket path
  python start_register_service.py --socket /tmp/custom_register.sock

  # Keep register slots in memory only
  python start_register_service.py --no-store --verbose
        """,
    )

    parser.add_argument(
        "--socket",
        default=DEFAULT_SOCKET_PATH,
        help=f"Unix domain socket path (default: {DEFAULT_SOCKET_PATH})",
    )
    parser.add_argument(
        "--store",
        default=str(paths.get_register_store_path()),
        help="JSON file persisting register slots",
    )
    parser.add_argument("--no-store", action="store_true", help="Do not persist register slots")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    setup_process_logging(
        "register", debug=args.verbose, console_level=logging.DEBUG if args.verbose else logging.INFO
    )

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        service_instance = RegisterSyncService(socket_path=args.socket, store_path=None if args.no_store else args.store)

        logger.info(f"Starting register synchronization service on {args.socket}")
        if service_instance.start():
            logger.info("Register synchronization service started successfully")

            try:
                while service_instance.running:
                    time.sleep(1.0)
            except KeyboardInterrupt:
                logger.info("Received keyboard interrupt")
        else:
            logger.error("Failed to start register synchronization service")
            sys.exit(1)

    except Exception as e:
        logger.exception(f"Error running register synchronization service: {e}")
        sys.exit(1)
    finally:
        if service_instance:
            service_instance.stop()
            logger.info("Register synchronization service stopped")


if __name__ == "__main__":
    main()
