"""
Utility modules for the Sanctuary live presentation system.

This package contains shared utilities used across the surface processes.
"""

from .logging_utils import AppTimeFormatter, SurfaceContextFilter, create_app_time_formatter, setup_process_logging

__all__ = ["AppTimeFormatter", "SurfaceContextFilter", "create_app_time_formatter", "setup_process_logging"]
