"""
Sanctuary live presentation core.

Keeps the control, output and presenter surfaces of a live worship-slide
presentation showing the same slide, and rotates automatically through
rotation groups on a timer.
"""

__version__ = "0.1.0"
