"""yolobox - Run AI coding agents in a container, host-safe by default"""

from yolobox.version import __version__

# Import the main function but don't override the module namespace
from yolobox.cli import main

# Expose main for the entry point
__all__ = ["main", "__version__"]
