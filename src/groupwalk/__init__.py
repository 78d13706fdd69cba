"""Group walk scheduling and optimization service."""

__version__ = "0.1.0"
