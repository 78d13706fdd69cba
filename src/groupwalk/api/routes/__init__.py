"""Route group exports."""

from . import customers, health, optimization, slots, walkers

__all__ = ["customers", "health", "optimization", "slots", "walkers"]
