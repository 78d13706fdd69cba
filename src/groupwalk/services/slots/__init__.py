"""Slot lifecycle and direct slot actions."""

from .state import SlotAction

__all__ = ["SlotAction"]
