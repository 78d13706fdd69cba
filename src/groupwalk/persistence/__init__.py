"""Persistence layer: repository contract, implementations and run artifact storage."""

from .repository import BookingUpdate, GroupCommit, GroupCommitResult, Repository, get_repository
from .memory import InMemoryRepository
from .filesystem import FileStorage

__all__ = [
    "BookingUpdate",
    "FileStorage",
    "GroupCommit",
    "GroupCommitResult",
    "InMemoryRepository",
    "Repository",
    "get_repository",
]
