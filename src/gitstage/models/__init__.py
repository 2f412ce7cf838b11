"""Data models for gitstage."""

from .change import ChangeRecord, ChangeSetDiff, FileStatus, StatusFilter, as_path_bytes
from .state import ContextState, Notification

__all__ = [
    "ChangeRecord",
    "ChangeSetDiff",
    "ContextState",
    "FileStatus",
    "Notification",
    "StatusFilter",
    "as_path_bytes",
]
