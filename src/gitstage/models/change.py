"""Change records describing one path's index/worktree status."""

import os
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union

from pydantic import BaseModel, model_validator


class FileStatus(str, Enum):
    """Status of a path on one side (index or worktree)."""

    UNMODIFIED = "unmodified"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"
    UNTRACKED = "untracked"
    CONFLICTED = "conflicted"
    UNKNOWN = "unknown"


class StatusFilter(str, Enum):
    """Status categories the UI can ask for."""

    ALL = "all"
    STAGED = "staged"
    UNSTAGED = "unstaged"
    UNTRACKED = "untracked"
    CONFLICTED = "conflicted"


PathLike = Union[str, bytes, os.PathLike]


def as_path_bytes(path: PathLike) -> bytes:
    """Convert a user-supplied path to the byte form records are keyed on."""
    raw = os.fsencode(path)
    if os.sep != "/":
        raw = raw.replace(os.fsencode(os.sep), b"/")
    return raw


class ChangeRecord(BaseModel):
    """One changed path in the working tree."""

    path: bytes
    previous_path: Optional[bytes] = None
    index_status: FileStatus
    worktree_status: FileStatus

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_changed(self) -> "ChangeRecord":
        if (
            self.index_status == FileStatus.UNMODIFIED
            and self.worktree_status == FileStatus.UNMODIFIED
        ):
            raise ValueError("unmodified paths are not change records")
        if not self.path:
            raise ValueError("path must not be empty")
        return self

    @property
    def staged(self) -> bool:
        """True when the index holds content for this path.

        Stricter than "index status is not unmodified": untracked and
        unknown index codes are not staged either, since the index holds
        nothing for them.
        """
        return self.index_status not in (
            FileStatus.UNMODIFIED,
            FileStatus.UNTRACKED,
            FileStatus.UNKNOWN,
        )

    @property
    def segments(self) -> Tuple[bytes, ...]:
        return tuple(self.path.split(b"/"))

    @property
    def display_path(self) -> str:
        return self.path.decode("utf-8", "replace")

    @property
    def status_key(self) -> Tuple[FileStatus, FileStatus, Optional[bytes]]:
        """Everything but the path; used to detect status changes between snapshots."""
        return (self.index_status, self.worktree_status, self.previous_path)

    def matches(self, status_filter: StatusFilter) -> bool:
        if status_filter == StatusFilter.ALL:
            return True
        if status_filter == StatusFilter.STAGED:
            return self.staged
        if status_filter == StatusFilter.UNSTAGED:
            return self.worktree_status not in (
                FileStatus.UNMODIFIED,
                FileStatus.UNTRACKED,
            )
        if status_filter == StatusFilter.UNTRACKED:
            return self.worktree_status == FileStatus.UNTRACKED
        return FileStatus.CONFLICTED in (self.index_status, self.worktree_status)


class ChangeSetDiff(BaseModel):
    """Paths that changed between two consecutive snapshots."""

    added: FrozenSet[bytes] = frozenset()
    removed: FrozenSet[bytes] = frozenset()
    status_changed: FrozenSet[bytes] = frozenset()

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.status_changed)
