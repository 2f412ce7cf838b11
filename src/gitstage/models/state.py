"""Repository context state and the notification payload sent to the UI."""

from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel

from .change import ChangeRecord, ChangeSetDiff


class ContextState(str, Enum):
    """Lifecycle state of a RepositoryContext."""

    EMPTY = "empty"
    SCANNING = "scanning"
    READY = "ready"
    ERROR = "error"


class Notification(BaseModel):
    """What the UI layer receives on every state or generation change.

    ``snapshot`` carries the full record tuple when the model is new to the
    UI (first generation of a repository); otherwise ``diff`` describes what
    moved since the previous generation.
    """

    state: ContextState
    repo_path: Optional[Path] = None
    generation: int = 0
    diff: Optional[ChangeSetDiff] = None
    snapshot: Optional[Tuple[ChangeRecord, ...]] = None
    stale: bool = False
    error: Optional[Exception] = None

    model_config = {"arbitrary_types_allowed": True, "frozen": True}
