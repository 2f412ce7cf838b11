"""Configuration supplied by the Configure collaborator."""

import json
import os
import shutil
from pathlib import Path
from typing import Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from gitstage.core.errors import ToolNotConfigured

ENV_GIT = "GITSTAGE_GIT"
ENV_TIMEOUT = "GITSTAGE_TIMEOUT"
ENV_WORKERS = "GITSTAGE_WORKERS"

# Keep git's output stable for machine parsing: no pager, no colour, raw
# UTF-8 paths, and no opportunistic index refresh racing our own writes.
DEFAULT_GLOBAL_ARGS = [
    "--no-pager",
    "--no-optional-locks",
    "-c",
    "color.ui=false",
    "-c",
    "core.quotepath=false",
]


def _default_executable() -> Optional[str]:
    return shutil.which("git")


class GitStageConfig(BaseModel):
    """Settings for running git on behalf of a RepositoryContext."""

    git_executable: Optional[str] = Field(default_factory=_default_executable)
    global_args: List[str] = Field(default_factory=lambda: list(DEFAULT_GLOBAL_ARGS))
    timeout: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=4, ge=1)
    detect_renames: bool = True
    untracked_files: Literal["no", "normal", "all"] = "all"
    env: Dict[str, str] = Field(default_factory=lambda: {"GIT_TERMINAL_PROMPT": "0"})

    def require_executable(self) -> str:
        """Return the git executable, failing fast when none is configured."""
        if not self.git_executable:
            raise ToolNotConfigured(
                "No git executable configured. Install git or set "
                f"{ENV_GIT} to its path."
            )
        return self.git_executable

    def status_args(self) -> List[str]:
        args = ["status", "--porcelain=v1", "-z", f"--untracked-files={self.untracked_files}"]
        args.append("--renames" if self.detect_renames else "--no-renames")
        return args

    @classmethod
    def load(cls, config_file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> "GitStageConfig":
        """Build a config from defaults, an optional JSON file and the environment.

        Args:
            config_file: JSON file with any subset of the config fields.
            environ: Environment mapping; defaults to ``os.environ``.

        Returns:
            The merged, validated config.
        """
        data: Dict[str, object] = {}
        if config_file is not None and Path(config_file).exists():
            data.update(json.loads(Path(config_file).read_text()))

        environ = os.environ if environ is None else environ
        if environ.get(ENV_GIT):
            data["git_executable"] = environ[ENV_GIT]
        if environ.get(ENV_TIMEOUT):
            data["timeout"] = environ[ENV_TIMEOUT]
        if environ.get(ENV_WORKERS):
            data["max_workers"] = environ[ENV_WORKERS]

        return cls.model_validate(data)
