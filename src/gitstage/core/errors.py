"""Error taxonomy for the repository status engine."""

from typing import Optional


class GitStageError(Exception):
    """Base class for every error raised by gitstage."""


class ToolNotConfigured(GitStageError):
    """No usable git executable was configured."""


class SpawnFailure(GitStageError):
    """The git process could not be started at all."""

    def __init__(self, executable: str, reason: str):
        super().__init__(f"Failed to spawn {executable}: {reason}")
        self.executable = executable
        self.reason = reason


class CommandTimeout(GitStageError):
    """A command ran longer than the configured timeout."""

    def __init__(self, argv_text: str, timeout: float):
        super().__init__(f"Command '{argv_text}' did not complete in {timeout:g}s")
        self.timeout = timeout


class CommandFailed(GitStageError):
    """A command exited nonzero where success was required."""

    def __init__(self, argv_text: str, exit_code: int, stderr: bytes):
        message = stderr.decode("utf-8", "replace").strip() or "no diagnostic output"
        super().__init__(f"Command '{argv_text}' failed with exit code {exit_code}: {message}")
        self.exit_code = exit_code
        self.stderr = stderr


class ParseError(GitStageError):
    """Status output could not be decoded."""


class DuplicatePath(ParseError):
    def __init__(self, path: bytes):
        super().__init__(f"Path reported twice in status output: {path!r}")
        self.path = path


class Truncated(ParseError):
    def __init__(self, partial: bytes):
        super().__init__(f"Status output ends mid-record: {partial[:80]!r}")
        self.partial = partial


class MalformedRecord(ParseError):
    def __init__(self, record: bytes, reason: str):
        super().__init__(f"Malformed status record {record[:80]!r}: {reason}")
        self.record = record
        self.reason = reason


class NotFound(GitStageError):
    """The path is not part of the latest snapshot."""

    def __init__(self, path: bytes, generation: Optional[int] = None):
        super().__init__(f"{path!r} is not in the current change set")
        self.path = path
        self.generation = generation


class Busy(GitStageError):
    """A scan or mutation is already in flight."""


class NoRepository(GitStageError):
    """No repository is open, or the last scan failed."""
