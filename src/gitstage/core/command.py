"""Run git subcommands and hand back their raw output."""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence, Union

from gitstage.core.config import GitStageConfig
from gitstage.core.errors import CommandFailed, CommandTimeout, SpawnFailure

logger = logging.getLogger(__name__)

Arg = Union[str, bytes]


def format_argv(argv: Sequence[Arg]) -> str:
    return " ".join(a.decode("utf-8", "replace") if isinstance(a, bytes) else a for a in argv)


class CommandResult(NamedTuple):
    """Exit code and raw byte streams of one finished process."""

    exit_code: int
    stdout: bytes
    stderr: bytes
    argv: Sequence[Arg] = ()

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "CommandResult":
        """Raise CommandFailed unless the process exited cleanly."""
        if self.exit_code != 0:
            raise CommandFailed(format_argv(self.argv), self.exit_code, self.stderr)
        return self


class CommandRunner:
    """Spawns exactly one git process per call.

    Exit codes are forwarded, not interpreted: running against a directory
    that is not a repository yields a nonzero ``exit_code`` and git's own
    diagnostic on ``stderr``.
    """

    def __init__(self, config: Optional[GitStageConfig] = None):
        self.config = config or GitStageConfig()
        self.executable = self.config.require_executable()

    def build_argv(self, repo_path: Path, args: Sequence[Arg]) -> List[Arg]:
        return [self.executable, *self.config.global_args, "-C", str(repo_path), *args]

    def run(self, repo_path: Path, args: Sequence[Arg], timeout: Optional[float] = None) -> CommandResult:
        """Run ``git -C repo_path <args>`` and capture its output.

        Args:
            repo_path: Working tree the command runs against.
            args: Subcommand and its arguments; paths may be bytes.
            timeout: Seconds before the process is killed; defaults to the config.

        Returns:
            CommandResult with the exit code and both output streams.

        Raises:
            SpawnFailure: The executable could not be started.
            CommandTimeout: The process outlived ``timeout``.
        """
        argv = self.build_argv(repo_path, args)
        timeout = self.config.timeout if timeout is None else timeout
        env = dict(os.environ)
        env.update(self.config.env)
        logger.debug("Running %s", format_argv(argv))

        try:
            proc = subprocess.run(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                check=False,
                env=env,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run has already killed the child by the time this is raised
            raise CommandTimeout(format_argv(argv), timeout) from e
        except OSError as e:
            raise SpawnFailure(self.executable, e.strerror or str(e)) from e

        return CommandResult(proc.returncode, proc.stdout, proc.stderr, argv)
