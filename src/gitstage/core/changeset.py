"""The authoritative change set for one repository."""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from gitstage.core.command import CommandRunner, format_argv
from gitstage.core.errors import CommandTimeout, DuplicatePath, NotFound
from gitstage.core.status_parser import parse
from gitstage.models.change import (
    ChangeRecord,
    ChangeSetDiff,
    PathLike,
    StatusFilter,
    as_path_bytes,
)

logger = logging.getLogger(__name__)

Observer = Callable[[int, ChangeSetDiff], None]


class Snapshot:
    """Immutable, path-sorted records of one generation."""

    __slots__ = ("records", "generation", "_by_path")

    def __init__(self, records: Tuple[ChangeRecord, ...], generation: int):
        self.records = records
        self.generation = generation
        self._by_path: Mapping[bytes, ChangeRecord] = {r.path: r for r in records}

    def get(self, path: bytes) -> Optional[ChangeRecord]:
        return self._by_path.get(path)

    def __contains__(self, path: bytes) -> bool:
        return path in self._by_path

    def __len__(self) -> int:
        return len(self.records)


class ChangeQuery:
    """Lazy view over one snapshot; every iteration starts from the top."""

    def __init__(self, snapshot: Snapshot, status_filter: StatusFilter):
        self.snapshot = snapshot
        self.status_filter = status_filter

    @property
    def generation(self) -> int:
        return self.snapshot.generation

    def __iter__(self) -> Iterator[ChangeRecord]:
        return (r for r in self.snapshot.records if r.matches(self.status_filter))


def diff_snapshots(old: Snapshot, new: Snapshot) -> ChangeSetDiff:
    """Compare two full snapshots path by path."""
    old_paths = {r.path for r in old.records}
    new_paths = {r.path for r in new.records}
    changed = {
        path
        for path in old_paths & new_paths
        if old.get(path).status_key != new.get(path).status_key
    }
    return ChangeSetDiff(
        added=frozenset(new_paths - old_paths),
        removed=frozenset(old_paths - new_paths),
        status_changed=frozenset(changed),
    )


def _sorted_unique(records: Iterable[ChangeRecord]) -> Tuple[ChangeRecord, ...]:
    by_path: Dict[bytes, ChangeRecord] = {}
    for record in records:
        if record.path in by_path:
            raise DuplicatePath(record.path)
        by_path[record.path] = record
    return tuple(by_path[path] for path in sorted(by_path))


class ChangeSetModel:
    """Owns the current snapshot of changes for one repository.

    The snapshot is swapped as a whole on every ``replace``; readers holding
    an older snapshot keep a consistent view of their generation.
    """

    def __init__(self, repo_path: Path, runner: CommandRunner):
        self.repo_path = Path(repo_path)
        self.runner = runner
        self._snapshot = Snapshot((), 0)
        self._lock = threading.Lock()
        self._observers: List[Observer] = []

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    @property
    def records(self) -> Tuple[ChangeRecord, ...]:
        return self._snapshot.records

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, path: PathLike) -> bool:
        return as_path_bytes(path) in self._snapshot

    def get(self, path: PathLike) -> Optional[ChangeRecord]:
        return self._snapshot.get(as_path_bytes(path))

    def query(self, status_filter: StatusFilter = StatusFilter.ALL) -> ChangeQuery:
        return ChangeQuery(self._snapshot, status_filter)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer(generation, diff)``; returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def replace(self, records: Iterable[ChangeRecord]) -> ChangeSetDiff:
        """Install a new generation and return what changed since the last one."""
        new_records = _sorted_unique(records)
        with self._lock:
            old = self._snapshot
            new = Snapshot(new_records, old.generation + 1)
            self._snapshot = new
        diff = diff_snapshots(old, new)
        logger.debug(
            "%s: generation %d (+%d -%d ~%d)",
            self.repo_path,
            new.generation,
            len(diff.added),
            len(diff.removed),
            len(diff.status_changed),
        )
        for observer in list(self._observers):
            observer(new.generation, diff)
        return diff

    def require(self, path: PathLike) -> ChangeRecord:
        """Return the record for ``path`` in the latest snapshot or raise NotFound."""
        raw = as_path_bytes(path)
        snapshot = self._snapshot
        record = snapshot.get(raw)
        if record is None:
            raise NotFound(raw, snapshot.generation)
        return record

    # I/O helpers. These never touch the snapshot so a RepositoryContext can
    # run them on a worker and decide on the coordinating thread whether the
    # result is still wanted.

    def fetch_records(self, deadline: Optional[float] = None) -> List[ChangeRecord]:
        args = self.runner.config.status_args()
        result = self.runner.run(self.repo_path, args, timeout=self._remaining(deadline, args))
        return parse(result.check().stdout)

    def run_mutation(self, record: ChangeRecord, stage: bool, deadline: Optional[float] = None) -> None:
        """Run the stage/unstage command for ``record`` without re-reading the status."""
        if stage:
            args = ["add", "--", record.path]
        else:
            args = ["reset", "-q", "--", record.path]
            if record.previous_path is not None:
                args.append(record.previous_path)
        self.runner.run(self.repo_path, args, timeout=self._remaining(deadline, args)).check()

    def mutate(self, record: ChangeRecord, stage: bool, deadline: Optional[float] = None) -> List[ChangeRecord]:
        """Run the stage/unstage command for ``record`` and re-read the status."""
        self.run_mutation(record, stage, deadline)
        return self.fetch_records(deadline)

    def deadline(self) -> float:
        return time.monotonic() + self.runner.config.timeout

    def _remaining(self, deadline: Optional[float], args) -> Optional[float]:
        if deadline is None:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise CommandTimeout(format_argv(args), self.runner.config.timeout)
        return remaining

    # Synchronous operations for callers that are already off the UI thread.

    def refresh(self) -> ChangeSetDiff:
        return self.replace(self.fetch_records(self.deadline()))

    def stage(self, path: PathLike) -> ChangeSetDiff:
        record = self.require(path)
        return self.replace(self.mutate(record, True, self.deadline()))

    def unstage(self, path: PathLike) -> ChangeSetDiff:
        record = self.require(path)
        return self.replace(self.mutate(record, False, self.deadline()))
