"""Coordinates repository selection, refreshes and stage/unstage requests.

All public methods are meant to be called from one coordinating (UI)
thread. Process spawning and parsing happen on a LanePool worker; their
outcomes are queued and only take effect when the coordinating thread calls
``process_pending()`` (or ``wait()``). Every request takes a fresh token and
an outcome whose token is no longer current is dropped unread, so a slow scan
of an old repository can never overwrite the one on screen.
"""

import itertools
import logging
import time
from pathlib import Path
from queue import Empty, Queue
from typing import Callable, List, NamedTuple, Optional, Tuple

from gitstage.core.changeset import ChangeSetModel
from gitstage.core.command import CommandRunner
from gitstage.core.config import GitStageConfig
from gitstage.core.errors import Busy, NoRepository
from gitstage.core.workers import LanePool
from gitstage.models.change import ChangeRecord, ChangeSetDiff, PathLike
from gitstage.models.state import ContextState, Notification

logger = logging.getLogger(__name__)

Subscriber = Callable[[Notification], None]

SCAN = "scan"
MUTATION = "mutation"


class _Outcome(NamedTuple):
    token: int
    kind: str
    model: ChangeSetModel
    records: Optional[List[ChangeRecord]]
    error: Optional[Exception]


class RepositoryContext:
    """The single entry point the UI layer talks to."""

    def __init__(
        self,
        config: Optional[GitStageConfig] = None,
        runner: Optional[CommandRunner] = None,
        wakeup: Optional[Callable[[], None]] = None,
    ):
        self.config = config or (runner.config if runner else GitStageConfig())
        self.runner = runner or CommandRunner(self.config)
        self._wakeup = wakeup
        self._pool = LanePool(self.config.max_workers)
        self._results: "Queue[_Outcome]" = Queue()
        self._subscribers: List[Subscriber] = []

        self._state = ContextState.EMPTY
        self._repo_path: Optional[Path] = None
        self._model: Optional[ChangeSetModel] = None
        self._unsubscribe_model: Optional[Callable[[], None]] = None
        self._stale = False
        self._last_error: Optional[Exception] = None

        self._tokens = itertools.count(1)
        self._current_token = 0
        self._mutation_token: Optional[int] = None
        self._outstanding = 0

    # -- read side -------------------------------------------------------

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def repo_path(self) -> Optional[Path]:
        return self._repo_path

    @property
    def model(self) -> Optional[ChangeSetModel]:
        return self._model

    @property
    def generation(self) -> int:
        return self._model.generation if self._model else 0

    @property
    def stale(self) -> bool:
        """True while the displayed snapshot is known to be out of date."""
        return self._stale

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    @property
    def outstanding(self) -> int:
        return self._outstanding

    def records(self) -> Tuple[ChangeRecord, ...]:
        return self._model.records if self._model else ()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    # -- requests --------------------------------------------------------

    def open(self, path: PathLike) -> int:
        """Switch to the repository at ``path`` and start scanning it."""
        repo_path = Path(path).expanduser().resolve()
        if self._unsubscribe_model:
            self._unsubscribe_model()
        model = ChangeSetModel(repo_path, self.runner)
        self._unsubscribe_model = model.subscribe(self._on_model_replaced)

        token = self._issue()
        self._mutation_token = None
        self._repo_path = repo_path
        self._model = model
        self._stale = False
        self._last_error = None
        logger.info("Opening repository %s", repo_path)
        self._set_state(ContextState.SCANNING, snapshot=())
        self._submit(token, SCAN, model)
        return token

    def refresh(self) -> int:
        """Rescan the current repository; supersedes any scan still in flight."""
        if self._model is None:
            raise NoRepository("No repository is open")
        token = self._issue()
        self._set_state(ContextState.SCANNING)
        self._submit(token, SCAN, self._model)
        return token

    def stage(self, path: PathLike) -> int:
        return self._request_mutation(path, stage=True)

    def unstage(self, path: PathLike) -> int:
        return self._request_mutation(path, stage=False)

    def close(self) -> None:
        """Forget the current repository; in-flight outcomes are discarded."""
        self._issue()
        if self._unsubscribe_model:
            self._unsubscribe_model()
            self._unsubscribe_model = None
        self._mutation_token = None
        self._model = None
        self._repo_path = None
        self._stale = False
        self._last_error = None
        self._set_state(ContextState.EMPTY)

    def _request_mutation(self, path: PathLike, stage: bool) -> int:
        if self._state == ContextState.SCANNING:
            raise Busy("A scan is in progress")
        if self._state != ContextState.READY or self._model is None:
            raise NoRepository("No repository with a valid change set is open")
        if self._mutation_token is not None:
            raise Busy("Another stage/unstage request is still in flight")

        model = self._model
        record = model.require(path)
        token = self._issue()
        self._mutation_token = token
        logger.debug("%s %r (token %d)", "Staging" if stage else "Unstaging", record.path, token)
        self._submit(token, MUTATION, model, lambda deadline: model.run_mutation(record, stage, deadline))
        return token

    # -- completion ------------------------------------------------------

    def process_pending(self) -> int:
        """Apply every queued outcome; returns how many were taken off the queue."""
        count = 0
        while True:
            try:
                outcome = self._results.get_nowait()
            except Empty:
                return count
            self._apply(outcome)
            count += 1

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every request issued so far has been applied or discarded.

        Returns False if ``timeout`` elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._outstanding > 0:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            try:
                outcome = self._results.get(timeout=remaining)
            except Empty:
                return False
            self._apply(outcome)
        return True

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "RepositoryContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # -- internals -------------------------------------------------------

    def _issue(self) -> int:
        self._current_token = next(self._tokens)
        return self._current_token

    def _submit(self, token: int, kind: str, model: ChangeSetModel, command=None) -> None:
        """Queue a job on the repository's lane.

        ``command`` (a stage/unstage) always runs once accepted; only the
        status read that follows it is skipped when the token went stale.
        """
        self._outstanding += 1

        def job() -> None:
            records = None
            error = None
            deadline = model.deadline()
            try:
                if command is not None:
                    command(deadline)
                if token == self._current_token:
                    records = model.fetch_records(deadline)
            except Exception as e:  # noqa: BLE001 - reported through state ERROR
                error = e
            self._results.put(_Outcome(token, kind, model, records, error))
            if self._wakeup is not None:
                self._wakeup()

        self._pool.submit(model.repo_path, job)

    def _apply(self, outcome: _Outcome) -> None:
        self._outstanding -= 1
        if outcome.kind == MUTATION and outcome.token == self._mutation_token:
            self._mutation_token = None

        if outcome.token != self._current_token or outcome.model is not self._model:
            if outcome.error is not None:
                logger.warning("Superseded %s of %s failed: %s", outcome.kind, outcome.model.repo_path, outcome.error)
            logger.debug("Discarding stale %s result (token %d)", outcome.kind, outcome.token)
            return

        if outcome.error is not None:
            self._stale = True
            self._last_error = outcome.error
            logger.warning("%s of %s failed: %s", outcome.kind, outcome.model.repo_path, outcome.error)
            self._set_state(ContextState.ERROR, error=outcome.error)
            return

        self._stale = False
        self._last_error = None
        if self._state != ContextState.READY:
            logger.debug("State %s -> %s", self._state.value, ContextState.READY.value)
        self._state = ContextState.READY
        # replace() notifies _on_model_replaced, which publishes the payload.
        outcome.model.replace(outcome.records)

    def _on_model_replaced(self, generation: int, diff: ChangeSetDiff) -> None:
        snapshot = self._model.records if generation == 1 else None
        self._publish(diff=diff, snapshot=snapshot)

    def _set_state(self, state: ContextState, snapshot=None, error=None) -> None:
        if state != self._state:
            logger.debug("State %s -> %s", self._state.value, state.value)
        self._state = state
        self._publish(snapshot=snapshot, error=error)

    def _publish(self, diff=None, snapshot=None, error=None) -> None:
        notification = Notification(
            state=self._state,
            repo_path=self._repo_path,
            generation=self.generation,
            diff=diff,
            snapshot=snapshot,
            stale=self._stale,
            error=error,
        )
        for subscriber in list(self._subscribers):
            subscriber(notification)
