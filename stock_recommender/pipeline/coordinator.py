"""
Run coordinator: one generation run for one trading date.

State machine
-------------
    IDLE → LOCK_ACQUISITION ─┬→ LOCK_DENIED ───────────────────────────────→ DONE
                             └→ IDEMPOTENCY_CHECK ─┬→ ALREADY_SATISFIED ──┐
                                                   └→ GENERATING ─┬→ SUCCESS ┤
                                                                  └→ FAILURE ┤
                                                                  LOCK_RELEASE → DONE

  LOCK_ACQUISITION   non-blocking ``DateLock``; denial means another run is
                     in flight → exit, nothing written.
  IDEMPOTENCY_CHECK  a success row already exists → exit, nothing written.
  GENERATING         universe builder, then generation client. Any error
                     (including ``InsufficientCandidatesError``) → FAILURE.
  SUCCESS            ``persist_success``. A ``UniqueConstraintError`` means a
                     concurrent run committed first: still SUCCESS, with
                     ``conflict=True`` and no id. Any other storage error is
                     recorded as a FAILURE row ("persist_success failed: ...").
  FAILURE            ``persist_failure`` with the error text and whatever raw
                     output is recoverable. Best-effort: a storage error here
                     is logged, never raised.
  LOCK_RELEASE       on every path that acquired the lock (``finally``). If
                     the process dies the kernel drops the lock instead.

Failure isolation
-----------------
Business outcomes (denied, already satisfied, generation failure) are
returned as data in ``RunOutcome``; ``run()`` only raises for setup faults
outside the state machine: the lock directory or the database cannot be
opened at all.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Iterator, Optional, Protocol

from stock_recommender.config import AppConfig
from stock_recommender.db.connection import get_connection
from stock_recommender.db.lock import DateLock
from stock_recommender.db.repositories.feature_repo import FeatureRepository
from stock_recommender.db.repositories.snapshot_repo import SnapshotRepository
from stock_recommender.errors import (
    GenerationDiagnosticsError,
    OutputShapeError,
    UniqueConstraintError,
)
from stock_recommender.generation.client import GenerationResult
from stock_recommender.models.feature import Candidate, GenerationInput
from stock_recommender.universe.builder import UniverseBuilder, build_stub_universe
from stock_recommender.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class RunState(StrEnum):
    IDLE = "idle"
    LOCK_ACQUISITION = "lock_acquisition"
    LOCK_DENIED = "lock_denied"
    IDEMPOTENCY_CHECK = "idempotency_check"
    ALREADY_SATISFIED = "already_satisfied"
    GENERATING = "generating"
    SUCCESS = "success"
    FAILURE = "failure"
    LOCK_RELEASE = "lock_release"
    DONE = "done"


TERMINAL_STATES = frozenset({
    RunState.LOCK_DENIED,
    RunState.ALREADY_SATISFIED,
    RunState.SUCCESS,
    RunState.FAILURE,
})


class SnapshotGenerator(Protocol):
    """What the coordinator needs from the generation client."""

    @property
    def provider(self) -> str: ...

    def generate(self, generation_input: GenerationInput) -> GenerationResult: ...


# ── Result type ───────────────────────────────────────────────────────────────

@dataclass
class RunOutcome:
    """Result of one coordinator run.

    Attributes:
        as_of_date:       Date the run was for.
        state:            Terminal business state (one of ``TERMINAL_STATES``),
                          ``IDLE`` only if the run never started.
        trail:            Every state visited, in order, ending with ``DONE``.
        snapshot_id:      Id of the row written (success or failure row).
        error:            Error text for ``FAILURE``.
        conflict:         ``SUCCESS`` reached through a benign uniqueness conflict.
        failure_recorded: The ``FAILURE`` row was actually written.
    """

    as_of_date:       date
    state:            RunState = RunState.IDLE
    trail:            list[RunState] = field(default_factory=lambda: [RunState.IDLE])
    snapshot_id:      Optional[str] = None
    error:            Optional[str] = None
    conflict:         bool = False
    failure_recorded: bool = False

    def visit(self, state: RunState) -> None:
        self.trail.append(state)
        if state in TERMINAL_STATES:
            self.state = state

    @property
    def is_noop(self) -> bool:
        return self.state in (RunState.LOCK_DENIED, RunState.ALREADY_SATISFIED)


def failure_payload(exc: BaseException) -> Optional[Any]:
    """Best recoverable raw output for a failure row.

    Order: the provider's full response JSON, else the raw model text parsed
    as JSON, else ``{"raw_text": text}``; ``None`` when nothing was captured.
    """
    raw_json: Optional[Any] = None
    raw_text: Optional[str] = None
    if isinstance(exc, GenerationDiagnosticsError):
        raw_json, raw_text = exc.raw_response_json, exc.raw_output
    elif isinstance(exc, OutputShapeError):
        raw_text = exc.raw_output

    if raw_json is not None:
        return raw_json
    if raw_text is None:
        return None
    try:
        return json.loads(raw_text)
    except ValueError:
        return {"raw_text": raw_text}


# ── Coordinator ───────────────────────────────────────────────────────────────

class RunCoordinator:
    """Drives one date through lock → check → generate → persist → release.

    Args:
        config: Application configuration.
        generator: Snapshot generator (``GenerationClient`` in production).
        db_path: Override of ``config.database.db_path``.
        lock_factory: Builds the date lock; defaults to a ``DateLock`` in
            ``config.database.lock_dir``.
        clock: Current-time source for failure rows.
    """

    def __init__(
        self,
        config: AppConfig,
        generator: SnapshotGenerator,
        db_path: Optional[str] = None,
        lock_factory: Optional[Callable[[date], DateLock]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.generator = generator
        self.db_path = db_path or config.database.db_path
        self._lock_factory = lock_factory or (
            lambda d: DateLock(config.database.lock_dir, d)
        )
        self._clock = clock

    @contextmanager
    def _connect(self) -> Iterator:
        with get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        ) as conn:
            yield conn

    # ── Public API ─────────────────────────────────────────────────────────────

    def run(self, as_of_date: date) -> RunOutcome:
        """Execute the state machine for ``as_of_date``.

        Returns:
            ``RunOutcome`` describing the terminal state.

        Raises:
            OSError: Lock directory unusable.
            sqlite3.Error: Database unreachable during the idempotency check.
        """
        outcome = RunOutcome(as_of_date=as_of_date)
        outcome.visit(RunState.LOCK_ACQUISITION)

        lock = self._lock_factory(as_of_date)
        if not lock.try_acquire():
            logger.info("Run for %s skipped: another run holds the lock", as_of_date)
            outcome.visit(RunState.LOCK_DENIED)
            outcome.visit(RunState.DONE)
            return outcome

        try:
            outcome.visit(RunState.IDEMPOTENCY_CHECK)
            with self._connect() as conn:
                already_done = SnapshotRepository(conn).success_exists(as_of_date)
            if already_done:
                logger.info("Run for %s skipped: success snapshot already stored", as_of_date)
                outcome.visit(RunState.ALREADY_SATISFIED)
                return outcome

            outcome.visit(RunState.GENERATING)
            try:
                result = self._generate(as_of_date)
            except Exception as exc:
                logger.error("Generation for %s FAILED: %s", as_of_date, exc)
                self._record_failure(outcome, str(exc), failure_payload(exc))
                return outcome

            self._persist_success(outcome, result)
            return outcome

        finally:
            outcome.visit(RunState.LOCK_RELEASE)
            lock.release()
            outcome.visit(RunState.DONE)
            logger.info(
                "Run for %s finished: state=%s", as_of_date, outcome.state,
                extra={"as_of_date": as_of_date.isoformat(), "state": str(outcome.state)},
            )

    def build_universe(self, as_of_date: date) -> list[Candidate]:
        """Candidates for ``as_of_date`` (stub or feature table per config)."""
        universe = self.config.universe
        if universe.use_stub:
            return build_stub_universe(as_of_date, universe.size, self.config.market.ticker_prefix)
        with self._connect() as conn:
            return UniverseBuilder(FeatureRepository(conn), universe).build(as_of_date)

    # ── Steps ──────────────────────────────────────────────────────────────────

    def _generate(self, as_of_date: date) -> GenerationResult:
        candidates = self.build_universe(as_of_date)
        generation_input = GenerationInput(as_of_date=as_of_date, candidates=candidates)
        return self.generator.generate(generation_input)

    def _persist_success(self, outcome: RunOutcome, result: GenerationResult) -> None:
        try:
            with self._connect() as conn:
                snapshot_id = SnapshotRepository(conn).persist_success(
                    result.snapshot, self.generator.provider, result.raw_response
                )
        except UniqueConstraintError:
            logger.info(
                "Success snapshot for %s was committed by a concurrent run; keeping theirs",
                outcome.as_of_date,
            )
            outcome.conflict = True
            outcome.visit(RunState.SUCCESS)
            return
        except Exception as exc:
            logger.error("persist_success for %s FAILED: %s", outcome.as_of_date, exc)
            self._record_failure(
                outcome, f"persist_success failed: {exc}", result.raw_response
            )
            return

        outcome.snapshot_id = snapshot_id
        outcome.visit(RunState.SUCCESS)

    def _record_failure(
        self,
        outcome: RunOutcome,
        error: str,
        raw_response: Optional[Any],
    ) -> None:
        """Write an error row. Never raises; storage errors are logged."""
        outcome.error = error
        outcome.visit(RunState.FAILURE)
        try:
            with self._connect() as conn:
                outcome.snapshot_id = SnapshotRepository(conn).persist_failure(
                    outcome.as_of_date,
                    self._clock(),
                    self.generator.provider,
                    error,
                    raw_response,
                )
            outcome.failure_recorded = True
        except Exception as exc:
            logger.error(
                "Failed to record failure for %s: %s (original error: %s)",
                outcome.as_of_date, exc, error,
            )
