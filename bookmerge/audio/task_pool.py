"""Bounded-concurrency pool for per-item conversion tasks.

Responsibilities:
- Keep a FIFO queue of submitted `ConversionTask` records.
- Run at most `concurrency_limit` tasks at once on worker threads, each
  driving one external encoder process.
- Verify every task's artifact and report done/failed outcomes labelled
  with the task's original sequence index.
- Emit progress snapshots on a fixed time cadence.

Completion order is unconstrained; consumers rebuild document order from
`TaskOutcome.index`. Tasks are never retried by the pool.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
import threading
import time

from ..models.datatypes import ConversionTask, PoolSnapshot, TaskOutcome, TaskStatus

TaskRunner = Callable[[ConversionTask], int]
ProgressCallback = Callable[[PoolSnapshot], None]

DEFAULT_PROGRESS_INTERVAL_SECONDS = 0.5


class ConversionTaskPool:
    """Schedule conversion tasks with a strict upper bound on parallelism."""

    def __init__(
        self,
        runner: TaskRunner,
        *,
        progress_interval_seconds: float = DEFAULT_PROGRESS_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the pool with the callable that executes one task."""

        self._runner = runner
        self._progress_interval = max(0.0, progress_interval_seconds)
        self._lock = threading.Lock()
        self._pending: deque[ConversionTask] = deque()
        self._running: dict[int, ConversionTask] = {}
        self._outcomes: list[TaskOutcome] = []
        self._submitted: dict[int, ConversionTask] = {}
        self._closed = False
        self._peak_running = 0

    def submit(self, task: ConversionTask) -> None:
        """Queue one task; each sequence index may be submitted once per pool."""

        with self._lock:
            if self._closed:
                raise RuntimeError("Cannot submit tasks to a closed conversion pool.")
            if task.index in self._submitted:
                raise ValueError(f"Task index {task.index} was already submitted.")
            self._submitted[task.index] = task
            self._pending.append(task)

    def close(self) -> None:
        """Stop scheduling queued tasks; running tasks are allowed to finish."""

        with self._lock:
            self._closed = True
            self._pending.clear()

    def __enter__(self) -> ConversionTaskPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def snapshot(self) -> PoolSnapshot:
        """Return current queued/running/total counts."""

        with self._lock:
            return PoolSnapshot(
                queued=len(self._pending),
                running=len(self._running),
                total=len(self._submitted),
            )

    @property
    def tasks(self) -> list[ConversionTask]:
        """Return all submitted tasks in submission order."""

        with self._lock:
            return list(self._submitted.values())

    @property
    def outcomes(self) -> list[TaskOutcome]:
        """Return reported outcomes in completion order."""

        with self._lock:
            return list(self._outcomes)

    @property
    def peak_running(self) -> int:
        """Return the highest number of simultaneously running tasks observed."""

        with self._lock:
            return self._peak_running

    def run(
        self,
        concurrency_limit: int,
        on_progress: ProgressCallback | None = None,
    ) -> list[TaskOutcome]:
        """Run queued tasks until the queue drains and return all outcomes.

        Blocks until every started task has finished. A task counts as done
        only when its runner exits with status 0 and its artifact exists with
        a size above zero.
        """

        if concurrency_limit <= 0:
            raise ValueError("`concurrency_limit` must be a positive integer.")

        futures: dict[Future[TaskOutcome], ConversionTask] = {}
        last_progress = float("-inf")
        with ThreadPoolExecutor(
            max_workers=concurrency_limit, thread_name_prefix="bookmerge-task"
        ) as executor:
            while True:
                for task in self._start_next(concurrency_limit):
                    futures[executor.submit(self._execute, task)] = task

                if not futures:
                    break

                done, _ = wait(
                    futures,
                    timeout=self._progress_interval or None,
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    task = futures.pop(future)
                    outcome = future.result()
                    with self._lock:
                        self._running.pop(task.index, None)
                        self._outcomes.append(outcome)

                now = time.monotonic()
                if on_progress is not None and now - last_progress >= self._progress_interval:
                    last_progress = now
                    on_progress(self.snapshot())

        if on_progress is not None:
            on_progress(self.snapshot())
        return self.outcomes

    def _start_next(self, concurrency_limit: int) -> list[ConversionTask]:
        """Move tasks from pending to running while capacity is available."""

        started: list[ConversionTask] = []
        with self._lock:
            while self._pending and len(self._running) < concurrency_limit:
                task = self._pending.popleft()
                self._running[task.index] = task
                started.append(task)
            self._peak_running = max(self._peak_running, len(self._running))
        return started

    def _execute(self, task: ConversionTask) -> TaskOutcome:
        """Run one task and verify its artifact."""

        try:
            exit_code = self._runner(task)
        except Exception as exc:
            return self._failed(task, None, f"{type(exc).__name__}: {exc}")

        if exit_code != 0:
            return self._failed(task, exit_code, f"encoder exited with status {exit_code}")
        if not task.destination.is_file():
            return self._failed(task, exit_code, "output artifact is missing")
        if task.destination.stat().st_size == 0:
            task.destination.unlink()
            return self._failed(task, exit_code, "output artifact is empty")

        try:
            task.destination.replace(task.finished_path)
        except OSError as exc:
            return self._failed(
                task, exit_code, f"could not rename artifact to {task.finished_path}: {exc}"
            )
        return TaskOutcome(
            index=task.index,
            source=task.source,
            output_path=task.finished_path,
            status=TaskStatus.DONE,
            exit_code=exit_code,
        )

    @staticmethod
    def _failed(task: ConversionTask, exit_code: int | None, reason: str) -> TaskOutcome:
        """Build a failed outcome for one task."""

        return TaskOutcome(
            index=task.index,
            source=task.source,
            output_path=task.destination,
            status=TaskStatus.FAILED,
            exit_code=exit_code,
            reason=reason,
        )
