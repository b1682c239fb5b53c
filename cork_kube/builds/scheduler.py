"""Dependency-aware task scheduling for image builds.

Tasks run on a bounded thread pool once all their prerequisites have
succeeded. With one worker the tasks run strictly in the given order,
which must already be a valid dependency order.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection, Hashable, Mapping, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import TypeVar

from cork_kube.errors import CorkKubeError
from cork_kube.types import BatchMode, BuildStatus

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


@dataclass
class TaskOutcome:
    """Outcome of one scheduled task."""

    status: BuildStatus = BuildStatus.PENDING
    duration: float = 0.0
    error: CorkKubeError | None = None


def _timed(run: Callable[[T], None], task: T) -> tuple[float, CorkKubeError | None]:
    started = time.monotonic()
    try:
        run(task)
    except CorkKubeError as e:
        return time.monotonic() - started, e
    return time.monotonic() - started, None


def run_scheduled(
    tasks: Sequence[T],
    prerequisites: Mapping[T, Collection[T]],
    run: Callable[[T], None],
    jobs: int = 1,
    mode: BatchMode = BatchMode.FAIL_FAST,
) -> dict[T, TaskOutcome]:
    """Run tasks respecting prerequisites.

    In fail-fast mode no task is started after the first failure; tasks
    already running are awaited. In best-effort mode only tasks depending,
    directly or not, on a failed task are skipped. Tasks that never ran
    end up SKIPPED.

    Args:
        tasks: Tasks in a valid dependency order.
        prerequisites: Task -> tasks that must succeed first. Prerequisites
            outside ``tasks`` are ignored.
        run: Callable running one task; raises CorkKubeError on failure.
        jobs: Maximum number of tasks running at once.
        mode: Failure handling mode.

    Returns:
        Outcome per task.
    """
    outcomes: dict[T, TaskOutcome] = {t: TaskOutcome() for t in tasks}
    pending: list[T] = list(tasks)
    running: dict[Future[tuple[float, CorkKubeError | None]], T] = {}
    stopped = False

    def prereqs(task: T) -> list[T]:
        return [p for p in prerequisites.get(task, ()) if p in outcomes]

    with ThreadPoolExecutor(max_workers=max(1, jobs)) as pool:
        while pending or running:
            if not stopped:
                for task in list(pending):
                    blocked = any(
                        outcomes[p].status in (BuildStatus.FAILED, BuildStatus.SKIPPED)
                        for p in prereqs(task)
                    )
                    if blocked:
                        outcomes[task].status = BuildStatus.SKIPPED
                        pending.remove(task)

                for task in list(pending):
                    if len(running) >= jobs:
                        break
                    ready = all(
                        outcomes[p].status == BuildStatus.SUCCEEDED for p in prereqs(task)
                    )
                    if ready:
                        pending.remove(task)
                        outcomes[task].status = BuildStatus.RUNNING
                        running[pool.submit(_timed, run, task)] = task

            if not running:
                break

            done, _ = wait(running, return_when=FIRST_COMPLETED)
            for future in done:
                task = running.pop(future)
                duration, error = future.result()
                outcome = outcomes[task]
                outcome.duration = duration
                if error is None:
                    outcome.status = BuildStatus.SUCCEEDED
                else:
                    outcome.status = BuildStatus.FAILED
                    outcome.error = error
                    if mode == BatchMode.FAIL_FAST:
                        stopped = True

    for task in pending:
        outcomes[task].status = BuildStatus.SKIPPED
    return outcomes


__all__ = ["TaskOutcome", "run_scheduled"]
