"""
Backlog coordinator for recognition tasks.

A single asyncio loop owns the FIFO backlog and the in-flight set. Tasks are
handed to isolated units through a concurrent.futures executor, at most
max_concurrent at a time, with a fixed cool-down after every completion to
spare the inference backend. A PauseSignal holds back new dispatches without
touching in-flight work. There are no retries here: a failed task is terminal
and it is up to the caller to re-submit it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from exam_hwr.core.executor import ERROR_TEXT
from exam_hwr.core.models import ErrorKind, RecognitionResult, RecognitionTask, TaskKey
from exam_hwr.core.pause import PauseSignal

logger = logging.getLogger(__name__)

TaskRunner = Callable[[RecognitionTask], RecognitionResult]
ResultCallback = Callable[[RecognitionResult], None]


@dataclass
class SchedulerReport:
    results: dict[TaskKey, RecognitionResult] = field(default_factory=dict)
    dispatch_order: list[TaskKey] = field(default_factory=list)
    undispatched: list[TaskKey] = field(default_factory=list)  # left in the backlog by a shutdown
    stats: dict[str, int] = field(default_factory=dict)


class RecognitionScheduler:
    def __init__(
        self,
        runner: TaskRunner,
        executor: Executor,
        max_concurrent: int = 1,
        inter_task_delay: float = 0.2,
        pause_poll_interval: float = 0.5,
        pause_signal: Optional[PauseSignal] = None,
        on_result: Optional[ResultCallback] = None,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        if inter_task_delay < 0:
            raise ValueError(f"inter_task_delay must be >= 0, got {inter_task_delay}")
        if pause_poll_interval <= 0:
            raise ValueError(f"pause_poll_interval must be > 0, got {pause_poll_interval}")

        self._runner = runner
        self._executor = executor
        self.max_concurrent = max_concurrent
        self.inter_task_delay = inter_task_delay
        self.pause_poll_interval = pause_poll_interval
        self.pause_signal = pause_signal or PauseSignal()
        self._on_result = on_result

        self._backlog: deque[RecognitionTask] = deque()
        self._known_keys: set[TaskKey] = set()
        self._inflight: set[asyncio.Task] = set()
        self._cooldown_until = 0.0
        self._shutdown_requested = False
        self._wakeup: Optional[asyncio.Event] = None
        self._report = SchedulerReport()

        self.stats = {
            "enqueued": 0,
            "duplicates": 0,
            "dispatched": 0,
            "completed": 0,
            "ok": 0,
            "no_result": 0,
            "errors": 0,
            "max_inflight": 0,
        }

    # ---- public API ----

    @property
    def backlog_size(self) -> int:
        return len(self._backlog)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def enqueue(self, task: RecognitionTask) -> bool:
        """
        Add a task to the backlog. A task whose (student, question) key was
        already enqueued on this scheduler is dropped.

        Returns:
            True if the task was accepted
        """
        if task.key in self._known_keys:
            self.stats["duplicates"] += 1
            logger.warning(
                f"[Scheduler] Ignoring duplicate task student={task.student_id} question={task.question_id}"
            )
            return False
        self._known_keys.add(task.key)
        self._backlog.append(task)
        self.stats["enqueued"] += 1
        self._wake()
        return True

    def enqueue_batch(self, tasks: Iterable[RecognitionTask]) -> int:
        return sum(1 for task in tasks if self.enqueue(task))

    def request_shutdown(self) -> None:
        """Stop dispatching; in-flight tasks still run to completion."""
        if not self._shutdown_requested:
            logger.info(
                f"[Scheduler] Shutdown requested: {len(self._inflight)} in flight, "
                f"{len(self._backlog)} left in backlog"
            )
        self._shutdown_requested = True
        self._wake()

    def try_dispatch(self) -> int:
        """
        Hand backlog items to units until the ceiling is reached.

        Returns:
            Number of tasks dispatched (0 while paused, shutting down or cooling down)
        """
        if self._shutdown_requested or self.pause_signal.is_paused:
            return 0
        loop = asyncio.get_running_loop()
        if loop.time() < self._cooldown_until:
            return 0

        dispatched = 0
        while self._backlog and len(self._inflight) < self.max_concurrent:
            task = self._backlog.popleft()
            self._report.dispatch_order.append(task.key)
            self.stats["dispatched"] += 1

            runner = asyncio.create_task(self._run_one(task), name=f"recognize-{task.student_id}-{task.question_id}")
            self._inflight.add(runner)
            self.stats["max_inflight"] = max(self.stats["max_inflight"], len(self._inflight))
            dispatched += 1

            logger.info(
                f"[Scheduler] Dispatched student={task.student_id} question={task.question_id}, "
                f"{len(self._backlog)} remaining in backlog"
            )
        return dispatched

    def on_task_complete(self, task: asyncio.Task, result: RecognitionResult) -> None:
        self._inflight.discard(task)
        self._cooldown_until = asyncio.get_running_loop().time() + self.inter_task_delay

        self._report.results[result.key] = result
        self.stats["completed"] += 1
        if result.status == "ok":
            self.stats["ok"] += 1
        elif result.status == "no_result":
            self.stats["no_result"] += 1
        else:
            self.stats["errors"] += 1

        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:
                logger.exception("[Scheduler] on_result callback failed")
        self._wake()

    async def run(self) -> SchedulerReport:
        """Drain the backlog. Returns once it is empty and nothing is in flight."""
        self._wakeup = asyncio.Event()
        loop = asyncio.get_running_loop()
        start = time.perf_counter()
        paused_logged = False

        logger.info(
            f"[Scheduler] Starting: {len(self._backlog)} tasks, max_concurrent={self.max_concurrent}, "
            f"inter_task_delay={self.inter_task_delay}s"
        )

        while self._backlog or self._inflight:
            self._wakeup.clear()

            if self._shutdown_requested:
                if not self._inflight:
                    break
                await self._wait(None)
                continue

            if self.pause_signal.is_paused:
                if not paused_logged:
                    logger.info(f"[Scheduler] Paused - {len(self._backlog)} items waiting")
                    paused_logged = True
                await self._wait(self.pause_poll_interval)
                continue
            paused_logged = False

            now = loop.time()
            if self._backlog and now < self._cooldown_until:
                await self._wait(self._cooldown_until - now)
                continue

            if self.try_dispatch() == 0:
                # at the ceiling, or only in-flight work left
                await self._wait(None if not self._backlog else self.pause_poll_interval)

        self._report.undispatched = [t.key for t in self._backlog]
        self._report.stats = dict(self.stats)

        elapsed = time.perf_counter() - start
        logger.info(
            f"[Scheduler] Completed in {elapsed:.2f}s - dispatched={self.stats['dispatched']}, "
            f"ok={self.stats['ok']}, no_result={self.stats['no_result']}, errors={self.stats['errors']}, "
            f"undispatched={len(self._report.undispatched)}"
        )
        return self._report

    # ---- internals ----

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def _wait(self, timeout: Optional[float]) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _run_one(self, task: RecognitionTask) -> None:
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(self._executor, self._runner, task)
        except Exception as e:
            # the unit itself died (broken pool, unpicklable task...)
            logger.error(f"[Scheduler] Unit failed for student={task.student_id} question={task.question_id}: {e}")
            result = RecognitionResult.error(task, ERROR_TEXT, ErrorKind.INTERNAL, str(e))

        # a process unit worked on a copy; drop the coordinator-side buffer too
        task.region.attach_result(result.text)

        if result.is_error:
            logger.warning(
                f"[Scheduler] Task failed: {result.error_kind.value if result.error_kind else 'unknown'}",
                extra={"student_id": result.student_id, "question_id": result.question_id},
            )
        self.on_task_complete(asyncio.current_task(), result)
