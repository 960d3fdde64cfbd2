from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Protocol

from tracker.core.logging import get_logger
from tracker.core.types import Clock, utc_now


class PeriodicTask(Protocol):
    name: str
    interval_s: float

    async def run_cycle(self) -> None: ...
    async def shutdown(self, at: datetime) -> None: ...


class TaskState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class TaskScheduler:
    """
    Runs independent periodic tasks concurrently under one start/stop lifecycle.

    - start(): one asyncio task per registered task; each runs a cycle
      immediately, then once per interval_s (fixed rate, missed ticks skipped).
    - stop(): sets one shared stop event and waits until every task has finished
      its in-flight cycle, run shutdown(at=<drain time>), and exited.
      The drain time is read after the in-flight cycle and is never earlier
      than stopped_at.

    Cancellation is cooperative: a task only sees the stop event while waiting
    for its next tick. A failing cycle is logged and the task keeps ticking.
    Single use: there is no restart after stop().
    """

    def __init__(self, tasks: Sequence[PeriodicTask], *, clock: Clock = utc_now) -> None:
        names = [t.name for t in tasks]
        if len(set(names)) != len(names):
            raise ValueError(f"Task names must be unique, got {names}")
        for t in tasks:
            if float(t.interval_s) <= 0:
                raise ValueError(f"Task {t.name!r} interval_s must be > 0")

        self.tasks = list(tasks)
        self.clock = clock
        self.stopped_at: datetime | None = None

        self._states: dict[str, TaskState] = {t.name: TaskState.NOT_STARTED for t in self.tasks}
        self._stop_event: asyncio.Event | None = None
        self._running: list[asyncio.Task] = []
        self._started = False
        self._logger = get_logger(__name__)

    def state(self, name: str) -> TaskState:
        return self._states[name]

    @property
    def states(self) -> dict[str, TaskState]:
        return dict(self._states)

    def start(self) -> None:
        """
        Must be called from inside a running event loop.
        """
        if self._started:
            raise RuntimeError("TaskScheduler already started; create a new instance to rerun.")
        self._started = True
        self._stop_event = asyncio.Event()

        for task in self.tasks:
            self._logger.info("task_starting", extra={"task": task.name})
            self._running.append(
                asyncio.create_task(
                    self._run_task(task, self._stop_event), name=f"periodic:{task.name}"
                )
            )
        self._logger.info("scheduler_started", extra={"tasks": len(self._running)})

    async def stop(self) -> None:
        if not self._started or self._stop_event is None:
            return
        if self._stop_event.is_set():
            # second stop() still waits for the first drain to finish
            await asyncio.gather(*self._running, return_exceptions=True)
            return

        self.stopped_at = self.clock()
        self._logger.info("scheduler_stopping", extra={"tasks": len(self._running)})
        self._stop_event.set()

        results = await asyncio.gather(*self._running, return_exceptions=True)
        for task, res in zip(self.tasks, results):
            if isinstance(res, BaseException):
                self._logger.error(
                    "task_exited_with_error",
                    extra={"task": task.name, "error": repr(res)},
                )
        self._logger.info("scheduler_stopped")

    # ----------------------------
    # Internal helpers
    # ----------------------------
    async def _run_task(self, task: PeriodicTask, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        interval = float(task.interval_s)
        self._states[task.name] = TaskState.RUNNING

        try:
            next_tick = loop.time()
            while True:
                await self._run_cycle(task)

                next_tick += interval
                now = loop.time()
                while next_tick <= now:
                    next_tick += interval

                if await self._wait_for_stop(stop_event, next_tick - now):
                    break
        finally:
            self._states[task.name] = TaskState.DRAINING
            # read after the in-flight cycle, never earlier than stopped_at
            at = self.clock()
            if self.stopped_at is not None and self.stopped_at > at:
                at = self.stopped_at
            try:
                await task.shutdown(at)
            except Exception as exc:
                self._logger.error(
                    "task_shutdown_failed",
                    extra={"task": task.name, "error": repr(exc)},
                )
            self._states[task.name] = TaskState.STOPPED
            self._logger.info("task_stopped", extra={"task": task.name})

    async def _run_cycle(self, task: PeriodicTask) -> None:
        try:
            await task.run_cycle()
        except Exception as exc:
            self._logger.error(
                "task_cycle_failed",
                extra={"task": task.name, "error": repr(exc)},
            )

    async def _wait_for_stop(self, stop_event: asyncio.Event, timeout: float) -> bool:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(timeout, 0.0))
        except asyncio.TimeoutError:
            return False
        return True
