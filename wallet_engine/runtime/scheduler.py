from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

TaskCallback = Callable[[], Awaitable[None]]


class Clock(ABC):
    """Time source for timestamps and sleeps between ticks."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """Clock that only moves when told to. Sleepers wake when ``advance`` passes their deadline."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._elapsed = 0.0
        self._sleepers: List[Tuple[float, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        entry = (self._elapsed + seconds, future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    @property
    def pending_sleepers(self) -> int:
        return len(self._sleepers)

    async def advance(self, seconds: float) -> None:
        """Move time forward and let every task whose sleep expired run until it blocks again."""
        self._elapsed += seconds
        self._now += timedelta(seconds=seconds)
        for deadline, future in list(self._sleepers):
            if deadline <= self._elapsed and not future.done():
                future.set_result(None)
        for _ in range(20):
            await asyncio.sleep(0)


class RepeatingTask:
    """Runs ``callback`` every ``interval_seconds`` on ``clock`` until cancelled.

    Callback failures are logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: TaskCallback,
        *,
        clock: Optional[Clock] = None,
        timeout_seconds: Optional[float] = None,
        run_immediately: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._clock = clock or SystemClock()
        self._timeout = timeout_seconds
        self._run_immediately = run_immediately
        self.logger = logger or logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._in_run = False
        self.run_count = 0
        self.consecutive_errors = 0
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_alive(self) -> bool:
        """True while the underlying asyncio task has not finished, even after cancel()."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"repeating-{self.name}")

    def cancel(self) -> None:
        """Stop scheduling further runs.

        A run already in progress is allowed to finish, so this is safe to call
        from inside the callback or anything it awaits.
        """
        self._running = False
        task = self._task
        if task is None or self._in_run or task is asyncio.current_task():
            return
        task.cancel()

    async def stop(self) -> None:
        task = self._task
        self._running = False
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run_loop(self) -> None:
        try:
            if not self._run_immediately:
                await self._clock.sleep(self.interval_seconds)
            while self._running:
                await self._run_once()
                if not self._running:
                    break
                await self._clock.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            return
        finally:
            self._running = False

    async def _run_once(self) -> None:
        self._in_run = True
        try:
            if self._timeout:
                await asyncio.wait_for(self._callback(), timeout=self._timeout)
            else:
                await self._callback()
            self.last_error = None
            self.consecutive_errors = 0
        except asyncio.TimeoutError:
            self.last_error = f"run timed out after {self._timeout}s"
            self.consecutive_errors += 1
            self.logger.warning("Task %s timed out", self.name)
        except Exception as exc:  # noqa: BLE001
            self.last_error = str(exc)
            self.consecutive_errors += 1
            self.logger.warning("Task %s failed: %s", self.name, exc, exc_info=True)
        finally:
            self._in_run = False
            self.run_count += 1


class Scheduler:
    """Owns the named repeating tasks of one engine instance."""

    def __init__(self, *, clock: Optional[Clock] = None, logger: Optional[logging.Logger] = None) -> None:
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)
        self._tasks: Dict[str, RepeatingTask] = {}
        # Cancelled tasks whose last run is still finishing
        self._retiring: List[RepeatingTask] = []

    def schedule(
        self,
        name: str,
        interval_seconds: float,
        callback: TaskCallback,
        *,
        timeout_seconds: Optional[float] = None,
        run_immediately: bool = False,
    ) -> RepeatingTask:
        existing = self._tasks.get(name)
        if existing is not None and existing.is_running:
            raise ValueError(f"Task '{name}' already scheduled")
        task = RepeatingTask(
            name,
            interval_seconds,
            callback,
            clock=self.clock,
            timeout_seconds=timeout_seconds,
            run_immediately=run_immediately,
            logger=self.logger,
        )
        self._tasks[name] = task
        task.start()
        self.logger.info("Scheduled %s every %ss", name, interval_seconds)
        return task

    def is_scheduled(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and task.is_running

    def cancel(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()
            self._retiring = [other for other in self._retiring if other.is_alive]
            if task.is_alive:
                self._retiring.append(task)
            self.logger.info("Cancelled %s", name)

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values()) + self._retiring
        self._tasks.clear()
        self._retiring = []
        await asyncio.gather(*(task.stop() for task in tasks), return_exceptions=True)
