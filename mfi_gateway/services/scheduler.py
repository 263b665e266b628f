"""Periodic task scheduler with retry, backoff and auto-disable"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from mfi_gateway.domain.exceptions import TaskNotFoundError
from mfi_gateway.domain.models import ScheduledTask
from mfi_gateway.infrastructure.observability.logging import log_task_run
from mfi_gateway.infrastructure.observability.metrics import record_task_run, task_enabled_gauge
from mfi_gateway.utils.date_utils import utcnow

TaskJob = Callable[[], Awaitable[Any]]


class TaskScheduler:
    """
    Runs registered jobs on fixed intervals.

    Timers are APScheduler interval jobs on the running event loop. Each
    firing spawns the job as its own asyncio task, so stopping the
    scheduler never cancels a sweep that is already in flight.

    Failure handling per task:
    - retry_count is incremented and the error kept in last_error
    - below max_retries a one-shot retry is scheduled after
      retry_delay_minutes * retry_backoff_factor ** (retry_count - 1)
    - at max_retries the task is disabled and its timers removed
    A successful run resets retry_count and drops any pending retry.
    """

    def __init__(
        self,
        retry_delay_minutes: float = 30,
        retry_backoff_factor: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.retry_delay_minutes = retry_delay_minutes
        self.retry_backoff_factor = retry_backoff_factor
        self.clock = clock

        self._tasks: Dict[str, ScheduledTask] = {}
        self._jobs: Dict[str, TaskJob] = {}
        self._retry_at: Dict[str, datetime] = {}
        self._executions: Set[asyncio.Task] = set()
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def add_task(self, task: ScheduledTask, job: TaskJob) -> None:
        if task.id in self._tasks:
            raise ValueError(f"Task already registered: {task.id}")
        self._tasks[task.id] = task
        self._jobs[task.id] = job
        task_enabled_gauge.labels(task=task.id).set(1 if task.enabled else 0)
        if self.is_running and task.enabled:
            self._schedule(task)
        logging.info("Task registered", extra={"task_id": task.id, "interval_minutes": task.interval_minutes})

    def remove_task(self, task_id: str) -> None:
        self._require(task_id)
        self._unschedule(task_id)
        del self._tasks[task_id]
        del self._jobs[task_id]

    def start(self) -> None:
        """Start timers for every enabled task. Must be called with a running event loop."""
        if self.is_running:
            logging.warning("Task scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop(), timezone="UTC")
        for task in self._tasks.values():
            if task.enabled:
                self._schedule(task)
        self._scheduler.start()
        logging.info("Task scheduler started", extra={"task_count": len(self._tasks)})

    async def stop(self) -> None:
        """Cancel timers and pending retries, then wait for in-flight runs to finish"""
        if not self.is_running:
            return

        scheduler, self._scheduler = self._scheduler, None
        scheduler.shutdown(wait=False)
        self._retry_at.clear()
        for task in self._tasks.values():
            task.next_run = None

        if self._executions:
            await asyncio.wait(set(self._executions))
        logging.info("Task scheduler stopped")

    async def trigger_task(self, task_id: str) -> bool:
        """
        Run a task immediately, with the same retry bookkeeping as a timed run.

        Returns:
            True if the job succeeded

        Raises:
            TaskNotFoundError: Unknown task id
            ValueError: Task is disabled
            RuntimeError: Task is already running
        """
        task = self._require(task_id)
        if not task.enabled:
            raise ValueError(f"Task is disabled: {task_id}")
        if task.running:
            raise RuntimeError(f"Task already running: {task_id}")

        logging.info("Task triggered manually", extra={"task_id": task_id})
        return await asyncio.shield(self._spawn(task_id))

    def enable_task(self, task_id: str) -> None:
        task = self._require(task_id)
        task.enabled = True
        task.retry_count = 0
        task.last_error = None
        task_enabled_gauge.labels(task=task_id).set(1)
        if self.is_running:
            self._schedule(task)

    def disable_task(self, task_id: str) -> None:
        task = self._require(task_id)
        task.enabled = False
        task.next_run = None
        self._unschedule(task_id)
        task_enabled_gauge.labels(task=task_id).set(0)

    def update_task(
        self,
        task_id: str,
        interval_minutes: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> ScheduledTask:
        task = self._require(task_id)
        if interval_minutes is not None:
            if interval_minutes <= 0:
                raise ValueError("interval_minutes must be positive")
            task.interval_minutes = interval_minutes
        if max_retries is not None:
            task.max_retries = max_retries
        if self.is_running and task.enabled:
            self._schedule(task)
        return replace(task)

    def get_task(self, task_id: str) -> ScheduledTask:
        return replace(self._require(task_id))

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "task_count": len(self._tasks),
            "tasks": [replace(task) for task in self._tasks.values()],
            "pending_retries": dict(self._retry_at),
        }

    def get_next_runs(self) -> Dict[str, Optional[datetime]]:
        runs = {}
        for task in self._tasks.values():
            if task.enabled:
                runs[task.id] = self._retry_at.get(task.id) or task.next_run
        return runs

    def _require(self, task_id: str) -> ScheduledTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Unknown task: {task_id}")
        return task

    def _schedule(self, task: ScheduledTask) -> None:
        self._scheduler.add_job(
            self._fire,
            IntervalTrigger(minutes=task.interval_minutes),
            args=[task.id],
            id=task.id,
            name=task.name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        task.next_run = self.clock() + timedelta(minutes=task.interval_minutes)

    def _schedule_retry(self, task: ScheduledTask) -> None:
        delay = self.retry_delay_minutes * self.retry_backoff_factor ** (task.retry_count - 1)
        run_at = self.clock() + timedelta(minutes=delay)
        self._scheduler.add_job(
            self._fire,
            DateTrigger(run_date=run_at),
            args=[task.id, True],
            id=f"{task.id}:retry",
            replace_existing=True,
            misfire_grace_time=None,
        )
        self._retry_at[task.id] = run_at
        logging.info(
            "Task retry scheduled",
            extra={"task_id": task.id, "retry_count": task.retry_count, "delay_minutes": delay},
        )

    def _cancel_retry(self, task_id: str) -> None:
        self._retry_at.pop(task_id, None)
        self._remove_job(f"{task_id}:retry")

    def _unschedule(self, task_id: str) -> None:
        self._cancel_retry(task_id)
        self._remove_job(task_id)

    def _remove_job(self, job_id: str) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    async def _fire(self, task_id: str, retry: bool = False) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        if retry:
            self._retry_at.pop(task_id, None)
        else:
            task.next_run = self.clock() + timedelta(minutes=task.interval_minutes)
        self._spawn(task_id)

    def _spawn(self, task_id: str) -> asyncio.Task:
        execution = asyncio.get_running_loop().create_task(self._execute(task_id))
        self._executions.add(execution)
        execution.add_done_callback(self._executions.discard)
        return execution

    async def _execute(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None or not task.enabled:
            return False
        if task.running:
            logging.info("Task still running, skipping this run", extra={"task_id": task_id})
            record_task_run(task_id, "skipped", task.enabled)
            return False

        job = self._jobs[task_id]
        task.running = True
        task.last_run = self.clock()
        started = time.perf_counter()
        try:
            await job()
        except Exception as e:
            self._handle_failure(task, e, (time.perf_counter() - started) * 1000)
            return False
        finally:
            task.running = False

        self._handle_success(task, (time.perf_counter() - started) * 1000)
        return True

    def _handle_success(self, task: ScheduledTask, duration_ms: float) -> None:
        task.retry_count = 0
        task.last_error = None
        self._cancel_retry(task.id)
        record_task_run(task.id, "success", task.enabled)
        log_task_run(task.id, "success", task.retry_count, duration_ms)

    def _handle_failure(self, task: ScheduledTask, error: Exception, duration_ms: float) -> None:
        task.retry_count += 1
        task.last_error = str(error)

        if task.retry_count >= task.max_retries:
            task.enabled = False
            task.next_run = None
            self._unschedule(task.id)
            logging.error(
                "Task disabled after repeated failures",
                extra={"task_id": task.id, "retry_count": task.retry_count},
            )
        elif self.is_running:
            self._schedule_retry(task)

        record_task_run(task.id, "failure", task.enabled)
        log_task_run(task.id, "failure", task.retry_count, duration_ms, str(error))
