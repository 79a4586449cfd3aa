"""Bounded, exponentially backed-off re-delivery of failed reports.

Failed payloads are persisted in the transient store under their retry key.
A one-shot job carrying only the retry key is registered with a task
scheduler; the job reads the payload back from the store when it fires.
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ethicrawler_shield.config import SettingsStore
from ethicrawler_shield.consts import RETRY_JOB_NAME
from ethicrawler_shield.events import ClassificationEvent, RetryRecord
from ethicrawler_shield.storage import TransientStore
from ethicrawler_shield.telemetry import DeliveryTelemetry
from ethicrawler_shield.typing import JobFunc

logger = logging.getLogger(__name__)


def _job_id(job_name: str, args: Sequence[Any]) -> str:
    return ":".join([job_name, *(str(arg) for arg in args)])


class TaskScheduler(ABC):
    """Abstract time-based task runner.

    Runs a named job with given arguments at or after a point in time, at
    most once per scheduling.
    """

    def __init__(self):
        self._jobs: Dict[str, JobFunc] = {}

    def register_job(self, name: str, func: JobFunc) -> None:
        """Bind a job name to the coroutine function it runs."""
        self._jobs[name] = func

    def _job(self, name: str) -> JobFunc:
        if name not in self._jobs:
            raise KeyError(f"No job registered under '{name}'")
        return self._jobs[name]

    @abstractmethod
    def schedule_once(self, job_name: str, args: Sequence[Any], run_at: datetime) -> None:
        """Run job_name(*args) once, at or after run_at."""
        pass

    @abstractmethod
    def is_scheduled(self, job_name: str, args: Sequence[Any]) -> bool:
        """Whether a run of job_name with these args is pending."""
        pass

    def start(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


class MemoryTaskScheduler(TaskScheduler):
    """In-process task scheduler driven explicitly through `run_due`.

    Nothing runs unless the caller invokes `run_due`; `start()` does not tick.
    Meant for tests and for hosts that already have a periodic tick of their
    own. `BotDetector` defaults to `APSchedulerTaskScheduler`.
    """

    def __init__(self):
        super().__init__()
        self._pending: Dict[Tuple[str, Tuple[Any, ...]], datetime] = {}
        self._lock = Lock()

    def schedule_once(self, job_name: str, args: Sequence[Any], run_at: datetime) -> None:
        self._job(job_name)
        with self._lock:
            self._pending[(job_name, tuple(args))] = run_at

    def is_scheduled(self, job_name: str, args: Sequence[Any]) -> bool:
        with self._lock:
            return (job_name, tuple(args)) in self._pending

    def pending(self) -> List[Tuple[str, Tuple[Any, ...], datetime]]:
        """Pending runs ordered by due time."""
        with self._lock:
            items = [(name, args, run_at) for (name, args), run_at in self._pending.items()]
        return sorted(items, key=lambda item: item[2])

    async def run_due(self, now: Optional[datetime] = None) -> int:
        """Run every job due at `now`; return how many ran.

        Jobs are removed from the pending set before they run, so a job may
        schedule itself again.
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            due = [key for key, run_at in self._pending.items() if run_at <= now]
            for key in due:
                del self._pending[key]

        for job_name, args in due:
            try:
                await self._job(job_name)(*args)
            except Exception as e:
                logger.exception(f"Job {job_name}{args} failed: {e}")
        return len(due)


class APSchedulerTaskScheduler(TaskScheduler):
    """Task scheduler backed by an APScheduler `AsyncIOScheduler`."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        super().__init__()
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)

    def schedule_once(self, job_name: str, args: Sequence[Any], run_at: datetime) -> None:
        self.scheduler.add_job(
            self._job(job_name),
            trigger="date",
            run_date=run_at,
            args=list(args),
            id=_job_id(job_name, args),
            name=job_name,
            replace_existing=True,
            misfire_grace_time=None,
        )

    def is_scheduled(self, job_name: str, args: Sequence[Any]) -> bool:
        return self.scheduler.get_job(_job_id(job_name, args)) is not None

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Retry scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Retry scheduler stopped")


class RetryScheduler:
    """Persists failed payloads and schedules their re-delivery."""

    def __init__(
        self,
        store: TransientStore,
        task_scheduler: TaskScheduler,
        telemetry: DeliveryTelemetry,
        settings_store: SettingsStore,
    ):
        self.store = store
        self.task_scheduler = task_scheduler
        self.telemetry = telemetry
        self.settings_store = settings_store

    async def store_payload(self, retry_key: str, event: ClassificationEvent,
                            now: Optional[float] = None) -> RetryRecord:
        """Persist a failed event with a fresh attempt count and expiry."""
        now = time.time() if now is None else now
        record = RetryRecord(
            retry_key=retry_key,
            payload=event,
            attempt_count=0,
            expiry=now + self.settings_store.get().retry_ttl,
        )
        await self._save(record, now)
        return record

    async def load_record(self, retry_key: str) -> Optional[RetryRecord]:
        """Read a retry record; None if it is missing, expired or unreadable."""
        raw = await self.store.get(retry_key)
        if raw is None:
            return None
        try:
            record = RetryRecord.model_validate(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable retry record {retry_key}: {e}")
            return None
        if record.is_expired():
            return None
        return record

    async def _save(self, record: RetryRecord, now: Optional[float] = None) -> None:
        # The record keeps its original expiry across reschedules
        ttl = record.remaining_ttl(now)
        await self.store.set(record.retry_key, record.model_dump(mode="json"), ttl=ttl)

    async def purge(self, retry_key: str) -> None:
        await self.store.delete(retry_key)

    def retry_delay(self, attempt_count: int) -> float:
        """Backoff delay in seconds before the next attempt."""
        return (2 ** attempt_count) * self.settings_store.get().retry_base_delay

    async def schedule_retry(self, retry_key: str) -> bool:
        """Schedule the next re-delivery of a failed report.

        Args:
            retry_key: Key of the persisted retry record

        Returns:
            True if a new retry job was registered
        """
        if self.task_scheduler.is_scheduled(RETRY_JOB_NAME, [retry_key]):
            logger.debug(f"Retry already pending for {retry_key}")
            return False

        record = await self.load_record(retry_key)
        if record is None:
            await self.telemetry.record_error(
                "Cannot schedule retry - missing data", {"retry_key": retry_key}
            )
            await self.purge(retry_key)
            return False

        max_retries = self.settings_store.get().max_retries
        if record.attempt_count >= max_retries:
            await self.purge(retry_key)
            await self.telemetry.record_error(
                "Maximum retry attempts exceeded, dropping request",
                {"retry_count": record.attempt_count, "retry_key": retry_key},
            )
            return False

        delay = self.retry_delay(record.attempt_count)
        updated = record.model_copy(update={"attempt_count": record.attempt_count + 1})
        await self._save(updated)

        run_at = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.task_scheduler.schedule_once(RETRY_JOB_NAME, [retry_key], run_at)
        logger.info(
            f"Scheduled retry {updated.attempt_count}/{max_retries} for {retry_key} "
            f"in {delay:.0f}s"
        )
        return True
