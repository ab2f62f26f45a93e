"""Build job scheduler: admission control and the job state machine."""

import asyncio
import dataclasses
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from apk_forge.core.config import settings
from apk_forge.core.errors import CapacityExceeded
from apk_forge.models.build import BuildRequest, BuildStatus
from apk_forge.services.materializer import job_workspace

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BuildJob:
    """One APK build, from admission to its terminal state."""
    id: str
    params: BuildRequest
    status: BuildStatus = BuildStatus.QUEUED
    stage: str = "queued"
    artifact_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "status": self.status.value,
            "stage": self.stage,
            "artifactUrl": self.artifact_url,
            "error": self.error,
            "appName": self.params.app_name,
            "packageName": self.params.package_name,
            "version": self.params.version,
            "startedAt": self.created_at.isoformat(),
            "buildStartedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class BuildScheduler:
    """Admits build requests and runs each one as its own asyncio task.

    The job map and the two slot counters are the only shared state. They
    are touched only while holding ``_lock`` and never across an ``await``.
    A slot is reserved at admission (``_reserved``) and turns into an active
    slot at the queued -> building transition, so two concurrent enqueues can
    never both take the last slot.
    """

    _instance: Optional["BuildScheduler"] = None

    def __init__(
        self,
        build_service=None,
        max_concurrent: Optional[int] = None,
        retention: Optional[timedelta] = None,
        max_error_length: Optional[int] = None,
        work_path: Optional[Path] = None,
    ):
        if build_service is None:
            from apk_forge.services.builder import ApkBuildService
            build_service = ApkBuildService()
        self.build_service = build_service
        self.max_concurrent = max_concurrent if max_concurrent is not None else settings.MAX_CONCURRENT_BUILDS
        self.retention = retention if retention is not None else timedelta(minutes=settings.JOB_RETENTION_MINUTES)
        self.max_error_length = max_error_length if max_error_length is not None else settings.MAX_ERROR_LENGTH
        self.work_path = Path(work_path or settings.WORK_PATH)

        self._lock = threading.Lock()
        self._jobs: Dict[str, BuildJob] = {}
        self._active = 0
        self._reserved = 0
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[BuildJob], None]] = []
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    def get_instance(cls) -> "BuildScheduler":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ── Boundary operations ──────────────────────────────────────────────

    def enqueue(self, params: BuildRequest) -> str:
        """Admit a build and start it in the background. Returns the job id.

        Raises ``CapacityExceeded`` without recording anything when all
        slots are taken. Must be called from the event loop thread.
        """
        with self._lock:
            if self._active + self._reserved >= self.max_concurrent:
                raise CapacityExceeded(self.max_concurrent)
            job = BuildJob(id=str(uuid.uuid4()), params=params)
            self._jobs[job.id] = job
            self._reserved += 1

        task = asyncio.get_running_loop().create_task(self._run(job), name=f"build-{job.id[:8]}")
        self._tasks.add(task)
        task.add_done_callback(lambda t, job=job: self._on_task_done(t, job))

        logger.info(f"Queued build {job.id} for {params.app_name} ({params.package_name})")
        self._notify(job)
        return job.id

    def status(self, job_id: str) -> Optional[BuildJob]:
        """Snapshot of a job, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return dataclasses.replace(job) if job else None

    def list_jobs(self, limit: int = 100) -> List[BuildJob]:
        """Most recent jobs first."""
        with self._lock:
            jobs = [dataclasses.replace(j) for j in self._jobs.values()]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    @property
    def capacity(self) -> int:
        return self.max_concurrent

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {s.value: 0 for s in BuildStatus}
            for job in self._jobs.values():
                counts[job.status.value] += 1
            counts["active"] = self._active
            counts["capacity"] = self.max_concurrent
            return counts

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self, prune_interval: Optional[float] = None) -> None:
        """Start the retention sweeper."""
        if self._sweeper is not None:
            return
        interval = prune_interval if prune_interval is not None else settings.PRUNE_INTERVAL
        self._sweeper = asyncio.create_task(self._sweep(interval))
        logger.info(f"Build scheduler started (max {self.max_concurrent} concurrent builds)")

    async def stop(self) -> None:
        """Stop the sweeper and cancel builds still in flight."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Build scheduler stopped")

    def prune(self, now: Optional[datetime] = None) -> int:
        """Evict terminal jobs that finished longer ago than the retention window."""
        cutoff = (now or _utcnow()) - self.retention
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.status.is_terminal and job.completed_at and job.completed_at <= cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info(f"Evicted {len(expired)} finished build records")
        return len(expired)

    async def _sweep(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.prune()
            except Exception as e:
                logger.exception(f"Build record sweep failed: {e}")

    # ── Listeners ────────────────────────────────────────────────────────

    def add_listener(self, callback: Callable[[BuildJob], None]) -> None:
        """Register a callback invoked with a snapshot on every job update."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def _notify(self, job: BuildJob) -> None:
        snapshot = self.status(job.id) or job
        for callback in self._listeners:
            try:
                callback(snapshot)
            except Exception as e:
                logger.exception(f"Listener error: {e}")

    # ── Job execution ────────────────────────────────────────────────────

    async def _run(self, job: BuildJob) -> None:
        with self._lock:
            self._reserved -= 1
            self._active += 1
            job.status = BuildStatus.BUILDING
            job.started_at = _utcnow()
        logger.info(f"Build {job.id} started")
        self._notify(job)

        try:
            async with job_workspace(self.work_path, job.id) as workdir:
                artifact_url = await self.build_service.run_build(
                    job.params, workdir, on_stage=lambda name: self._set_stage(job, name)
                )
        except Exception as e:
            logger.warning(f"Build {job.id} failed at {job.stage}: {_truncate(str(e), 500)}")
            self._finish(job, error=str(e) or type(e).__name__)
        else:
            self._finish(job, artifact_url=artifact_url)

    def _set_stage(self, job: BuildJob, stage: str) -> None:
        with self._lock:
            if job.status.is_terminal:
                return
            job.stage = stage
        logger.info(f"Build {job.id}: {stage}")
        self._notify(job)

    def _finish(self, job: BuildJob, artifact_url: Optional[str] = None, error: Optional[str] = None) -> bool:
        """Move ``job`` to its terminal state and release its slot, once."""
        with self._lock:
            if job.status.is_terminal:
                return False
            self._active -= 1

            if error is None and artifact_url:
                job.status = BuildStatus.DONE
                job.stage = "done"
                job.artifact_url = artifact_url
            else:
                job.status = BuildStatus.FAILED
                job.stage = "failed"
                job.error = _truncate(error or "Unknown error", self.max_error_length)
            job.completed_at = _utcnow()

        logger.info(f"Build {job.id} {job.status.value}")
        self._notify(job)
        return True

    def _on_task_done(self, task: asyncio.Task, job: BuildJob) -> None:
        """Supervisor: no build task may end without a terminal state."""
        self._tasks.discard(task)
        if job.status is BuildStatus.QUEUED:
            # Cancelled before it ever ran: give the slot back and drop the record
            with self._lock:
                if job.status is BuildStatus.QUEUED:
                    self._reserved -= 1
                    self._jobs.pop(job.id, None)
            logger.info(f"Build {job.id} cancelled before it started")
            return
        if task.cancelled():
            reason = "Build cancelled"
        elif task.exception() is not None:
            reason = f"Build crashed: {task.exception()}"
            logger.error(f"Build {job.id} task crashed", exc_info=task.exception())
        else:
            return
        self._finish(job, error=reason)


TRUNCATION_MARK = "... [truncated]"


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= len(TRUNCATION_MARK):
        return text[:limit]
    return text[: limit - len(TRUNCATION_MARK)] + TRUNCATION_MARK
