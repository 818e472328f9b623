"""Background MAL import jobs.

An in-process FIFO worker runs one import at a time with bounded attempts.
A retry restarts the whole batch; per-item upserts are idempotent, so a
rerun converges to the same collection. The summary email goes out at most
once per job (cache flag keyed by job id), the failure email only after the
last attempt.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediashelf.clients.base import ICacheBackend, IMailer, IMetadataProvider, ImportSummaryMail
from mediashelf.errors import NotFoundError
from mediashelf.services import cache_keys
from mediashelf.services.collections import CacheTTLs
from mediashelf.services.importer import CollectionImportService, ImportItem, ImportSummary

logger = logging.getLogger(__name__)


@dataclass
class ImportJobData:
    user_id: int
    user_email: str
    username: str
    items: list[ImportItem]


@dataclass
class ImportJob:
    id: str
    data: ImportJobData
    max_attempts: int = 3
    status: str = "queued"           # queued | active | completed | failed
    attempts_made: int = 0
    progress: int = 0                # percent
    result: Optional[dict] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made >= self.max_attempts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.data.user_id,
            "status": self.status,
            "progress": self.progress,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "total": len(self.data.items),
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ImportProcessor:
    """Runs one job attempt: the batch, then the notification email."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: ICacheBackend,
        mailer: IMailer,
        metadata: Optional[IMetadataProvider] = None,
        ttls: Optional[CacheTTLs] = None,
        notification_ttl: int = 86400,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.mailer = mailer
        self.metadata = metadata
        self.ttls = ttls
        self.notification_ttl = notification_ttl

    async def process(self, job: ImportJob) -> dict:
        data = job.data
        logger.info(f"Starting MAL import job {job.id} for user {data.user_id} with {len(data.items)} items "
                    f"(attempt {job.attempts_made}/{job.max_attempts})")

        async def report(processed: int, total: int) -> None:
            job.progress = round(processed / total * 100) if total else 100

        try:
            async with self.session_factory() as db:
                service = CollectionImportService(db, self.cache, self.metadata, self.ttls)
                summary = await service.import_batch(data.user_id, data.items, on_progress=report)
        except Exception as e:
            logger.error(f"MAL import job {job.id} failed on attempt {job.attempts_made}: {e!r}")
            if job.is_final_attempt:
                await self.mailer.send_import_failure_email(data.user_email, data.username, str(e) or "Unknown error")
            raise

        logger.info(f"MAL import job {job.id} completed: {summary.imported} imported, {summary.failed} failed")
        await self._notify_once(job, summary)
        return summary.to_dict()

    async def _notify_once(self, job: ImportJob, summary: ImportSummary) -> None:
        flag = cache_keys.import_notified_key(job.id)
        try:
            if await self.cache.get(flag):
                logger.info(f"Import summary for job {job.id} already sent, skipping")
                return
        except Exception as e:
            logger.warning(f"Could not read notification flag for job {job.id}: {e!r}")

        failed_items = [
            {"title": d.title, "reason": d.reason}
            for d in summary.details if d.outcome in ("not_found", "skipped")
        ]
        sent = await self.mailer.send_import_summary_email(
            job.data.user_email,
            job.data.username,
            ImportSummaryMail(
                imported=summary.imported,
                failed=summary.failed,
                not_found=summary.not_found,
                total=summary.total,
                failed_items=failed_items,
            ),
        )
        if not sent:
            return
        try:
            await self.cache.set(flag, True, self.notification_ttl)
        except Exception as e:
            logger.warning(f"Could not store notification flag for job {job.id}: {e!r}")


class ImportQueue:
    """In-process FIFO of import jobs with bounded retries."""

    def __init__(
        self,
        processor: ImportProcessor,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        retention_seconds: float = 86400,
    ):
        self.processor = processor
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.retention_seconds = retention_seconds
        self.jobs: dict[str, ImportJob] = {}
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def enqueue(self, data: ImportJobData) -> ImportJob:
        job = ImportJob(id=uuid.uuid4().hex, data=data, max_attempts=self.max_attempts)
        self.jobs[job.id] = job
        self._queue.put_nowait(job.id)
        logger.info(f"Queued MAL import job {job.id} for user {data.user_id} ({len(data.items)} items)")
        return job

    def get(self, job_id: str) -> ImportJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Import job {job_id} not found")
        return job

    def stats(self) -> dict:
        counts = {"queued": 0, "active": 0, "completed": 0, "failed": 0}
        for job in self.jobs.values():
            counts[job.status] += 1
        return {**counts, "total": len(self.jobs)}

    async def run_job(self, job: ImportJob) -> ImportJob:
        """Attempt a job until it succeeds or runs out of attempts."""
        job.status = "active"
        while True:
            job.attempts_made += 1
            try:
                job.result = await self.processor.process(job)
            except Exception as e:
                job.error = str(e) or e.__class__.__name__
                if job.is_final_attempt:
                    job.status = "failed"
                    break
                await asyncio.sleep(self.backoff_seconds)
                continue
            job.status = "completed"
            job.error = None
            job.progress = 100
            break
        job.finished_at = datetime.now(timezone.utc)
        return job

    async def _work(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self.run_job(self.jobs[job_id])
            except Exception as e:
                logger.exception(f"Import worker crashed on job {job_id}: {e!r}")
            finally:
                removed = self.cleanup(self.retention_seconds)
                if removed:
                    logger.debug(f"Dropped {removed} finished import job(s) past retention")
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work(), name="mal-import-worker")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    def cleanup(self, max_age_seconds: float = 86400) -> int:
        """Forget finished jobs older than max_age_seconds."""
        now = datetime.now(timezone.utc)
        stale = [
            job_id for job_id, job in self.jobs.items()
            if job.status in ("completed", "failed")
            and job.finished_at is not None
            and (now - job.finished_at).total_seconds() > max_age_seconds
        ]
        for job_id in stale:
            del self.jobs[job_id]
        return len(stale)
