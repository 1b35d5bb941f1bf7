from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel

from app.models import MeetingStatus
from app.services.post_call import PostCallPipeline

logger = logging.getLogger(__name__)


class JobStatus(StrEnum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


FINISHED = (JobStatus.completed, JobStatus.failed)


class AnalysisJob(BaseModel):
    meeting_id: str
    status: JobStatus
    created_at: datetime
    finished_at: datetime | None = None
    next_meeting_id: str | None = None
    error: str | None = None


class AnalysisSupervisor:
    """Runs post-call analysis as detached tasks, one per meeting.

    The request that ends a call returns right away; how the run went is kept
    here (and in the meeting's status) for operators to inspect later.
    """

    def __init__(self, pipeline: PostCallPipeline, max_jobs: int = 1000) -> None:
        self._pipeline = pipeline
        self._jobs: dict[str, AnalysisJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._max_jobs = max_jobs

    def _evict(self) -> None:
        if len(self._jobs) <= self._max_jobs:
            return
        # Remove oldest completed/failed jobs first
        candidates = sorted(
            (j for j in self._jobs.values() if j.status in FINISHED),
            key=lambda j: j.created_at,
        )
        while len(self._jobs) > self._max_jobs and candidates:
            self._jobs.pop(candidates.pop(0).meeting_id, None)

    def submit(self, meeting_id: str) -> AnalysisJob:
        existing = self._jobs.get(meeting_id)
        if existing is not None and existing.status not in FINISHED:
            logger.info("Analysis for meeting %s already %s", meeting_id, existing.status)
            return existing

        job = AnalysisJob(
            meeting_id=meeting_id,
            status=JobStatus.pending,
            created_at=datetime.now(timezone.utc),
        )
        self._jobs[meeting_id] = job
        self._evict()
        task = asyncio.create_task(self._run(job))
        self._tasks[meeting_id] = task
        task.add_done_callback(lambda t: self._forget(meeting_id, t))
        return job

    def _forget(self, meeting_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(meeting_id) is task:
            del self._tasks[meeting_id]

    async def _run(self, job: AnalysisJob) -> None:
        job.status = JobStatus.running
        try:
            outcome = await self._pipeline.process(job.meeting_id)
        except Exception as exc:
            logger.exception("Analysis job for meeting %s crashed", job.meeting_id)
            self._mark_failed(job, str(exc))
            return

        if outcome.status == MeetingStatus.failed:
            self._mark_failed(job, outcome.error or "Processing failed")
            return
        job.status = JobStatus.completed
        job.next_meeting_id = outcome.next_meeting_id
        job.finished_at = datetime.now(timezone.utc)

    @staticmethod
    def _mark_failed(job: AnalysisJob, error: str) -> None:
        job.status = JobStatus.failed
        job.error = error
        job.finished_at = datetime.now(timezone.utc)
        logger.error("Analysis for meeting %s failed: %s", job.meeting_id, error)

    def get_job(self, meeting_id: str) -> AnalysisJob | None:
        return self._jobs.get(meeting_id)

    def failures(self) -> list[AnalysisJob]:
        return sorted(
            (j for j in self._jobs.values() if j.status == JobStatus.failed),
            key=lambda j: j.created_at,
        )

    async def drain(self) -> None:
        """Wait for every analysis currently in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
