"""Export job lifecycle.

A job moves queued -> processing -> completed | failed. `cancelled` can be
set from outside at any time before a terminal state; the running task
notices it at its next check and stops without touching the record again.

Phases run strictly in order, each owning a progress band:

    validation 0-10, download 10-40, configuration 40-45,
    render 45-90, delivery 90-100

Phases push updates into the job's ProgressChannel. One consumer task per job
turns them into store writes, so progress is monotonic and never races a
terminal write.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Awaitable, Callable

from timeline_export.config import get_settings
from timeline_export.constants.error_codes import user_message
from timeline_export.exceptions import (
    ExportError,
    JobCancelledError,
    JobNotFoundError,
    JobStateError,
    TimelineValidationError,
)
from timeline_export.render.compiler import compile_filter_graph
from timeline_export.render.executor import TranscodeExecutor
from timeline_export.render.output_settings import OutputSettings, resolve_output_settings
from timeline_export.render.text_renderer import FontSet
from timeline_export.render.timeline import ExportSettings, TimelineElement, Track
from timeline_export.render.validator import validate_timeline
from timeline_export.services.asset_downloader import AssetDownloader
from timeline_export.services.delivery import DeliveryService
from timeline_export.services.job_store import ExportJob, JobStatus, JobStore
from timeline_export.services.progress import Phase, ProgressChannel, ProgressTracker
from timeline_export.utils.media_info import MediaInfo, probe_media

logger = logging.getLogger(__name__)

INTERNAL_FAILURE_MESSAGE = "Export failed due to an internal error"
INTERRUPTED_MESSAGE = "Export interrupted by server shutdown"

ProbeFunc = Callable[[list[str]], Awaitable[dict[str, MediaInfo]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExportOrchestrator:
    """Validates requests, runs jobs and answers status/cancel queries."""

    def __init__(
        self,
        store: JobStore,
        downloader: AssetDownloader,
        executor: TranscodeExecutor,
        delivery: DeliveryService,
        temp_dir: str | None = None,
        fonts: FontSet | None = None,
        probe: ProbeFunc = probe_media,
    ):
        self.store = store
        self.downloader = downloader
        self.executor = executor
        self.delivery = delivery
        self.temp_dir = temp_dir or get_settings().export_temp_dir
        self.fonts = fonts
        self.probe = probe
        self._tasks: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._idle_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_export(
        self,
        tracks: list[Track],
        elements: list[TimelineElement],
        settings: ExportSettings,
    ) -> tuple[ExportJob, list[str]]:
        """Validate and queue an export.

        Raises:
            TimelineValidationError: the timeline has hard errors; no job is created.
        """
        result = validate_timeline(tracks, elements, settings)
        if not result.valid:
            logger.warning(f"[EXPORT] Rejected timeline: {len(result.errors)} error(s)")
            raise TimelineValidationError(result.errors, result.warnings)
        output = resolve_output_settings(settings)

        job = ExportJob(settings=settings.to_dict(), warnings=result.warnings, stage="Queued")
        await self.store.put(job)
        logger.info(
            f"[EXPORT] Job {job.id} queued: {len(tracks)} track(s), "
            f"{len(result.corrected_elements)} element(s), {output.width}x{output.height}@{output.fps}, "
            f"{len(result.warnings)} warning(s)"
        )

        task = asyncio.create_task(
            self._run(job.id, tracks, result.corrected_elements, output),
            name=f"export-{job.id}",
        )
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._forget(job_id))
        return job, result.warnings

    async def get_job(self, job_id: str) -> ExportJob:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def cancel(self, job_id: str) -> ExportJob:
        """Mark a job cancelled.

        Raises:
            JobNotFoundError: unknown job.
            JobStateError: the job already reached a terminal state.
        """
        async with self._lock_for(job_id):
            job = await self.store.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.is_terminal:
                raise JobStateError(job_id, job.status)
            cancelled = job.copy(
                status=JobStatus.CANCELLED.value,
                error=user_message("JOB_CANCELLED"),
                stage="Cancelled",
                completed_at=_utcnow(),
            )
            await self.store.put(cancelled)
        logger.info(f"[EXPORT] Job {job_id} cancelled at {job.progress}%")
        return cancelled

    async def wait_for(self, job_id: str, timeout: float | None = None) -> ExportJob:
        """Wait for the job's task to finish, then return the job."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.get_job(job_id)

    async def shutdown(self) -> None:
        """Cancel running tasks; their jobs are recorded as failed."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info(f"[EXPORT] Shutting down {len(tasks)} running job(s)")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def running_jobs(self) -> list[str]:
        return list(self._tasks)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run(
        self,
        job_id: str,
        tracks: list[Track],
        elements: list[TimelineElement],
        output: OutputSettings,
    ) -> None:
        channel = ProgressChannel(job_id)
        consumer = asyncio.create_task(self._consume(job_id, channel))
        work_dir: str | None = None
        try:
            os.makedirs(self.temp_dir, exist_ok=True)
            work_dir = tempfile.mkdtemp(prefix=f"export_{job_id}_", dir=self.temp_dir)
            await self._mutate(job_id, status=JobStatus.PROCESSING.value)
            channel.report(Phase.VALIDATION, 1.0, "Validated")
            await self._check_cancelled(job_id)

            channel.report(Phase.DOWNLOAD, 0.0, "Downloading assets")
            asset_paths = await self.downloader.download_all(
                job_id,
                elements,
                work_dir,
                on_progress=lambda fraction: channel.report(Phase.DOWNLOAD, fraction),
            )
            await self._check_cancelled(job_id)

            channel.report(Phase.CONFIGURATION, 0.0, "Preparing render")
            media_info = await self.probe(list(asset_paths.values()))
            graph = compile_filter_graph(elements, tracks, output, asset_paths, media_info, self.fonts)
            channel.report(Phase.CONFIGURATION, 1.0)
            await self._check_cancelled(job_id)

            channel.report(Phase.RENDER, 0.0, "Rendering")
            output_path = os.path.join(work_dir, f"{job_id}.mp4")
            await self.executor.run(
                graph,
                output,
                output_path,
                on_progress=lambda fraction, _time_s: channel.report(Phase.RENDER, fraction),
            )
            channel.report(Phase.RENDER, 1.0)
            await self._check_cancelled(job_id)

            channel.report(Phase.DELIVERY, 0.0, "Uploading")
            storage_key, url = await self.delivery.deliver(job_id, output_path)

            await self._drain(channel, consumer)
            completed = await self._mutate(
                job_id,
                status=JobStatus.COMPLETED.value,
                progress=100,
                stage="Completed",
                output_key=storage_key,
                download_url=url,
                completed_at=_utcnow(),
            )
            if completed is None:
                # Cancelled during upload
                await self.delivery.delete_artifact(storage_key)
                raise JobCancelledError()
            logger.info(f"[EXPORT] Job {job_id} completed: {storage_key}")
        except JobCancelledError:
            logger.info(f"[EXPORT] Job {job_id} stopped after cancellation")
        except ExportError as e:
            logger.error(f"[EXPORT] Job {job_id} failed ({e.code}): {e.message}")
            await self._fail(job_id, e.message)
        except asyncio.CancelledError:
            logger.warning(f"[EXPORT] Job {job_id} interrupted")
            await self._fail(job_id, INTERRUPTED_MESSAGE)
            raise
        except Exception:
            logger.exception(f"[EXPORT] Job {job_id} failed unexpectedly")
            await self._fail(job_id, INTERNAL_FAILURE_MESSAGE)
        finally:
            await self._drain(channel, consumer)
            if work_dir:
                shutil.rmtree(work_dir, ignore_errors=True)
                logger.debug(f"[EXPORT] Job {job_id} removed {work_dir}")

    async def _consume(self, job_id: str, channel: ProgressChannel) -> None:
        tracker = ProgressTracker()
        async for update in channel:
            if tracker.apply(update):
                await self._mutate(job_id, progress=tracker.percent, stage=tracker.stage)

    @staticmethod
    async def _drain(channel: ProgressChannel, consumer: asyncio.Task) -> None:
        channel.close()
        if not consumer.done():
            await asyncio.shield(consumer)

    async def _mutate(self, job_id: str, **changes) -> ExportJob | None:
        """Apply changes unless the job is gone or already terminal."""
        async with self._lock_for(job_id):
            job = await self.store.get(job_id)
            if job is None or job.is_terminal:
                return None
            updated = job.copy(**changes)
            await self.store.put(updated)
            return updated

    async def _fail(self, job_id: str, message: str) -> None:
        await self._mutate(
            job_id,
            status=JobStatus.FAILED.value,
            error=message,
            stage="Failed",
            completed_at=_utcnow(),
        )

    async def _is_cancelled(self, job_id: str) -> bool:
        job = await self.store.get(job_id)
        return job is None or job.status == JobStatus.CANCELLED.value

    async def _check_cancelled(self, job_id: str) -> None:
        if await self._is_cancelled(job_id):
            raise JobCancelledError()

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        # Only jobs with a running task have concurrent writers.
        if job_id not in self._tasks:
            return self._idle_lock
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def _forget(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)
        self._locks.pop(job_id, None)
