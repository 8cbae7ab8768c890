"""Export job records and where they live.

The store is the only state shared between running jobs. Callers always get
copies back, so a job record is only changed through `put`.
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timeline_export.models.database import session_scope
from timeline_export.models.export_job import ExportJobRecord

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    s.value for s in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class ExportJob:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = JobStatus.QUEUED.value
    progress: int = 0
    stage: str | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    output_key: str | None = None
    download_url: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def copy(self, **changes: Any) -> "ExportJob":
        changes.setdefault("warnings", list(self.warnings))
        changes.setdefault("settings", copy.deepcopy(self.settings))
        return replace(self, **changes)

    def to_status_dict(self) -> dict[str, Any]:
        """Public view returned by GET /export/status."""
        return {
            "id": self.id,
            "status": self.status,
            "progress": self.progress,
            "stage": self.stage,
            "error": self.error,
            "downloadUrl": self.download_url,
            "createdAt": _iso(self.created_at),
            "completedAt": _iso(self.completed_at),
        }


class JobStore(ABC):
    """Persistence for export jobs."""

    @abstractmethod
    async def get(self, job_id: str) -> ExportJob | None: ...

    @abstractmethod
    async def put(self, job: ExportJob) -> None: ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool: ...

    @abstractmethod
    async def list_expired(self, cutoff: datetime) -> list[ExportJob]:
        """Jobs created before `cutoff`, whatever their status."""

    async def close(self) -> None:
        return None


class InMemoryJobStore(JobStore):
    """Thread-safe dictionary store; jobs vanish on restart."""

    def __init__(self) -> None:
        self._jobs: dict[str, ExportJob] = {}
        self._lock = threading.Lock()

    async def get(self, job_id: str) -> ExportJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.copy() if job else None

    async def put(self, job: ExportJob) -> None:
        with self._lock:
            self._jobs[job.id] = job.copy()

    async def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def list_expired(self, cutoff: datetime) -> list[ExportJob]:
        with self._lock:
            return [job.copy() for job in self._jobs.values() if job.created_at < cutoff]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class SqlJobStore(JobStore):
    """Jobs in the `export_jobs` table, so status survives restarts."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @staticmethod
    def _to_job(record: ExportJobRecord) -> ExportJob:
        return ExportJob(
            id=record.id,
            status=record.status,
            progress=record.progress,
            stage=record.current_stage,
            error=record.error_message,
            warnings=list(record.warnings or []),
            output_key=record.output_key,
            download_url=record.download_url,
            settings=dict(record.settings or {}),
            created_at=_aware(record.created_at),
            completed_at=_aware(record.completed_at),
        )

    @staticmethod
    def _apply(record: ExportJobRecord, job: ExportJob) -> None:
        record.status = job.status
        record.progress = job.progress
        record.current_stage = job.stage
        record.error_message = job.error
        record.warnings = list(job.warnings)
        record.output_key = job.output_key
        record.download_url = job.download_url
        record.settings = dict(job.settings)
        record.created_at = job.created_at
        record.completed_at = job.completed_at

    async def get(self, job_id: str) -> ExportJob | None:
        async with session_scope(self._session_maker) as session:
            record = await session.get(ExportJobRecord, job_id)
            return self._to_job(record) if record else None

    async def put(self, job: ExportJob) -> None:
        async with session_scope(self._session_maker) as session:
            record = await session.get(ExportJobRecord, job.id)
            if record is None:
                record = ExportJobRecord(id=job.id)
                session.add(record)
            self._apply(record, job)

    async def delete(self, job_id: str) -> bool:
        async with session_scope(self._session_maker) as session:
            result = await session.execute(delete(ExportJobRecord).where(ExportJobRecord.id == job_id))
            return result.rowcount > 0

    async def list_expired(self, cutoff: datetime) -> list[ExportJob]:
        async with session_scope(self._session_maker) as session:
            result = await session.execute(
                select(ExportJobRecord).where(ExportJobRecord.created_at < cutoff)
            )
            return [self._to_job(r) for r in result.scalars().all()]
