"""
In-memory job state management for the upload -> transform -> download flow.

Job records are written by background workers and read by request handlers
running on other threads. Every access goes through a reader/writer lock:
readers share it, writers hold it exclusively while they swap in a new record.
Records are immutable, so a reader always sees a complete snapshot.

There is no deletion and no persistence; the registry lives as long as the
process does.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from config import Config

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Writer-preferring reader/writer lock.

    Any number of readers may hold the lock together. A writer waits for
    active readers to leave and blocks new readers while it is waiting, so a
    steady stream of status polls cannot starve a worker's update.
    Not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer_active or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer_active = True

    def release_write(self) -> None:
        with self._cond:
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class JobStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Processing:
    """Job accepted, transformation still running."""

    status = JobStatus.PROCESSING


@dataclass(frozen=True)
class Completed:
    """Transformation finished; output is readable at output_location."""

    output_location: str
    status = JobStatus.COMPLETED


@dataclass(frozen=True)
class Failed:
    """Transformation aborted; error_message is shown to the downloader."""

    error_message: str
    status = JobStatus.FAILED


JobState = Processing | Completed | Failed


@dataclass(frozen=True)
class JobRecord:
    """Snapshot of a single job."""

    id: str
    created_at: datetime
    state: JobState = field(default_factory=Processing)

    @property
    def status(self) -> JobStatus:
        return self.state.status

    @property
    def output_location(self) -> str:
        return self.state.output_location if isinstance(self.state, Completed) else ""

    @property
    def error_message(self) -> str:
        return self.state.error_message if isinstance(self.state, Failed) else ""

    @property
    def is_terminal(self) -> bool:
        return not isinstance(self.state, Processing)

    def to_dict(self) -> dict:
        """Public view of the job (output location is kept server-side)."""
        result = {
            "id": self.id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }
        if isinstance(self.state, Failed):
            result["error"] = self.state.error_message
        return result


def _next_state(
    current: JobState,
    status: JobStatus,
    output_location: str,
    error_message: str,
) -> JobState:
    """
    Build the state for a transition.

    Empty values never overwrite: an empty location or message falls back to
    whatever the current state already holds for that field.
    """
    if status is JobStatus.PROCESSING:
        return Processing()
    if status is JobStatus.COMPLETED:
        if not output_location and isinstance(current, Completed):
            output_location = current.output_location
        return Completed(output_location)
    if not error_message and isinstance(current, Failed):
        error_message = current.error_message
    return Failed(error_message)


class JobRegistry:
    """
    Thread-safe mapping from job id to JobRecord.

    Supports create / get / update only. The upload path creates records,
    the background worker moves them to a terminal state, and the download
    path reads them.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, JobRecord] = {}
        self._lock = ReadWriteLock()

    def create(self, job_id: str) -> JobRecord:
        """
        Register a job in the processing state.

        An existing record with the same id is replaced; callers are
        expected to supply fresh ids.
        """
        record = JobRecord(id=job_id, created_at=Config.now_utc())
        with self._lock.write_locked():
            self._jobs[job_id] = record
        return record

    def get(self, job_id: str) -> JobRecord | None:
        """Return the current record, or None if the id is unknown."""
        with self._lock.read_locked():
            return self._jobs.get(job_id)

    def update(
        self,
        job_id: str,
        status: JobStatus | str,
        output_location: str = "",
        error_message: str = "",
    ) -> bool:
        """
        Move a job to a new status.

        Args:
            job_id: Job identifier
            status: Target status (enum member or its string value)
            output_location: Where the output lives; ignored when empty
            error_message: Failure description; ignored when empty

        Returns:
            True if the job exists and was updated, False otherwise.
            An unknown id is not an error, whatever the status.

        Raises:
            ValueError: status is not a JobStatus value (known ids only)
        """
        with self._lock.write_locked():
            current = self._jobs.get(job_id)
            if current is None:
                updated = None
            else:
                new_state = _next_state(
                    current.state, JobStatus(status), output_location, error_message
                )
                updated = JobRecord(id=current.id, created_at=current.created_at, state=new_state)
                self._jobs[job_id] = updated

        if updated is None:
            logger.debug("Ignoring update for unknown job", extra={"job_id": job_id})
            return False
        return True

    def mark_completed(self, job_id: str, output_location: str) -> bool:
        return self.update(job_id, JobStatus.COMPLETED, output_location=output_location)

    def mark_failed(self, job_id: str, error_message: str) -> bool:
        return self.update(job_id, JobStatus.FAILED, error_message=error_message)

    def count_by_status(self) -> dict[str, int]:
        """Count jobs per status (for metrics)."""
        counts = {status.value: 0 for status in JobStatus}
        with self._lock.read_locked():
            for record in self._jobs.values():
                counts[record.status.value] += 1
        return counts

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock.read_locked():
            return job_id in self._jobs


# Global instance
_job_registry: JobRegistry | None = None
_job_registry_lock = threading.Lock()


def get_job_registry() -> JobRegistry:
    """Get the process-wide job registry, creating it on first use."""
    global _job_registry
    with _job_registry_lock:
        if _job_registry is None:
            _job_registry = JobRegistry()
        return _job_registry


def reset_job_registry() -> JobRegistry:
    """Replace the process-wide job registry (for testing)."""
    global _job_registry
    with _job_registry_lock:
        _job_registry = JobRegistry()
        return _job_registry
