"""Thread-pool runner: at most one in-flight task per job."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prodrecon.domain.errors import JobNotFoundError, JobStateError
from prodrecon.domain.model import JobStatus

if TYPE_CHECKING:
    from uuid import UUID

    from .pipeline import IngestionPipeline

log = logging.getLogger(__name__)


@dataclass(slots=True)
class JobRunner:
    """Submit jobs to worker threads; chunks of one job stay sequential."""

    pipeline: IngestionPipeline
    max_workers: int = 4
    _executor: ThreadPoolExecutor | None = field(default=None, init=False, repr=False)
    _in_flight: dict[UUID, Future[JobStatus]] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def submit(self, job_id: UUID) -> Future[JobStatus] | None:
        """Start ``job_id`` unless this runner already holds it; returns the task future."""

        with self._lock:
            # finished tasks are dropped so the table only holds live jobs
            for done in [key for key, task in self._in_flight.items() if task.done()]:
                del self._in_flight[done]
            if job_id in self._in_flight:
                log.debug("Job %s already in flight", job_id)
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="prodrecon-job"
                )
            future = self._executor.submit(self.run_now, job_id)
            self._in_flight[job_id] = future
        return future

    def run_now(self, job_id: UUID) -> JobStatus:
        """Run a job on the calling thread (used by the CLI and by worker threads)."""

        try:
            return self.pipeline.run(job_id)
        except (JobNotFoundError, JobStateError) as exc:
            log.warning("Job %s not run: %s", job_id, exc)
            raise
        except Exception:
            # the pipeline has already failed the job
            log.exception("Job %s crashed", job_id)
            raise

    def is_running(self, job_id: UUID) -> bool:
        with self._lock:
            future = self._in_flight.get(job_id)
            return future is not None and not future.done()

    def wait(self, job_id: UUID, timeout: float | None = None) -> JobStatus | None:
        with self._lock:
            future = self._in_flight.get(job_id)
        if future is None:
            return None
        return future.result(timeout=timeout)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
