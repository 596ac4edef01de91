"""Chunking defaults for ingestion jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .env import env_float, env_int
from .errors import ConfigurationError

DEFAULT_PLATFORM_CHUNK_SIZE = 1000
DEFAULT_ATTACHMENT_CHUNK_SIZE = 50
MAX_CHUNK_SIZE = 5000
DEFAULT_WORKER_COUNT = 4
DEFAULT_JOB_LEASE_SECONDS = 300.0


@dataclass(frozen=True, slots=True)
class IngestConfig:
    platform_chunk_size: int = DEFAULT_PLATFORM_CHUNK_SIZE
    attachment_chunk_size: int = DEFAULT_ATTACHMENT_CHUNK_SIZE
    max_chunk_size: int = MAX_CHUNK_SIZE
    worker_count: int = DEFAULT_WORKER_COUNT
    # a running job whose last chunk committed longer ago than this may be reclaimed
    job_lease_seconds: float = DEFAULT_JOB_LEASE_SECONDS

    def __post_init__(self) -> None:
        if self.job_lease_seconds <= 0:
            raise ConfigurationError("Job lease must be positive")

    @property
    def job_lease(self) -> timedelta:
        return timedelta(seconds=self.job_lease_seconds)

    def clamp_chunk_size(self, requested: int | None, *, default: int) -> int:
        """Return ``requested`` bounded to ``1..max_chunk_size``."""

        if requested is None:
            return default
        if requested <= 0:
            raise ConfigurationError("Chunk size must be positive")
        return min(requested, self.max_chunk_size)


def get_ingest_config() -> IngestConfig:
    return IngestConfig(
        platform_chunk_size=env_int("PRODRECON_PLATFORM_CHUNK_SIZE", DEFAULT_PLATFORM_CHUNK_SIZE),
        attachment_chunk_size=env_int(
            "PRODRECON_ATTACHMENT_CHUNK_SIZE", DEFAULT_ATTACHMENT_CHUNK_SIZE
        ),
        worker_count=env_int("PRODRECON_WORKERS", DEFAULT_WORKER_COUNT),
        job_lease_seconds=env_float("PRODRECON_JOB_LEASE_SECONDS", DEFAULT_JOB_LEASE_SECONDS),
    )
