"""Chunked ingestion pipeline, job runner and supervisor."""

from __future__ import annotations

from prodrecon.domain.ports import UnitOfWorkFactory

from .pipeline import IngestionPipeline, RowOutcome, SourceFactory
from .progress import JobProgress, ProgressBroadcaster, ProgressListener
from .runner import JobRunner
from .supervisor import JobSupervisor

__all__ = [
    "IngestionPipeline",
    "JobProgress",
    "JobRunner",
    "JobSupervisor",
    "ProgressBroadcaster",
    "ProgressListener",
    "RowOutcome",
    "SourceFactory",
    "UnitOfWorkFactory",
]
