"""Celery tasks for background document processing."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from celery import Celery, Task

from docingest.core.config import settings
from docingest.core.database import database_manager
from docingest.knowledge.ingestion.monitor import DocumentMonitor
from docingest.knowledge.ingestion.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

# Initialize Celery app
celery_app = Celery(
    "docingest_ingestion",
    broker=str(settings.REDIS_URL),
    backend=str(settings.REDIS_URL),
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_time_limit=int(settings.MAX_PROCESSING_MINUTES * 60),
    task_soft_time_limit=max(30, int(settings.MAX_PROCESSING_MINUTES * 60) - 60),
    worker_prefetch_multiplier=1,  # Fetch one task at a time for heavy workloads
    worker_max_tasks_per_child=100,
    beat_schedule={
        "sweep-training-documents": {
            "task": "docingest.ingestion.sweep_documents",
            "schedule": settings.MONITOR_INTERVAL_MINUTES * 60,
        }
    },
)


class DatabaseTask(Task):
    """Base task that owns an event loop and a lazily built pipeline."""

    _loop: Optional[asyncio.AbstractEventLoop] = None
    _pipeline: Optional[IngestionPipeline] = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    @property
    def pipeline(self) -> IngestionPipeline:
        if self._pipeline is None:
            if settings.DOCUMENT_STORE_BACKEND == "mongodb":
                self.loop.run_until_complete(database_manager.initialize())
            self._pipeline = IngestionPipeline()
        return self._pipeline

    def run_async(self, coroutine):
        return self.loop.run_until_complete(coroutine)


@celery_app.task(base=DatabaseTask, bind=True, name="docingest.ingestion.process_document")
def process_document_task(self, document_id: str) -> Dict[str, object]:
    """Claim and process one training document.

    Returns:
        Dictionary with the document id and its final status, or ``skipped``
        when the document was not pending or changed while processing.
    """

    pipeline = self.pipeline
    document = self.run_async(pipeline.process_document(document_id))
    if document is None:
        logger.info("Celery task %s skipped document %s", self.request.id, document_id)
        return {"document_id": document_id, "status": "skipped"}

    logger.info("Celery task %s finished document %s as %s", self.request.id, document_id, document.status.value)
    return {"document_id": document_id, "status": document.status.value}


@celery_app.task(base=DatabaseTask, bind=True, name="docingest.ingestion.sweep_documents")
def sweep_documents_task(self) -> Dict[str, int]:
    """Run one monitor sweep."""

    monitor = DocumentMonitor(self.pipeline)
    report = self.run_async(monitor.sweep())
    return report.as_dict()


__all__ = ["celery_app", "process_document_task", "sweep_documents_task"]
