"""Periodic sweep that recovers stuck documents and processes pending ones."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Optional

from docingest.core.config import settings
from docingest.knowledge.ingestion.pipeline import IngestionPipeline
from docingest.models.document import DocumentStatus, FailureKind, utcnow
from docingest.utils.monitoring import stuck_documents_recovered_total

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    recovered: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class DocumentMonitor:
    """Drives pending training documents through the pipeline on a timer.

    Several monitors may share one store; the atomic claim guarantees each
    pending document is processed once.
    """

    def __init__(
        self,
        pipeline: Optional[IngestionPipeline] = None,
        *,
        max_processing_minutes: Optional[float] = None,
        batch_size: Optional[int] = None,
        item_timeout: Optional[float] = None,
        initial_delay: Optional[float] = None,
    ) -> None:
        self.pipeline = pipeline or IngestionPipeline()
        self.max_processing_minutes = (
            max_processing_minutes if max_processing_minutes is not None else settings.MAX_PROCESSING_MINUTES
        )
        self.batch_size = batch_size if batch_size is not None else settings.MONITOR_BATCH_SIZE
        self.item_timeout = item_timeout if item_timeout is not None else settings.DOCUMENT_PROCESSING_TIMEOUT_SECONDS
        self.initial_delay = initial_delay if initial_delay is not None else settings.MONITOR_INITIAL_DELAY_SECONDS
        self._task: Optional[asyncio.Task] = None

    @property
    def store(self):
        return self.pipeline.store

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        report.recovered = await self.recover_stuck_documents()

        pending = await self.store.list_by_status(DocumentStatus.PENDING, limit=self.batch_size)
        if pending:
            logger.info("Found %s pending document(s)", len(pending))

        for candidate in pending:
            claimed = await self.store.claim(candidate.id)
            if claimed is None:
                report.skipped += 1
                continue

            report.claimed += 1
            result = await self.pipeline.process_claimed(claimed, timeout=self.item_timeout)
            if result is None:
                report.skipped += 1
            elif result.status == DocumentStatus.ERROR:
                report.failed += 1
            else:
                report.completed += 1

        logger.info("Document sweep finished: %s", report.as_dict())
        return report

    async def recover_stuck_documents(self) -> int:
        cutoff = utcnow() - timedelta(minutes=self.max_processing_minutes)
        recovered = 0

        for document in await self.store.list_by_status(DocumentStatus.PROCESSING):
            started = document.processing_started_at or document.updated_at
            if started >= cutoff:
                continue

            elapsed_minutes = int((utcnow() - started).total_seconds() // 60)
            message = (
                f"{FailureKind.TIMEOUT.value}: processing did not finish within "
                f"{self.max_processing_minutes:g} minutes (last progress {document.progress or 0}%)"
            )
            updated = await self.store.fail_stuck(document.id, cutoff, message)
            if updated is None:
                continue

            recovered += 1
            stuck_documents_recovered_total.inc()
            logger.warning("Document %s stuck in processing for %s minutes; marked as error", document.id, elapsed_minutes)
            self.pipeline.audit.record(
                "document_auto_recovery",
                None,
                {
                    "document_id": document.id,
                    "document_name": document.name,
                    "stuck_minutes": elapsed_minutes,
                    "last_progress": document.progress,
                },
            )

        return recovered

    async def start(self, interval_minutes: Optional[float] = None) -> None:
        if self.running:
            logger.warning("Document monitor already running")
            return

        interval = interval_minutes if interval_minutes is not None else settings.MONITOR_INTERVAL_MINUTES
        self._task = asyncio.create_task(self._loop(interval * 60))
        logger.info("Document monitor started (every %s minutes)", interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Document monitor stopped")

    async def _loop(self, interval_seconds: float) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Document sweep failed: %s", exc)
            await asyncio.sleep(interval_seconds)


__all__ = ["DocumentMonitor", "SweepReport"]
