"""Command line entry for DocIngest."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import re
import sys
from typing import List, Optional

from prometheus_client import start_http_server

from docingest.core.config import settings
from docingest.core.database import database_manager
from docingest.core.observability import setup_tracing
from docingest.knowledge.ingestion.dispatcher import DocumentDispatcher
from docingest.knowledge.ingestion.monitor import DocumentMonitor
from docingest.knowledge.ingestion.pipeline import IngestionPipeline
from docingest.models.document import ExtractionFailure, FileSource, WebsiteSource

logger = logging.getLogger("docingest.cli")

_URL_PATTERN = re.compile(r"^(https?://|www\.)", re.IGNORECASE)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docingest", description="Training document ingestion tools")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    subcommands = parser.add_subparsers(dest="command", required=True)

    monitor = subcommands.add_parser("monitor", help="run the document monitor until interrupted")
    monitor.add_argument("--interval", type=float, default=settings.MONITOR_INTERVAL_MINUTES, help="minutes between sweeps")
    monitor.add_argument("--metrics-port", type=int, default=settings.PROMETHEUS_PORT)

    subcommands.add_parser("sweep", help="run a single monitor sweep")

    process = subcommands.add_parser("process", help="process one pending document")
    process.add_argument("document_id")

    reset = subcommands.add_parser("reset", help="reset a document to pending")
    reset.add_argument("document_id")

    extract = subcommands.add_parser("extract", help="print the normalized text of a file or URL")
    extract.add_argument("target")
    return parser


async def _with_pipeline(callback):
    if settings.DOCUMENT_STORE_BACKEND == "mongodb":
        await database_manager.initialize()
    try:
        return await callback(IngestionPipeline())
    finally:
        await database_manager.close()


async def _run_monitor(interval: float) -> None:
    async def run(pipeline: IngestionPipeline) -> None:
        monitor = DocumentMonitor(pipeline)
        await monitor.start(interval)
        try:
            await asyncio.Event().wait()
        finally:
            await monitor.stop()

    await _with_pipeline(run)


async def _extract(target: str) -> int:
    source = WebsiteSource(url=target) if _URL_PATTERN.match(target) else FileSource(file_path=target)
    result = await DocumentDispatcher().dispatch(source)
    if isinstance(result, ExtractionFailure):
        print(result.describe(), file=sys.stderr)
        return 1
    print(result.text)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=str(args.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "monitor":
        setup_tracing()
        start_http_server(args.metrics_port)
        logger.info("Prometheus metrics exposed on port %s", args.metrics_port)
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(_run_monitor(args.interval))
        return 0

    if args.command == "sweep":
        report = asyncio.run(_with_pipeline(lambda pipeline: DocumentMonitor(pipeline).sweep()))
        print(json.dumps(report.as_dict()))
        return 0

    if args.command == "process":
        document = asyncio.run(_with_pipeline(lambda pipeline: pipeline.process_document(args.document_id)))
        print(document.status.value if document is not None else "skipped")
        return 0

    if args.command == "reset":
        document = asyncio.run(_with_pipeline(lambda pipeline: pipeline.reset_document(args.document_id)))
        print(document.status.value)
        return 0

    return asyncio.run(_extract(args.target))


if __name__ == "__main__":
    sys.exit(main())
