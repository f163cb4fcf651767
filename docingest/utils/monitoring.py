"""Monitoring utilities leveraging Prometheus client."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

extractions_total = Counter(
    "docingest_extractions_total",
    "Document extractions by format and outcome",
    ["format", "outcome"],
)

extraction_latency_seconds = Histogram(
    "docingest_extraction_latency_seconds",
    "Document extraction latency",
    ["format"],
)

documents_processed_total = Counter(
    "docingest_documents_processed_total",
    "Documents driven to a terminal status by the pipeline",
    ["status"],
)

stale_results_total = Counter(
    "docingest_stale_results_total",
    "Processing results discarded because the document changed while it was processed",
)

stuck_documents_recovered_total = Counter(
    "docingest_stuck_documents_recovered_total",
    "Documents moved out of processing by the monitor after exceeding the time limit",
)


def observe_extraction(format_name: str, outcome: str, duration_seconds: float) -> None:
    extractions_total.labels(format=format_name, outcome=outcome).inc()
    extraction_latency_seconds.labels(format=format_name).observe(duration_seconds)


def observe_document_processed(status: str) -> None:
    documents_processed_total.labels(status=status).inc()
