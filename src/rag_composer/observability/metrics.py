"""Metric recording helpers for runnables and streams."""

from __future__ import annotations

from rag_composer.observability.logger import get_logger

logger = get_logger("metrics")


def log_node_latency(trace_id: str, node: str, duration_ms: float, status: str) -> None:
    logger.debug(
        "node_latency",
        trace_id=trace_id,
        node=node,
        duration_ms=round(duration_ms, 2),
        status=status,
    )


def log_batch_metrics(
    trace_id: str,
    node: str,
    size: int,
    failures: int,
    duration_ms: float,
) -> None:
    logger.info(
        "batch_metrics",
        trace_id=trace_id,
        node=node,
        size=size,
        failures=failures,
        duration_ms=round(duration_ms, 2),
    )


def log_stream_termination(
    trace_id: str,
    node: str,
    termination: str,
    delivered: int,
    error: str | None = None,
) -> None:
    logger.info(
        "stream_terminated",
        trace_id=trace_id,
        node=node,
        termination=termination,
        delivered=delivered,
        error=error,
    )


def log_retry(trace_id: str, node: str, attempt: int, kind: str, delay_s: float) -> None:
    logger.warning(
        "retrying",
        trace_id=trace_id,
        node=node,
        attempt=attempt,
        kind=kind,
        delay_s=round(delay_s, 3),
    )
