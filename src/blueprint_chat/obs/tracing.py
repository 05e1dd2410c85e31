"""Per-turn tracing and aggregate metrics."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)
_PREVIEW_CHARS = 320


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    message: str
    intent_type: str
    context_source: str
    response_preview: str
    streamed: bool
    total_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    confidence: str
    error: str | None = None


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: dict[str, TraceRecord] = {}

    def create_record(
        self,
        *,
        message: str,
        intent_type: str,
        context_source: str,
        response: str,
        streamed: bool,
        total_tokens: int,
        estimated_cost_usd: float,
        latency_ms: float,
        confidence: str,
        error: str | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            message=message,
            intent_type=intent_type,
            context_source=context_source,
            response_preview=response[:_PREVIEW_CHARS],
            streamed=streamed,
            total_tokens=total_tokens,
            estimated_cost_usd=estimated_cost_usd,
            latency_ms=latency_ms,
            confidence=confidence,
            error=error,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self.max_records:
            del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int | dict[str, int]]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "error_count": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_tokens": 0,
                "total_estimated_cost_usd": 0.0,
                "intents": {},
                "context_sources": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        intents: dict[str, int] = {}
        sources: dict[str, int] = {}
        for record in records:
            intents[record.intent_type] = intents.get(record.intent_type, 0) + 1
            sources[record.context_source] = sources.get(record.context_source, 0) + 1

        return {
            "total_requests": total,
            "error_count": sum(1 for record in records if record.error),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_tokens": sum(record.total_tokens for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
            "intents": intents,
            "context_sources": sources,
        }


class Timer:
    """Context timer for request latency; `start()` for use outside a `with`."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        return self.start()

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = self.current_ms()

    def start(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def current_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
