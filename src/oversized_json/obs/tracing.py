"""Run tracing, cost accounting and aggregate metrics."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(slots=True)
class ChunkTrace:
    chunk_index: int
    record_count: int
    input_tokens: int
    output_tokens: int = 0
    status: str = "pending"
    latency_ms: float = 0.0
    error: str | None = None


@dataclass(slots=True)
class RunTrace:
    trace_id: str
    timestamp_utc: str
    final_stage: str
    records_in: int
    chunks_created: int
    chunks_succeeded: int
    chunks_skipped: int
    chunk_traces: list[ChunkTrace]
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    error: str | None = None


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.0025
    output_per_1k: float = 0.01

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, *, cost_model: CostModel | None = None) -> None:
        self._records: dict[str, RunTrace] = {}
        self._cost_model = cost_model or CostModel()

    def create_record(
        self,
        *,
        final_stage: str,
        records_in: int,
        chunk_traces: list[ChunkTrace],
        chunks_created: int,
        latency_ms: float,
        error: str | None = None,
    ) -> RunTrace:
        # Only chunks that were actually sent are billed.
        sent = [trace for trace in chunk_traces if trace.status != "pending"]
        input_tokens = sum(trace.input_tokens for trace in sent)
        output_tokens = sum(trace.output_tokens for trace in sent)
        record = RunTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            final_stage=final_stage,
            records_in=records_in,
            chunks_created=chunks_created,
            chunks_succeeded=sum(1 for trace in chunk_traces if trace.status == "ok"),
            chunks_skipped=sum(1 for trace in chunk_traces if trace.status == "skipped"),
            chunk_traces=chunk_traces,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
            error=error,
        )
        self._records[record.trace_id] = record
        return record

    def get(self, trace_id: str) -> RunTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[RunTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_runs": 0,
                "failed_runs": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_chunks": 0,
                "skipped_chunks": 0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_runs": total,
            "failed_runs": sum(1 for record in records if record.final_stage == "failed"),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_chunks": sum(record.chunks_created for record in records),
            "skipped_chunks": sum(record.chunks_skipped for record in records),
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "total_estimated_cost_usd": sum(
                record.estimated_cost_usd for record in records
            ),
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

    def lap_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0
