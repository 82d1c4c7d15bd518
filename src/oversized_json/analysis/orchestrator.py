"""Preprocess -> chunk -> validate -> analyze -> aggregate orchestration."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any

from oversized_json.analysis.analyzer import ChunkAnalyzer, ChunkRequest
from oversized_json.analysis.prompts import (
    SYSTEM_PROMPT,
    build_message_header,
    build_user_message,
)
from oversized_json.analysis.schema import (
    AggregatedReport,
    AnalysisResult,
    ProcessingMetadata,
)
from oversized_json.budget.tokens import dump_json
from oversized_json.budget.validator import RequestBudgetValidator
from oversized_json.config import OrchestratorConfig
from oversized_json.errors import (
    AllChunksFailedError,
    BudgetExceededError,
    ChunkOverage,
    ChunkTimeoutError,
    ConfigurationError,
    OversizedJsonError,
)
from oversized_json.obs.tracing import ChunkTrace, Timer, TraceStore
from oversized_json.prepare.chunker import BudgetedChunker, SortKeyFn
from oversized_json.prepare.projector import RecordProjector
from oversized_json.types import (
    BudgetValidationResult,
    Chunk,
    PipelineEvent,
    Record,
    ReductionStats,
    RunStage,
)

logger = logging.getLogger(__name__)

Observer = Callable[[PipelineEvent], None]


@dataclass(slots=True)
class AnalysisPlan:
    """Output of the preprocessing, chunking and validating stages."""

    filtered: list[Record]
    reduction: ReductionStats
    chunks: list[Chunk]
    payloads: list[str]
    validations: list[BudgetValidationResult]
    overages: list[ChunkOverage] = field(default_factory=list)

    @property
    def fits_budget(self) -> bool:
        return not self.overages


@dataclass(slots=True)
class AnalysisRun:
    report: AggregatedReport
    plan: AnalysisPlan
    results: list[AnalysisResult]
    trace_id: str | None = None


@dataclass(slots=True)
class _RunState:
    records_in: int = 0
    chunks_created: int = 0
    chunk_traces: list[ChunkTrace] = field(default_factory=list)


class AnalysisOrchestrator:
    """Runs oversized record collections through a token-budgeted analysis.

    Stages: Idle -> Preprocessing -> Chunking -> Validating -> Processing ->
    Aggregating -> Done, with Failed reachable from Validating and Processing.

    Validation is all-or-nothing: if any chunk is over budget the run fails
    before a single analyzer call is made. Processing is partial-failure
    tolerant: a chunk whose call raises or times out is logged, skipped and
    left out of the report while the remaining chunks continue. When every
    chunk fails the report is still returned, with empty issue lists and
    `chunks_skipped` equal to the chunk count, unless
    `fail_when_all_chunks_fail` asks for `AllChunksFailedError` instead.

    Analyzer calls share one thread pool per run. A call that exceeds
    `call_timeout_seconds` is abandoned, not cancelled: its thread keeps
    running until the analyzer returns, and interpreter exit waits for it.

    With `context_carry` each chunk's prompt includes the previous chunk's
    summary, which forces sequential processing; combining it with
    `max_concurrency > 1` is rejected at construction.
    """

    def __init__(
        self,
        *,
        analyzer: ChunkAnalyzer,
        relevant_fields: Iterable[str],
        config: OrchestratorConfig | None = None,
        chunker: BudgetedChunker | None = None,
        validator: RequestBudgetValidator | None = None,
        trace_store: TraceStore | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.analyzer = analyzer
        self.projector = RecordProjector(relevant_fields)
        self.config = config or OrchestratorConfig()
        self.chunker = chunker or BudgetedChunker()
        self.validator = validator or RequestBudgetValidator()
        self.trace_store = trace_store
        self.system_prompt = system_prompt
        self._observer: Observer | None = None
        self._stage = RunStage.IDLE

        if not self.config.context_carry:
            return
        if self.config.max_concurrency > 1:
            raise ConfigurationError(
                "context_carry requires sequential processing (max_concurrency=1)"
            )
        if self.config.summary_reserve_tokens >= self.validator.available_tokens:
            raise ConfigurationError(
                "summary_reserve_tokens must be less than the available input budget"
            )

    @property
    def stage(self) -> RunStage:
        return self._stage

    def set_observer(self, observer: Observer | None) -> None:
        """Set an optional callback invoked on every stage and chunk event.

        With `max_concurrency > 1` chunk events arrive from worker threads.
        """
        self._observer = observer

    def plan(
        self, raw_records: Sequence[Record], sort_key_fn: SortKeyFn | None = None
    ) -> AnalysisPlan:
        """Run the preprocessing, chunking and validating stages only.

        Over-budget chunks are reported in `AnalysisPlan.overages` rather
        than raised, which makes this suitable for dry runs.
        """

        self._transition(
            RunStage.PREPROCESSING,
            "Filtering records to relevant fields",
            records=len(raw_records),
        )
        filtered = self.projector.project(raw_records)
        reduction = self.projector.calculate_reduction(list(raw_records), filtered)
        logger.info(
            "Payload reduced from %.2f KB to %.2f KB (%.1f%%)",
            reduction.original_size_kb,
            reduction.filtered_size_kb,
            reduction.reduction_percent,
        )

        self._transition(RunStage.CHUNKING, "Grouping records into chunks")
        chunks = self.chunker.chunk(filtered, sort_key_fn)
        for chunk in chunks:
            logger.info(
                "Chunk %d: %d records, %d tokens",
                chunk.index,
                chunk.record_count,
                chunk.estimated_tokens,
            )
        self._emit(
            RunStage.CHUNKING,
            "Chunks created",
            chunks=[chunk.metadata() for chunk in chunks],
        )

        self._transition(RunStage.VALIDATING, "Validating chunks against token budget")
        payloads = [dump_json(list(chunk.records), indent=2) for chunk in chunks]
        validations: list[BudgetValidationResult] = []
        overages: list[ChunkOverage] = []
        reserve = self.config.summary_reserve_tokens if self.config.context_carry else 0

        for chunk, payload in zip(chunks, payloads, strict=True):
            header = build_message_header(
                chunk.record_count,
                chunk.index,
                chunk.total_chunks,
                context_carry=self.config.context_carry,
            )
            result = self.validator.validate(self.system_prompt, header, payload)
            validations.append(result)
            shortfall = reserve - result.remaining_tokens
            if shortfall > 0:
                overages.append(
                    ChunkOverage(
                        chunk_index=chunk.index,
                        total_input_tokens=result.total_input_tokens,
                        available_tokens=result.available_tokens,
                        overage=shortfall,
                    )
                )
                logger.warning(
                    "Chunk %d: %d tokens exceeds budget by %d tokens",
                    chunk.index,
                    result.total_input_tokens,
                    shortfall,
                )
            else:
                logger.info(
                    "Chunk %d: %d tokens (%.1f%% utilization)",
                    chunk.index,
                    result.total_input_tokens,
                    result.utilization_percent,
                )

        return AnalysisPlan(
            filtered=filtered,
            reduction=reduction,
            chunks=chunks,
            payloads=payloads,
            validations=validations,
            overages=overages,
        )

    def run(
        self, raw_records: Sequence[Record], sort_key_fn: SortKeyFn | None = None
    ) -> AnalysisRun:
        """Execute every stage and return the aggregated report.

        Any exception leaves the run in `Failed` with a trace recorded.

        Raises:
            BudgetExceededError: a chunk does not fit; nothing was sent.
            AllChunksFailedError: every call failed and
                `fail_when_all_chunks_fail` is enabled.
        """

        self._stage = RunStage.IDLE
        state = _RunState(records_in=len(raw_records))
        with Timer() as timer:
            try:
                run = self._execute(raw_records, sort_key_fn, state)
            except Exception as exc:
                error = str(exc)
                if not isinstance(exc, OversizedJsonError):
                    error = f"{type(exc).__name__}: {exc}"
                self._transition(RunStage.FAILED, error)
                self._record_trace(state, timer.lap_ms(), error=error)
                raise

        trace_id = self._record_trace(state, timer.elapsed_ms)
        run.trace_id = trace_id
        return run

    def _execute(
        self,
        raw_records: Sequence[Record],
        sort_key_fn: SortKeyFn | None,
        state: _RunState,
    ) -> AnalysisRun:
        plan = self.plan(raw_records, sort_key_fn)
        state.chunks_created = len(plan.chunks)
        state.chunk_traces = [
            ChunkTrace(
                chunk_index=chunk.index,
                record_count=chunk.record_count,
                input_tokens=validation.total_input_tokens,
            )
            for chunk, validation in zip(plan.chunks, plan.validations, strict=True)
        ]
        if not plan.fits_budget:
            raise BudgetExceededError(plan.overages)

        self._transition(
            RunStage.PROCESSING, "Analyzing chunks", chunks=len(plan.chunks)
        )
        results = self._process(plan, state.chunk_traces)
        if plan.chunks and not results:
            if self.config.fail_when_all_chunks_fail:
                raise AllChunksFailedError(len(plan.chunks))
            logger.warning("All %d chunk(s) failed analysis", len(plan.chunks))

        self._transition(RunStage.AGGREGATING, "Combining chunk results")
        report = self._aggregate(plan, results)
        self._transition(
            RunStage.DONE,
            "Analysis complete",
            high_priority_issues=len(report.high_priority_issues),
            medium_priority_issues=len(report.medium_priority_issues),
            recommendations=len(report.recommendations),
        )
        return AnalysisRun(report=report, plan=plan, results=results)

    def _process(
        self, plan: AnalysisPlan, traces: list[ChunkTrace]
    ) -> list[AnalysisResult]:
        # One thread per chunk at most, so a call stuck past its timeout never
        # delays the calls queued after it. Idle threads are reused.
        calls = ThreadPoolExecutor(
            max_workers=max(len(plan.chunks), 1), thread_name_prefix="chunk-call"
        )
        try:
            return self._process_with(calls, plan, traces)
        finally:
            calls.shutdown(wait=False, cancel_futures=True)

    def _process_with(
        self,
        calls: ThreadPoolExecutor,
        plan: AnalysisPlan,
        traces: list[ChunkTrace],
    ) -> list[AnalysisResult]:
        if self.config.max_concurrency == 1:
            results: list[AnalysisResult] = []
            previous_summary: str | None = None
            for chunk, payload, trace in zip(plan.chunks, plan.payloads, traces, strict=True):
                request = self._build_request(chunk, payload, previous_summary)
                result = self._process_chunk(calls, request, trace)
                if result is None:
                    continue
                results.append(result)
                if self.config.context_carry:
                    previous_summary = result.summary
            return results

        with ThreadPoolExecutor(
            max_workers=self.config.max_concurrency, thread_name_prefix="chunk-worker"
        ) as pool:
            futures = [
                pool.submit(
                    self._process_chunk, calls, self._build_request(chunk, payload), trace
                )
                for chunk, payload, trace in zip(plan.chunks, plan.payloads, traces, strict=True)
            ]
            outcomes = [future.result() for future in futures]
        return [result for result in outcomes if result is not None]

    def _build_request(
        self, chunk: Chunk, payload: str, previous_summary: str | None = None
    ) -> ChunkRequest:
        if previous_summary is not None:
            # Validation reserved this many tokens for the carried summary.
            max_chars = int(
                self.config.summary_reserve_tokens * self.validator.estimator.chars_per_token
            )
            previous_summary = previous_summary[:max_chars]
        header = build_message_header(
            chunk.record_count,
            chunk.index,
            chunk.total_chunks,
            previous_summary=previous_summary,
            context_carry=self.config.context_carry,
        )
        return ChunkRequest(
            chunk=chunk,
            system_prompt=self.system_prompt,
            user_message=build_user_message(header, payload),
            max_output_tokens=self.validator.config.max_output_tokens,
            temperature=self.config.temperature,
            previous_summary=previous_summary,
        )

    def _process_chunk(
        self, calls: ThreadPoolExecutor, request: ChunkRequest, trace: ChunkTrace
    ) -> AnalysisResult | None:
        chunk = request.chunk
        with Timer() as timer:
            try:
                result = self._call_with_timeout(calls, request)
            except Exception as exc:  # a failed chunk must not stop the run
                error = f"{type(exc).__name__}: {exc}"
            else:
                error = None
        trace.latency_ms = timer.elapsed_ms

        if error is not None:
            trace.status = "skipped"
            trace.error = error
            logger.error(
                "Chunk %d/%d failed and is skipped: %s",
                chunk.index + 1,
                chunk.total_chunks,
                error,
            )
            self._emit(
                RunStage.PROCESSING,
                "Chunk skipped",
                chunk_index=chunk.index,
                error=error,
            )
            return None

        result = result.model_copy(
            update={
                "chunk_index": chunk.index,
                "total_chunks": chunk.total_chunks,
                "records_analyzed": chunk.record_count,
            }
        )
        trace.status = "ok"
        trace.output_tokens = self.validator.estimator.estimate(result.model_dump_json())
        logger.info(
            "Chunk %d/%d analyzed (%d high-priority issues)",
            chunk.index + 1,
            chunk.total_chunks,
            len(result.high_priority_issues),
        )
        self._emit(
            RunStage.PROCESSING,
            "Chunk analyzed",
            chunk_index=chunk.index,
            high_priority_issues=len(result.high_priority_issues),
            latency_ms=trace.latency_ms,
        )
        return result

    def _call_with_timeout(
        self, calls: ThreadPoolExecutor, request: ChunkRequest
    ) -> AnalysisResult:
        timeout = self.config.call_timeout_seconds
        future = calls.submit(self.analyzer.analyze, request)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            raise ChunkTimeoutError(
                f"Chunk {request.chunk.index} timed out after {timeout}s",
                chunk_index=request.chunk.index,
            ) from exc

    def _aggregate(
        self, plan: AnalysisPlan, results: list[AnalysisResult]
    ) -> AggregatedReport:
        high = [issue for result in results for issue in result.high_priority_issues]
        medium = [issue for result in results for issue in result.medium_priority_issues]
        recommendations = list(
            dict.fromkeys(text for result in results for text in result.recommendations)
        )
        succeeded = len(results)
        return AggregatedReport(
            total_records_analyzed=len(plan.filtered),
            chunks_processed=len(plan.chunks),
            high_priority_issues=high,
            medium_priority_issues=medium,
            recommendations=recommendations,
            processing_metadata=ProcessingMetadata(
                original_payload_size_kb=plan.reduction.original_size_kb,
                filtered_payload_size_kb=plan.reduction.filtered_size_kb,
                reduction_percent=plan.reduction.reduction_percent,
                chunks_created=len(plan.chunks),
                token_budget_utilized=True,
                context_varying_pattern_used=self.config.context_carry,
                chunks_succeeded=succeeded,
                chunks_skipped=len(plan.chunks) - succeeded,
            ),
        )

    def _record_trace(
        self, state: _RunState, latency_ms: float, error: str | None = None
    ) -> str | None:
        if self.trace_store is None:
            return None
        record = self.trace_store.create_record(
            final_stage=self._stage.value,
            records_in=state.records_in,
            chunk_traces=state.chunk_traces,
            chunks_created=state.chunks_created,
            latency_ms=latency_ms,
            error=error,
        )
        return record.trace_id

    def _transition(self, stage: RunStage, message: str, **data: Any) -> None:
        self._stage = stage
        logger.info("[%s] %s", stage.value, message)
        self._emit(stage, message, **data)

    def _emit(self, stage: RunStage, message: str, **data: Any) -> None:
        if self._observer is not None:
            self._observer(PipelineEvent(stage=stage, message=message, data=data))
