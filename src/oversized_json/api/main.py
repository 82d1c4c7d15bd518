"""FastAPI entrypoint for analysis, chunk preview, budget and trace endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from oversized_json.analysis.analyzer import ChunkAnalyzer, LangChainChunkAnalyzer
from oversized_json.analysis.fallback import DeterministicChunkAnalyzer
from oversized_json.analysis.orchestrator import AnalysisOrchestrator
from oversized_json.budget.validator import RequestBudgetValidator
from oversized_json.config import BudgetConfig, ChunkingConfig, OrchestratorConfig
from oversized_json.errors import (
    AllChunksFailedError,
    BudgetExceededError,
    ConfigurationError,
    OversizedRecordError,
)
from oversized_json.obs.tracing import TraceStore
from oversized_json.prepare.chunker import BudgetedChunker, field_sort_key


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o"), temperature=0)


class RecordsRequest(BaseModel):
    records: list[dict[str, Any]]
    relevant_fields: list[str] = Field(min_length=1)
    max_chunk_tokens: int | None = Field(default=None, ge=1)
    priority_field: str = "priority_level"
    score_field: str = "risk_score"
    budget: BudgetConfig = Field(default_factory=BudgetConfig)


class AnalyzeRequest(RecordsRequest):
    context_carry: bool = False
    max_concurrency: int = Field(default=1, ge=1, le=16)
    fail_when_all_chunks_fail: bool = False


class BudgetRequest(BaseModel):
    system_prompt: str = ""
    user_message: str = ""
    data_payload: str = ""
    budget: BudgetConfig = Field(default_factory=BudgetConfig)


app = FastAPI(title="Oversized JSON Analyzer", version="0.1.0")

_trace_store = TraceStore()
_llm = _create_llm()
_analyzer: ChunkAnalyzer = (
    LangChainChunkAnalyzer(_llm) if _llm is not None else DeterministicChunkAnalyzer()
)


def _build_orchestrator(request: RecordsRequest, config: OrchestratorConfig) -> AnalysisOrchestrator:
    chunking = ChunkingConfig()
    if request.max_chunk_tokens is not None:
        chunking = ChunkingConfig(max_chunk_tokens=request.max_chunk_tokens)
    return AnalysisOrchestrator(
        analyzer=_analyzer,
        relevant_fields=request.relevant_fields,
        config=config,
        chunker=BudgetedChunker(chunking),
        validator=RequestBudgetValidator(request.budget),
        trace_store=_trace_store,
    )


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "analyzer_mode": "langchain" if _llm is not None else "deterministic",
        "trace_count": len(_trace_store.list_recent(limit=1000)),
    }


@app.post("/analyze")
def analyze(request: AnalyzeRequest) -> dict[str, Any]:
    try:
        orchestrator = _build_orchestrator(
            request,
            OrchestratorConfig(
                context_carry=request.context_carry,
                max_concurrency=request.max_concurrency,
                fail_when_all_chunks_fail=request.fail_when_all_chunks_fail,
            ),
        )
        run = orchestrator.run(
            request.records, field_sort_key(request.priority_field, request.score_field)
        )
    except BudgetExceededError as exc:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(exc),
                "overages": [asdict(item) for item in exc.overages],
            },
        ) from exc
    except (ConfigurationError, OversizedRecordError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AllChunksFailedError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return {
        "trace_id": run.trace_id,
        "report": run.report.model_dump(mode="json", exclude_none=True),
    }


@app.post("/chunks/preview")
def preview_chunks(request: RecordsRequest) -> dict[str, Any]:
    try:
        orchestrator = _build_orchestrator(request, OrchestratorConfig())
        plan = orchestrator.plan(
            request.records, field_sort_key(request.priority_field, request.score_field)
        )
    except (ConfigurationError, OversizedRecordError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "reduction": {
            "original_size_kb": plan.reduction.original_size_kb,
            "filtered_size_kb": plan.reduction.filtered_size_kb,
            "reduction_percent": plan.reduction.reduction_percent,
        },
        "fits_budget": plan.fits_budget,
        "chunks": [
            {**chunk.metadata(), "validation": asdict(validation)}
            for chunk, validation in zip(plan.chunks, plan.validations, strict=True)
        ],
        "overages": [asdict(item) for item in plan.overages],
    }


@app.post("/budget/validate")
def validate_budget(request: BudgetRequest) -> dict[str, Any]:
    try:
        validator = RequestBudgetValidator(request.budget)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    result = validator.validate(
        request.system_prompt, request.user_message, request.data_payload
    )
    return asdict(result)


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
