"""Structured-output and report models exchanged with the model and callers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AnalysisIssue(BaseModel):
    """One problem found on one record."""

    model_config = ConfigDict(extra="forbid")

    record_id: str
    issue_type: str
    severity: str
    description: str
    required_action: str | None = None
    priority_days: int | None = None


class AnalysisResult(BaseModel):
    """Per-chunk answer the model must return."""

    model_config = ConfigDict(extra="forbid")

    chunk_index: int
    total_chunks: int
    records_analyzed: int
    high_priority_issues: list[AnalysisIssue]
    medium_priority_issues: list[AnalysisIssue]
    recommendations: list[str]
    summary: str


def analysis_response_format() -> dict[str, Any]:
    """OpenAI-style `response_format` requesting an `AnalysisResult` object."""

    return {
        "type": "json_schema",
        "json_schema": {
            "name": "analysis_result",
            "description": "Analysis result with issues and recommendations",
            "schema": AnalysisResult.model_json_schema(),
            # Optional issue fields are not allowed under strict mode.
            "strict": False,
        },
    }


class ProcessingMetadata(BaseModel):
    original_payload_size_kb: float
    filtered_payload_size_kb: float
    reduction_percent: float
    chunks_created: int
    token_budget_utilized: bool
    context_varying_pattern_used: bool
    chunks_succeeded: int
    chunks_skipped: int


class AggregatedReport(BaseModel):
    """Final report combining every successfully analyzed chunk."""

    audit_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    total_records_analyzed: int
    chunks_processed: int
    high_priority_issues: list[AnalysisIssue] = Field(default_factory=list)
    medium_priority_issues: list[AnalysisIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    processing_metadata: ProcessingMetadata

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, exclude_none=True)
