"""Deterministic rule-based analyzer used when no LLM is configured."""

from __future__ import annotations

from typing import Any

from oversized_json.analysis.analyzer import ChunkAnalyzer, ChunkRequest
from oversized_json.analysis.schema import AnalysisIssue, AnalysisResult
from oversized_json.types import Record

_HIGH_RISK_THRESHOLD = 0.8

_RECOMMENDATIONS = {
    "compliance_flag": "Clear outstanding compliance flags before the next review cycle.",
    "elevated_risk": "Escalate high-risk records to a senior reviewer.",
    "missing_review": "Schedule reviews for records without a recorded review date.",
    "incomplete_documentation": "Complete documentation for records marked INCOMPLETE.",
    "outdated_service_plan": "Refresh service plans that are no longer current.",
}


class DeterministicChunkAnalyzer(ChunkAnalyzer):
    """Analyzer that flags well-known record problems without a model call.

    It keeps the same response contract as `LangChainChunkAnalyzer` and is
    useful for local/offline runs where `OPENAI_API_KEY` is not configured.
    Only fields that survive projection are inspected, so an allow-list that
    drops e.g. `compliance_flags` also drops the matching rule.
    """

    def analyze(self, request: ChunkRequest) -> AnalysisResult:
        chunk = request.chunk
        high: list[AnalysisIssue] = []
        medium: list[AnalysisIssue] = []

        for position, record in enumerate(chunk.records):
            record_id = _record_id(record, chunk.index, position)
            high.extend(_high_priority_issues(record, record_id))
            medium.extend(_medium_priority_issues(record, record_id))

        recommendations: list[str] = []
        for issue in high + medium:
            text = _RECOMMENDATIONS[issue.issue_type]
            if text not in recommendations:
                recommendations.append(text)

        summary = (
            f"Chunk {chunk.index + 1} of {chunk.total_chunks}: "
            f"{chunk.record_count} records, {len(high)} high-priority and "
            f"{len(medium)} medium-priority issues."
        )
        return AnalysisResult(
            chunk_index=chunk.index,
            total_chunks=chunk.total_chunks,
            records_analyzed=chunk.record_count,
            high_priority_issues=high,
            medium_priority_issues=medium,
            recommendations=recommendations,
            summary=summary,
        )


def _record_id(record: Record, chunk_index: int, position: int) -> str:
    for key in ("record_id", "incident_id", "id"):
        value = record.get(key)
        if value is not None:
            return str(value)
    return f"chunk-{chunk_index}-record-{position}"


def _high_priority_issues(record: Record, record_id: str) -> list[AnalysisIssue]:
    issues: list[AnalysisIssue] = []
    flags = record.get("compliance_flags")
    if flags:
        issues.append(
            AnalysisIssue(
                record_id=record_id,
                issue_type="compliance_flag",
                severity="HIGH",
                description=f"Open compliance flags: {', '.join(map(str, flags))}",
                required_action="Resolve every open compliance flag",
                priority_days=7,
            )
        )

    risk = _as_float(record.get("risk_score"))
    if risk is not None and risk >= _HIGH_RISK_THRESHOLD:
        issues.append(
            AnalysisIssue(
                record_id=record_id,
                issue_type="elevated_risk",
                severity="HIGH",
                description=f"Risk score {risk:.2f} is at or above {_HIGH_RISK_THRESHOLD:.2f}",
                required_action="Assign a senior reviewer",
                priority_days=3,
            )
        )
    return issues


def _medium_priority_issues(record: Record, record_id: str) -> list[AnalysisIssue]:
    issues: list[AnalysisIssue] = []
    if "last_review_date" in record and record["last_review_date"] is None:
        issues.append(
            AnalysisIssue(
                record_id=record_id,
                issue_type="missing_review",
                severity="MEDIUM",
                description="No review has been recorded",
                required_action="Schedule a review",
                priority_days=30,
            )
        )
    if record.get("documentation_status") == "INCOMPLETE":
        issues.append(
            AnalysisIssue(
                record_id=record_id,
                issue_type="incomplete_documentation",
                severity="MEDIUM",
                description="Documentation is marked INCOMPLETE",
                required_action="Complete the missing documentation",
                priority_days=14,
            )
        )
    if record.get("service_plan_current") is False:
        issues.append(
            AnalysisIssue(
                record_id=record_id,
                issue_type="outdated_service_plan",
                severity="MEDIUM",
                description="Service plan is not current",
                required_action="Update the service plan",
                priority_days=14,
            )
        )
    return issues


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
