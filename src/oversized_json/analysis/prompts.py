"""Prompt text sent with every chunk."""

from __future__ import annotations

SYSTEM_PROMPT = """
You are an expert analyst specializing in data quality and compliance review.

Your task is to analyze the provided records and identify:
1. HIGH PRIORITY ISSUES: Critical problems requiring immediate action
2. MEDIUM PRIORITY ISSUES: Important issues that should be addressed soon
3. RECOMMENDATIONS: Suggestions for improvement and best practices

For each issue, provide:
- The specific record ID affected
- Type of issue
- Severity level
- Clear description of the problem
- Required action to resolve
- Days until action deadline

Return results in the specified JSON format.
""".strip()

FIRST_CHUNK_SUMMARY = "None - this is the first chunk"


def build_message_header(
    record_count: int,
    chunk_index: int,
    total_chunks: int,
    *,
    previous_summary: str | None = None,
    context_carry: bool = False,
) -> str:
    """Instruction text that precedes the chunk data in the user message."""

    header = (
        f"Analyze the following {record_count} records "
        f"(chunk {chunk_index + 1} of {total_chunks}):"
    )
    if not context_carry:
        return header
    summary = previous_summary or FIRST_CHUNK_SUMMARY
    return f"Summary of the previous chunk: {summary}\n\n{header}"


def build_user_message(header: str, chunk_json: str) -> str:
    return f"{header}\n\n{chunk_json}"
