"""Chunk analyzer interface and the LangChain chat-model implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from langchain_core.prompts import ChatPromptTemplate
from pydantic import ValidationError

from oversized_json.analysis.schema import AnalysisResult, analysis_response_format
from oversized_json.errors import ChunkProcessingError, MalformedResponseError
from oversized_json.types import Chunk


@dataclass(slots=True)
class ChunkRequest:
    """Everything needed to analyze one chunk with one model call."""

    chunk: Chunk
    system_prompt: str
    user_message: str
    max_output_tokens: int
    temperature: float = 0.0
    previous_summary: str | None = None
    response_format: dict[str, Any] = field(default_factory=analysis_response_format)


class ChunkAnalyzer(ABC):
    """Analyzer interface used by the orchestrator.

    Implementations are shared across chunks and may be called from several
    threads at once, so they must not keep per-call state.
    """

    @abstractmethod
    def analyze(self, request: ChunkRequest) -> AnalysisResult:
        """Analyze one chunk and return its structured result."""


_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_prompt}"),
        ("human", "{user_message}"),
    ]
)


class LangChainChunkAnalyzer(ChunkAnalyzer):
    """Calls any LangChain chat model with a JSON-schema response format."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    def analyze(self, request: ChunkRequest) -> AnalysisResult:
        index = request.chunk.index
        messages = _PROMPT.invoke(
            {
                "system_prompt": request.system_prompt,
                "user_message": request.user_message,
            }
        )
        model = self.llm.bind(
            response_format=request.response_format,
            temperature=request.temperature,
            max_tokens=request.max_output_tokens,
        )
        try:
            response = model.invoke(messages)
        except Exception as exc:
            raise ChunkProcessingError(
                f"Model call failed for chunk {index}: {exc}", chunk_index=index
            ) from exc

        content = _message_text(response)
        if not content:
            raise MalformedResponseError(
                f"Empty model response for chunk {index}", chunk_index=index
            )
        try:
            return AnalysisResult.model_validate_json(content)
        except ValidationError as exc:
            raise MalformedResponseError(
                f"Response for chunk {index} does not match the analysis schema: {exc}",
                chunk_index=index,
            ) from exc


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts).strip()
    return str(content).strip()
