"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

Record = dict[str, Any]


class Priority(str, Enum):
    """Priority tier used to order records before packing."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


def priority_rank(tier: Priority | str | None) -> int:
    """Map a tier to 3/2/1; anything unrecognized ranks with LOW."""
    try:
        return Priority(tier).rank
    except ValueError:
        return 1


class SortKey(NamedTuple):
    priority: Priority | str
    score: float


DEFAULT_SORT_KEY = SortKey(Priority.MEDIUM, 0.5)


@dataclass(frozen=True, slots=True)
class Chunk:
    """A token-bounded group of records and its metadata."""

    index: int
    total_chunks: int
    records: tuple[Record, ...]
    estimated_tokens: int

    @property
    def record_count(self) -> int:
        return len(self.records)

    def metadata(self) -> dict[str, int]:
        return {
            "chunk_index": self.index,
            "total_chunks": self.total_chunks,
            "record_count": self.record_count,
            "estimated_tokens": self.estimated_tokens,
        }


@dataclass(frozen=True, slots=True)
class ReductionStats:
    original_size_bytes: int
    filtered_size_bytes: int
    reduction_percent: float

    @property
    def original_size_kb(self) -> float:
        return self.original_size_bytes / 1024.0

    @property
    def filtered_size_kb(self) -> float:
        return self.filtered_size_bytes / 1024.0


@dataclass(frozen=True, slots=True)
class BudgetValidationResult:
    system_prompt_tokens: int
    user_message_tokens: int
    data_tokens: int
    total_input_tokens: int
    available_tokens: int
    remaining_tokens: int
    fits_budget: bool
    utilization_percent: float


class RunStage(str, Enum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    CHUNKING = "chunking"
    VALIDATING = "validating"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class PipelineEvent:
    """Progress notification emitted by the orchestrator."""

    stage: RunStage
    message: str
    data: dict[str, Any] = field(default_factory=dict)
