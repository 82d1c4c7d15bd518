"""Exception hierarchy for preprocessing, budgeting and chunk analysis."""

from __future__ import annotations

from dataclasses import dataclass


class OversizedJsonError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(OversizedJsonError, ValueError):
    """Raised eagerly when a configuration cannot produce a usable budget."""


@dataclass(frozen=True, slots=True)
class ChunkOverage:
    chunk_index: int
    total_input_tokens: int
    available_tokens: int
    overage: int


class BudgetExceededError(OversizedJsonError):
    """One or more chunks do not fit the request budget.

    Raised before any chunk is sent, so callers can lower `max_chunk_tokens`
    and retry without having paid for partial work.
    """

    def __init__(self, overages: list[ChunkOverage]) -> None:
        self.overages = list(overages)
        details = ", ".join(
            f"chunk {item.chunk_index} over by {item.overage} tokens"
            for item in self.overages
        )
        super().__init__(
            f"{len(self.overages)} chunk(s) exceed the token budget ({details}). "
            "Reduce max_chunk_tokens and retry."
        )

    @property
    def chunk_indices(self) -> list[int]:
        return [item.chunk_index for item in self.overages]


class OversizedRecordError(OversizedJsonError):
    """A single record exceeds the chunk limit and oversized records are rejected."""

    def __init__(self, record_tokens: int, max_tokens: int) -> None:
        self.record_tokens = record_tokens
        self.max_tokens = max_tokens
        super().__init__(
            f"Record of {record_tokens} tokens exceeds max_chunk_tokens={max_tokens}"
        )


class ChunkProcessingError(OversizedJsonError):
    """The external analysis call for one chunk failed."""

    def __init__(self, message: str, *, chunk_index: int | None = None) -> None:
        self.chunk_index = chunk_index
        super().__init__(message)


class MalformedResponseError(ChunkProcessingError):
    """The model answered with content that is not a valid analysis result."""


class ChunkTimeoutError(ChunkProcessingError):
    """The analysis call for one chunk did not finish within the call timeout."""


class AllChunksFailedError(OversizedJsonError):
    """Every chunk was skipped during processing."""

    def __init__(self, failed_chunks: int) -> None:
        self.failed_chunks = failed_chunks
        super().__init__(f"All {failed_chunks} chunk(s) failed analysis")
