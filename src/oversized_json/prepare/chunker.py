"""Token-budgeted semantic chunking of JSON records."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass, field
from typing import Any

from oversized_json.budget.tokens import TokenEstimator
from oversized_json.config import ChunkingConfig
from oversized_json.errors import ConfigurationError, OversizedRecordError
from oversized_json.types import DEFAULT_SORT_KEY, Chunk, Record, SortKey, priority_rank

SortKeyFn = Callable[[Record], tuple[Any, float]]
GroupKeyFn = Callable[[Record], Hashable]


@dataclass(slots=True)
class _PackState:
    records: list[Record] = field(default_factory=list)
    tokens: int = 0


class BudgetedChunker:
    """Orders records by importance and packs them into token-bounded chunks.

    Design notes:
    1. Semantic ordering first.
       Every record gets a `(priority, score)` key. Records are stably sorted by
       priority tier (HIGH > MEDIUM > LOW) and then by score, both descending.
       The most important records land in the earliest chunks and each chunk
       tends to hold a single tier instead of an interleaved mix.

    2. Greedy packing second.
       Records are appended to the current chunk until the next one would push
       the running estimate past `max_chunk_tokens`; the chunk is then closed
       and a new one started. The running estimate sums per-record estimates,
       each taken over the record's own serialization.

    3. Oversized records.
       A record that alone exceeds the limit is never split or dropped. It
       becomes a chunk of one, unless `reject_oversized_records` is enabled.

    Reported `estimated_tokens` re-serializes the whole chunk, so it includes
    the array brackets and separators the per-record sum leaves out.
    """

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        *,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.config = config or ChunkingConfig()
        self.estimator = estimator or TokenEstimator(self.config.chars_per_token)

    def chunk(
        self,
        records: Sequence[Record],
        sort_key_fn: SortKeyFn | None = None,
        max_tokens_per_chunk: int | None = None,
    ) -> list[Chunk]:
        """Sort records by semantic importance and pack them under the limit.

        Args:
            records: Projected records to distribute.
            sort_key_fn: Maps a record to `(priority, score)`. Without it every
                record gets `DEFAULT_SORT_KEY` and input order is kept.
            max_tokens_per_chunk: Overrides the configured chunk limit.

        Returns:
            Ordered chunks carrying index, total and chunk-level token metadata.
        """

        limit = self._resolve_limit(max_tokens_per_chunk)
        ordered = self.sort_records(records, sort_key_fn)
        return self._finalize(self._pack(ordered, limit))

    def chunk_by_group(
        self,
        records: Sequence[Record],
        group_key_fn: GroupKeyFn,
        max_tokens_per_chunk: int | None = None,
    ) -> list[Chunk]:
        """Keep records sharing a key (severity, location, ...) together.

        Groups are emitted in first-seen order. A group larger than the limit
        spans several chunks, but no chunk ever mixes two groups.
        """

        limit = self._resolve_limit(max_tokens_per_chunk)
        groups: dict[Hashable, list[Record]] = {}
        for record in records:
            groups.setdefault(group_key_fn(record), []).append(record)

        packed: list[list[Record]] = []
        for members in groups.values():
            packed.extend(self._pack(members, limit))
        return self._finalize(packed)

    def chunk_fixed_size(self, records: Sequence[Record], chunk_size: int) -> list[Chunk]:
        """Slice records into consecutive chunks of `chunk_size` records."""

        if chunk_size < 1:
            raise ConfigurationError("chunk_size must be at least 1")
        packed = [
            list(records[start : start + chunk_size])
            for start in range(0, len(records), chunk_size)
        ]
        return self._finalize(packed)

    @staticmethod
    def sort_records(
        records: Sequence[Record], sort_key_fn: SortKeyFn | None = None
    ) -> list[Record]:
        keyed = []
        for record in records:
            priority, score = sort_key_fn(record) if sort_key_fn else DEFAULT_SORT_KEY
            keyed.append(((priority_rank(priority), float(score)), record))
        # reverse=True keeps equal keys in input order.
        keyed.sort(key=lambda item: item[0], reverse=True)
        return [record for _, record in keyed]

    def _pack(self, records: Sequence[Record], limit: int) -> list[list[Record]]:
        output: list[list[Record]] = []
        state = _PackState()

        for record in records:
            record_tokens = self.estimator.estimate_json(record)
            if record_tokens > limit and self.config.reject_oversized_records:
                raise OversizedRecordError(record_tokens, limit)

            if state.tokens + record_tokens > limit and state.records:
                output.append(state.records)
                state = _PackState()

            state.records.append(record)
            state.tokens += record_tokens

        if state.records:
            output.append(state.records)
        return output

    def _finalize(self, packed: list[list[Record]]) -> list[Chunk]:
        total = len(packed)
        return [
            Chunk(
                index=index,
                total_chunks=total,
                records=tuple(records),
                estimated_tokens=self.estimator.estimate_json(records),
            )
            for index, records in enumerate(packed)
        ]

    def _resolve_limit(self, override: int | None) -> int:
        limit = self.config.max_chunk_tokens if override is None else override
        if limit < 1:
            raise ConfigurationError("max_tokens_per_chunk must be at least 1")
        return limit


def field_sort_key(
    priority_field: str = "priority_level",
    score_field: str = "risk_score",
) -> Callable[[Record], SortKey]:
    """Build a sort key reading the tier and score from two record fields.

    Missing fields and scores that are not numbers fall back to the matching
    half of `DEFAULT_SORT_KEY`.
    """

    def _sort_key(record: Record) -> SortKey:
        priority = record.get(priority_field)
        score = _as_score(record.get(score_field))
        return SortKey(
            priority=str(priority) if priority is not None else DEFAULT_SORT_KEY.priority,
            score=score if score is not None else DEFAULT_SORT_KEY.score,
        )

    return _sort_key


def _as_score(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    # NaN breaks the ordering of the stable sort.
    return None if score != score else score
