import pytest

from oversized_json.budget.tokens import dump_json, estimate_tokens
from oversized_json.config import ChunkingConfig
from oversized_json.errors import ConfigurationError, OversizedRecordError
from oversized_json.prepare.chunker import BudgetedChunker, field_sort_key
from oversized_json.types import Priority, SortKey, priority_rank


def _record_of_length(record_id: str, length: int, **extra) -> dict:
    base = {"record_id": record_id, **extra, "pad": ""}
    overhead = len(dump_json(base))
    return {**base, "pad": "x" * (length - overhead)}


def _record_of_tokens(record_id: str, tokens: int) -> dict:
    return _record_of_length(record_id, tokens * 4)


def test_greedy_packing_closes_chunk_when_next_record_overflows() -> None:
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=8000))
    records = [
        _record_of_tokens("a", 2000),
        _record_of_tokens("b", 3000),
        _record_of_tokens("c", 2800),
        _record_of_tokens("d", 1500),
    ]

    chunks = chunker.chunk(records)

    assert [chunk.record_count for chunk in chunks] == [3, 1]
    assert [chunk.index for chunk in chunks] == [0, 1]
    assert all(chunk.total_chunks == 2 for chunk in chunks)
    # Chunk estimates include array brackets and separators.
    assert chunks[0].estimated_tokens == 7801
    assert chunks[1].estimated_tokens == 1501


def test_empty_input_yields_no_chunks() -> None:
    chunker = BudgetedChunker()

    assert chunker.chunk([]) == []
    assert chunker.chunk_by_group([], lambda record: record["k"]) == []
    assert chunker.chunk_fixed_size([], 5) == []


def test_every_record_lands_in_exactly_one_chunk() -> None:
    records = [_record_of_length(f"R-{i:03d}", 200 + (i * 53) % 900) for i in range(60)]
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=600))

    chunks = chunker.chunk(records)
    flattened = [record["record_id"] for chunk in chunks for record in chunk.records]

    assert sorted(flattened) == sorted(record["record_id"] for record in records)
    assert len(flattened) == len(records)


def test_multi_record_chunks_respect_the_limit() -> None:
    # Lengths of 4k+1 characters leave rounding slack for the array punctuation.
    records = [
        _record_of_length(f"R-{i:03d}", 4 * (50 + (i * 37) % 200) + 1) for i in range(80)
    ]
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=1000))

    chunks = chunker.chunk(records)

    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.estimated_tokens == estimate_tokens(dump_json(list(chunk.records)))
        if chunk.record_count > 1:
            assert chunk.estimated_tokens <= 1000


def test_exact_multiple_records_can_overshoot_the_limit_by_punctuation() -> None:
    # Per-record estimates sum to the limit exactly; the chunk-level estimate
    # also counts the brackets and separator.
    records = [_record_of_length("a", 400), _record_of_length("b", 400)]
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=200))

    chunks = chunker.chunk(records)

    assert len(chunks) == 1
    assert chunks[0].record_count == 2
    assert chunks[0].estimated_tokens == 201


def test_oversized_record_becomes_singleton_chunk() -> None:
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=100))
    records = [
        _record_of_tokens("small-1", 30),
        _record_of_tokens("huge", 500),
        _record_of_tokens("small-2", 30),
    ]

    chunks = chunker.chunk(records)

    assert [[r["record_id"] for r in chunk.records] for chunk in chunks] == [
        ["small-1"],
        ["huge"],
        ["small-2"],
    ]
    assert chunks[1].estimated_tokens > 100


def test_oversized_record_rejected_when_configured() -> None:
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=100, reject_oversized_records=True))

    with pytest.raises(OversizedRecordError) as exc_info:
        chunker.chunk([_record_of_tokens("huge", 500)])

    assert exc_info.value.max_tokens == 100


def test_records_ordered_by_tier_then_score_descending() -> None:
    tiers = ["LOW", "HIGH", "MEDIUM", "HIGH", "LOW", "MEDIUM", "UNKNOWN"]
    records = [
        {"record_id": f"R-{i}", "priority_level": tier, "risk_score": ((i * 7) % 10) / 10.0}
        for i, tier in enumerate(tiers * 3)
    ]
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=60))
    sort_key = field_sort_key()

    chunks = chunker.chunk(records, sort_key)
    ordered = [record for chunk in chunks for record in chunk.records]

    assert len(chunks) > 1
    for a, b in zip(ordered, ordered[1:]):
        key_a, key_b = sort_key(a), sort_key(b)
        rank_a, rank_b = priority_rank(key_a.priority), priority_rank(key_b.priority)
        assert rank_a > rank_b or (rank_a == rank_b and key_a.score >= key_b.score)
    assert ordered[0]["priority_level"] == "HIGH"


def test_equal_keys_keep_input_order() -> None:
    records = [{"record_id": f"R-{i}"} for i in range(10)]

    ordered = BudgetedChunker.sort_records(records)

    assert ordered == records


def test_sort_key_accepts_enum_and_plain_tuples() -> None:
    records = [{"id": "low"}, {"id": "high"}, {"id": "medium"}]
    keys = {
        "low": (Priority.LOW, 0.9),
        "high": SortKey(Priority.HIGH, 0.1),
        "medium": ("MEDIUM", 0.5),
    }

    ordered = BudgetedChunker.sort_records(records, lambda r: keys[r["id"]])

    assert [r["id"] for r in ordered] == ["high", "medium", "low"]


def test_field_sort_key_defaults_missing_fields() -> None:
    assert field_sort_key()({}) == SortKey(Priority.MEDIUM, 0.5)
    assert field_sort_key("severity", "score")({"severity": "HIGH", "score": 2}) == SortKey("HIGH", 2.0)


def test_field_sort_key_ignores_scores_that_are_not_numbers() -> None:
    sort_key = field_sort_key()

    assert sort_key({"priority_level": "HIGH", "risk_score": "n/a"}) == SortKey("HIGH", 0.5)
    assert sort_key({"risk_score": "0.9"}) == SortKey(Priority.MEDIUM, 0.9)
    assert sort_key({"risk_score": True}).score == 0.5
    assert sort_key({"risk_score": float("nan")}).score == 0.5
    assert sort_key({"risk_score": [1]}).score == 0.5


def test_group_chunking_never_mixes_groups() -> None:
    severities = ["HIGH", "MEDIUM", "LOW"]
    records = [
        {"incident_id": f"INC-{i:03d}", "severity_level": severities[i % 3], "description": f"Incident {i}"}
        for i in range(10)
    ]
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=5000))

    chunks = chunker.chunk_by_group(records, lambda r: r["severity_level"])

    assert len(chunks) == 3
    for chunk in chunks:
        assert len({record["severity_level"] for record in chunk.records}) == 1
    assert [chunk.records[0]["severity_level"] for chunk in chunks] == severities


def test_large_group_spans_several_chunks() -> None:
    records = [_record_of_tokens(f"R-{i}", 40) for i in range(10)]
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=100))

    chunks = chunker.chunk_by_group(records, lambda r: "same")

    assert [chunk.record_count for chunk in chunks] == [2, 2, 2, 2, 2]


def test_fixed_size_chunking() -> None:
    records = [{"incident_id": f"INC-{i:05d}", "data": "x" * 50} for i in range(100)]
    chunker = BudgetedChunker()

    chunks = chunker.chunk_fixed_size(records, chunk_size=10)

    assert len(chunks) == 10
    assert all(chunk.record_count == 10 for chunk in chunks)
    assert chunker.chunk_fixed_size(records[:25], chunk_size=10)[-1].record_count == 5
    with pytest.raises(ConfigurationError):
        chunker.chunk_fixed_size(records, chunk_size=0)


def test_limit_override_and_validation() -> None:
    chunker = BudgetedChunker(ChunkingConfig(max_chunk_tokens=10_000))
    records = [_record_of_tokens(f"R-{i}", 100) for i in range(4)]

    assert len(chunker.chunk(records)) == 1
    assert len(chunker.chunk(records, max_tokens_per_chunk=150)) == 4
    with pytest.raises(ConfigurationError):
        chunker.chunk(records, max_tokens_per_chunk=0)
