from oversized_json.prepare.projector import RecordProjector
from oversized_json.prepare.samples import DEFAULT_RELEVANT_FIELDS, generate_sample_records


def test_projection_keeps_only_allowed_fields_with_original_values() -> None:
    record = {"record_id": "R-1", "status": None, "notes": "long text", "nested": {"a": [1, 2]}}
    projector = RecordProjector({"record_id", "status", "nested", "missing_field"})

    projected = projector.project([record])[0]

    assert set(projected) <= projector.allowed_fields
    assert projected == {"record_id": "R-1", "status": None, "nested": {"a": [1, 2]}}
    assert "missing_field" not in projected
    assert record["notes"] == "long text"


def test_projection_is_idempotent_and_handles_empty_input() -> None:
    projector = RecordProjector(DEFAULT_RELEVANT_FIELDS)
    records = generate_sample_records(12)

    once = projector.project(records)

    assert projector.project(once) == once
    assert projector.project([]) == []


def test_reduction_stats_for_bloated_records() -> None:
    projector = RecordProjector(DEFAULT_RELEVANT_FIELDS)
    records = generate_sample_records(50)

    stats = projector.calculate_reduction(records, projector.project(records))

    assert stats.filtered_size_bytes < stats.original_size_bytes
    assert stats.reduction_percent > 30.0
    assert stats.original_size_kb == stats.original_size_bytes / 1024.0


def test_reduction_is_zero_for_identical_payloads() -> None:
    projector = RecordProjector({"a"})

    stats = projector.calculate_reduction([{"a": 1}], [{"a": 1}])

    assert stats.reduction_percent == 0.0
