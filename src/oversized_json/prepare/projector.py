"""Field-projection preprocessing for bloated API records."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from oversized_json.budget.tokens import dump_json
from oversized_json.types import Record, ReductionStats


class RecordProjector:
    """Keeps only allow-listed fields of each record.

    Upstream APIs usually return far more than an analysis needs (notes,
    attachments, event history). Dropping those fields before chunking is the
    cheapest token reduction available, so it runs first.
    """

    def __init__(self, allowed_fields: Iterable[str]) -> None:
        self.allowed_fields = frozenset(allowed_fields)

    def project(self, records: Iterable[Record]) -> list[Record]:
        return [self.project_one(record) for record in records]

    def project_one(self, record: Record) -> Record:
        return {
            key: value for key, value in record.items() if key in self.allowed_fields
        }

    def calculate_reduction(self, original: Any, filtered: Any) -> ReductionStats:
        """Compare serialized sizes of the raw and projected payloads."""

        original_size = len(dump_json(original).encode("utf-8"))
        filtered_size = len(dump_json(filtered).encode("utf-8"))
        if original_size == 0:
            reduction = 0.0
        else:
            reduction = (1.0 - filtered_size / original_size) * 100.0
        return ReductionStats(
            original_size_bytes=original_size,
            filtered_size_bytes=filtered_size,
            reduction_percent=reduction,
        )
