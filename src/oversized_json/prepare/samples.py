"""Synthetic bloated API records for demos and tests."""

from __future__ import annotations

from oversized_json.prepare.chunker import field_sort_key
from oversized_json.types import Record

DEFAULT_RELEVANT_FIELDS: tuple[str, ...] = (
    "record_id",
    "status",
    "priority_level",
    "created_date",
    "last_updated",
    "assigned_to",
    "compliance_flags",
    "risk_score",
    "required_actions",
    "last_review_date",
    "next_review_date",
    "documentation_status",
    "service_plan_current",
)

default_sort_key = field_sort_key("priority_level", "risk_score")


def generate_sample_records(count: int) -> list[Record]:
    """Build `count` deterministic records padded with fields nobody analyzes.

    `internal_notes`, `history` and `attachments` stand in for the verbose
    payload real APIs return; the default allow-list drops all three.
    """

    records: list[Record] = []
    for i in range(count):
        records.append(
            {
                "record_id": f"REC-{2024000 + i}",
                "status": "ACTIVE" if i % 3 != 0 else "PENDING",
                "priority_level": ("HIGH", "MEDIUM", "LOW")[i % 3],
                "created_date": f"2024-{(i % 12) + 1:02d}-01T00:00:00Z",
                "last_updated": "2024-11-10T12:00:00Z",
                "assigned_to": f"USER-{(i % 20) + 1:03d}",
                "compliance_flags": ["overdue_action"] if i % 5 == 0 else [],
                "risk_score": (i % 10) / 10.0,
                "required_actions": ["review", "document"],
                "last_review_date": "2024-10-15T00:00:00Z" if i % 7 != 0 else None,
                "next_review_date": "2024-11-20T00:00:00Z",
                "documentation_status": "COMPLETE" if i % 4 == 0 else "INCOMPLETE",
                "service_plan_current": i % 3 != 0,
                "internal_notes": "Lorem ipsum dolor sit amet... " * 10,
                "history": ["event1", "event2", "event3"],
                "attachments": ["doc1.pdf", "doc2.pdf", "doc3.pdf", "doc4.pdf"],
            }
        )
    return records
