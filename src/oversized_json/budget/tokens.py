"""Character-ratio token estimation and canonical JSON serialization."""

from __future__ import annotations

import json
import math
from typing import Any

CHARS_PER_TOKEN = 4.0


def dump_json(value: Any, *, indent: int | None = None) -> str:
    """Serialize a JSON value the same way everywhere sizes are measured.

    Compact separators are used unless `indent` is given, which matches the
    pretty-printed form sent to the model.
    """

    if indent is None:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return json.dumps(value, ensure_ascii=False, indent=indent, default=str)


def estimate_tokens(text: str | None, chars_per_token: float = CHARS_PER_TOKEN) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


class TokenEstimator:
    """Approximates token counts as `ceil(len(text) / chars_per_token)`.

    This is not a tokenizer. Counts for a specific model will differ, so the
    budget validator keeps a safety margin on top of these estimates.
    """

    def __init__(self, chars_per_token: float = CHARS_PER_TOKEN) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str | None) -> int:
        return estimate_tokens(text, self.chars_per_token)

    def estimate_json(self, value: Any, *, indent: int | None = None) -> int:
        return self.estimate(dump_json(value, indent=indent))
