"""Configuration models for the oversized JSON pipeline."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ChunkingConfig(BaseModel):
    """Configures token-budgeted record chunking."""

    max_chunk_tokens: int = Field(default=8000, ge=1)
    chars_per_token: float = Field(default=4.0, gt=0.0)
    reject_oversized_records: bool = False


class BudgetConfig(BaseModel):
    """Configures the per-request token budget of the target model."""

    context_window: int = Field(default=128000, ge=1)
    max_output_tokens: int = Field(default=4000, ge=0)
    safety_margin: int = Field(default=500, ge=0)

    @property
    def available_tokens(self) -> int:
        return self.context_window - self.max_output_tokens - self.safety_margin


class OrchestratorConfig(BaseModel):
    """Configures chunk processing and result aggregation."""

    context_carry: bool = False
    max_concurrency: int = Field(default=1, ge=1)
    call_timeout_seconds: float = Field(default=120.0, gt=0.0)
    summary_reserve_tokens: int = Field(default=500, ge=0)
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    fail_when_all_chunks_fail: bool = False
