"""Token-budgeted preprocessing, chunking and analysis of oversized JSON payloads."""

from .config import BudgetConfig, ChunkingConfig, OrchestratorConfig

__all__ = ["BudgetConfig", "ChunkingConfig", "OrchestratorConfig"]
