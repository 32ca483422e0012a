"""Execution policy models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff for transient network errors."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay_s: float = 0.5
    max_delay_s: float | None = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay_s = self.base_delay_s * (2**attempt)
        if self.max_delay_s is not None:
            delay_s = min(delay_s, self.max_delay_s)
        return delay_s


class EngineConfig(BaseModel):
    """Confirmation and retry policy for the execution engine.

    ``confirmations`` counts the inclusion block, so the default of 3 waits
    for inclusion plus two more blocks.
    """

    model_config = ConfigDict(frozen=True)

    confirmations: int = Field(default=3, ge=1)
    retry: RetryPolicy = RetryPolicy()
