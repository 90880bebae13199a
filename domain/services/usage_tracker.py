import logging
from typing import Dict, Optional

from infra.repositories.usage_repository import UsageRepository

logger = logging.getLogger(__name__)

# USD per million tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"input": 5.00, "output": 15.00},
    "gpt-4o-mini": {"input": 0.150, "output": 0.600},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "openai/gpt-4o": {"input": 5.00, "output": 15.00},
    "openai/gpt-4o-mini": {"input": 0.150, "output": 0.600},
    "google/gemini-2.5-flash": {"input": 0.075, "output": 0.30},
    "anthropic/claude-3-haiku": {"input": 0.25, "output": 1.25},
    "default": {"input": 1.00, "output": 2.00},
}


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model, MODEL_PRICING["default"])
    return (prompt_tokens / 1_000_000) * pricing["input"] + \
        (completion_tokens / 1_000_000) * pricing["output"]


class UsageTracker:
    """Records one row per analysis attempt. Never raises."""

    def __init__(self, repo: Optional[UsageRepository] = None):
        self.repo = repo or UsageRepository()

    def record(self, operation: str, model: str, usage: Optional[Dict[str, int]], success: bool,
               latency_ms: int, retry_count: int, *, entity_id: Optional[str] = None,
               error_message: Optional[str] = None) -> None:
        usage = usage or {}
        prompt_tokens = int(usage.get("prompt_tokens", 0) or 0)
        completion_tokens = int(usage.get("completion_tokens", 0) or 0)
        try:
            self.repo.save(
                operation=operation,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                estimated_cost=calculate_cost(model, prompt_tokens, completion_tokens),
                success=success,
                latency_ms=latency_ms,
                retry_count=retry_count,
                entity_id=entity_id,
                error_message=error_message,
            )
        except Exception:
            logger.exception("Failed to record AI usage for %s (%s)", operation, model)
