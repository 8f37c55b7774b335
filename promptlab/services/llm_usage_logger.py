"""
LLM usage/cost logger.

Appends one JSON line per LLM call to logs/llm_usage.jsonl.

JSONL (JSON Lines) format: one complete JSON object per line.
    {"timestamp": "2025-01-15T...", "provider": "openai", "operation": "classify", ...}
    {"timestamp": "2025-01-15T...", "provider": "openai", "operation": "feedback", ...}

A single attempt produces up to five lines: four classification chunks and
one feedback call. Summing cost_usd per day gives the classroom bill.
"""

import logging
from pathlib import Path
from typing import Optional

from promptlab.models.llm import LLMResponse, LLMUsageRecord

logger = logging.getLogger(__name__)


class LLMUsageLogger:

    def __init__(self, log_dir: Path):
        self.log_dir = log_dir
        self.log_file = self.log_dir / "llm_usage.jsonl"

    def log_call(
        self,
        response: LLMResponse,
        operation: str,
        success: bool = True,
        error: Optional[str] = None,
    ):
        """
        Append a usage record for one LLM call.

        Args:
            response: The LLMResponse from the provider
            operation: What triggered this call ("classify", "feedback")
            success: Whether we successfully parsed the response
            error: Error message if success=False
        """
        record = LLMUsageRecord(
            timestamp=response.timestamp,
            provider=response.provider,
            model=response.model,
            operation=operation,
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            cost_usd=response.cost_usd,
            latency_ms=response.latency_ms,
            success=success,
            error=error,
        )

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a") as f:
                f.write(record.model_dump_json() + "\n")
        except OSError as e:
            logger.warning(f"Could not write LLM usage record: {e}")
