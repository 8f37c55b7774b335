"""
Data models for the LLM integration layer.

Four models, four concerns:

1. LLMMessage: One role-tagged message in a chat-style request. The same
   shape goes to every provider; providers translate it to their SDK format.

2. TokenUsage: Prompt/completion/total token counters. Supports `+` so the
   four classification chunks can be summed field-wise.

3. LLMResponse: What comes back from the LLM API (raw text + metadata).
   Provider-agnostic: OpenAI, Claude, and the demo provider all produce
   this same shape.

4. LLMUsageRecord: Cost/latency tracking for every LLM call.

Why separate LLMResponse from predictions/feedback? The provider is a generic
text-generation interface; it shouldn't know about tweets or labels. The
*caller* (chunked classifier, feedback orchestrator) parses the raw text.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Literal, Optional


class LLMMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class LLMResponse(BaseModel):
    """
    Raw response from any LLM provider.

    Every LLM API returns: generated text, token counts, and timing.
    We compute cost from token counts using provider-specific pricing.
    """
    text: str
    model: str                  # e.g., "gpt-4o-mini"
    provider: str               # e.g., "openai", "anthropic", "demo"
    usage: TokenUsage
    cost_usd: float = 0.0
    latency_ms: float = 0.0
    timestamp: datetime


class LLMUsageRecord(BaseModel):
    """
    Per-call cost/latency record, written to logs/llm_usage.jsonl.

    JSONL (one JSON object per line) is easy to append, parse, and load
    into pandas for analysis. No database dependency needed.
    """
    timestamp: datetime
    provider: str
    model: str
    operation: str              # "classify", "feedback"
    input_tokens: int
    output_tokens: int
    cost_usd: float
    latency_ms: float
    success: bool
    error: Optional[str] = None
