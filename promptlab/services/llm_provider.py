"""
LLM Provider interface and implementations.

=== THE STRATEGY PATTERN ===

We define an abstract base class (LLMProvider) with a single method: complete().
Concrete classes implement the actual API call. The callers (chunked classifier,
feedback orchestrator) only know about the ABC. They don't care which provider
is behind it, or whether there is a real model at all.

    LLMProvider (ABC)
        │
        ├── OpenAIProvider      ← default (gpt-4o-mini)
        ├── ClaudeProvider      ← LLM_PROVIDER=anthropic
        └── DemoProvider        ← no API key configured

=== WHY A DEMO PROVIDER INSTEAD OF `if client is None`? ===

Without an API key the app must still work end to end (classroom demos,
local development). Rather than sprinkling null checks through every call
site, dependencies.get_llm_provider() hands out a DemoProvider that answers
the same two kinds of request deterministically:

- a classification request (a dataset JSON array in the last user message)
  gets a JSON array of predictions back
- anything else gets a short explanatory coaching text

=== ERRORS ===

SDK exceptions (network, rate limit, auth) are wrapped in ServiceError.
No retries happen here; retry policy belongs to whoever calls the pipeline.
"""

import json
import re
import time
import zlib
import logging
from abc import ABC, abstractmethod
from typing import List, Optional
from datetime import datetime

from promptlab.core.errors import ServiceError
from promptlab.models.dataset import BINARY_LABELS
from promptlab.models.llm import LLMMessage, LLMResponse, TokenUsage
from promptlab.services.prompt_techniques import DATASET_HEADER, LABELS_HEADER

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Any provider must implement complete() which takes an ordered list of
    role-tagged messages and returns an LLMResponse containing the raw text,
    token counts, cost, and latency. Providers are stateless between calls
    and safe to share across concurrent requests.
    """

    is_demo: bool = False

    @abstractmethod
    async def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Send a chat-style request to the LLM and return the response.

        Args:
            messages: Ordered system/user/assistant messages
            temperature: 0.0 = deterministic, 1.0 = creative.
                Use 0.0 for classification (consistent results).
            max_tokens: Maximum tokens in the response (None = provider default)
        """
        ...

    @abstractmethod
    def get_provider_name(self) -> str: ...

    @abstractmethod
    def get_model_name(self) -> str: ...


def _cost(pricing: dict, model: str, usage: TokenUsage) -> float:
    rates = pricing.get(model, {"input": 1.0, "output": 5.0})
    return (
        usage.prompt_tokens * rates["input"] + usage.completion_tokens * rates["output"]
    ) / 1_000_000


class OpenAIProvider(LLMProvider):
    """
    OpenAI chat completions provider.

    The client is lazy-initialized so that building the dependency graph
    doesn't import the SDK or open connections.
    """

    # Pricing per 1M tokens
    PRICING = {
        "gpt-4o-mini": {"input": 0.15, "output": 0.60},
        "gpt-4o": {"input": 2.50, "output": 10.00},
        "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    }

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self):
        if self._client is None:
            import openai
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        import openai

        client = self._get_client()
        start = time.monotonic()

        kwargs = {
            "model": self.model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        try:
            completion = await client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.error(f"OpenAI call failed: {e}")
            raise ServiceError(f"Language model request failed: {e}") from e

        elapsed_ms = (time.monotonic() - start) * 1000

        usage = TokenUsage()
        if completion.usage is not None:
            usage = TokenUsage(
                prompt_tokens=completion.usage.prompt_tokens or 0,
                completion_tokens=completion.usage.completion_tokens or 0,
                total_tokens=completion.usage.total_tokens or 0,
            )
        cost = _cost(self.PRICING, self.model, usage)

        result = LLMResponse(
            text=completion.choices[0].message.content or "",
            model=self.model,
            provider="openai",
            usage=usage,
            cost_usd=cost,
            latency_ms=elapsed_ms,
            timestamp=datetime.utcnow(),
        )

        logger.info(
            f"LLM call: model={self.model}, "
            f"tokens={usage.prompt_tokens}+{usage.completion_tokens}, "
            f"cost=${cost:.6f}, latency={elapsed_ms:.0f}ms"
        )

        return result

    def get_provider_name(self) -> str:
        return "openai"

    def get_model_name(self) -> str:
        return self.model


class ClaudeProvider(LLMProvider):
    """
    Anthropic Claude provider.

    The Messages API takes the system prompt as a separate argument, so
    system messages are pulled out of the list and joined.
    """

    # Pricing per 1M tokens (update when Anthropic changes pricing)
    PRICING = {
        "claude-haiku-4-5-20251001": {"input": 0.80, "output": 4.00},
        "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
        "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    }

    def __init__(self, api_key: str, model: str = "claude-haiku-4-5-20251001"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        import anthropic

        client = self._get_client()

        start = time.monotonic()

        system = "\n\n".join(m.content for m in messages if m.role == "system")
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens or 1024,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages
                if m.role != "system"
            ],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await client.messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            logger.error(f"Anthropic call failed: {e}")
            raise ServiceError(f"Language model request failed: {e}") from e

        elapsed_ms = (time.monotonic() - start) * 1000

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        usage = TokenUsage(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )
        cost = _cost(self.PRICING, self.model, usage)

        result = LLMResponse(
            text=response.content[0].text,
            model=self.model,
            provider="anthropic",
            usage=usage,
            cost_usd=cost,
            latency_ms=elapsed_ms,
            timestamp=datetime.utcnow(),
        )

        logger.info(
            f"LLM call: model={self.model}, "
            f"tokens={input_tokens}+{output_tokens}, "
            f"cost=${cost:.6f}, latency={elapsed_ms:.0f}ms"
        )

        return result

    def get_provider_name(self) -> str:
        return "anthropic"

    def get_model_name(self) -> str:
        return self.model


class DemoProvider(LLMProvider):
    """
    Deterministic stand-in used when no API key is configured.

    Classification requests are answered by hashing each item's text onto
    the allowed labels (stable across runs, no randomness). Everything else
    gets a templated coaching note. Never raises for lack of a model.
    """

    is_demo = True

    _ATTEMPT_PATTERN = re.compile(r"CURRENT ATTEMPT:\s*(\d+)")

    async def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        last_user = next((m.content for m in reversed(messages) if m.role == "user"), "")
        system = "\n".join(m.content for m in messages if m.role == "system")

        items = self._dataset_items(last_user)
        if items is not None:
            labels = self._allowed_labels(system + "\n" + last_user)
            predictions = [
                {"id": item.get("id"), "pred": self._pick_label(str(item.get("text", "")), labels)}
                for item in items
            ]
            text = json.dumps(predictions)
        else:
            match = self._ATTEMPT_PATTERN.search(last_user)
            attempt = match.group(1) if match else "?"
            text = (
                f"Demo feedback for attempt {attempt}. No language model is configured, "
                "so this is placeholder coaching. Focus on a clear task definition, "
                "explicit criteria for each label, and a few representative examples."
            )

        return LLMResponse(
            text=text,
            model="demo",
            provider="demo",
            usage=TokenUsage(),
            timestamp=datetime.utcnow(),
        )

    @staticmethod
    def _dataset_items(content: str) -> Optional[list]:
        if DATASET_HEADER not in content:
            return None
        payload = content.split(DATASET_HEADER, 1)[1].strip()
        try:
            items = json.loads(payload)
        except json.JSONDecodeError:
            return None
        return items if isinstance(items, list) else None

    @staticmethod
    def _allowed_labels(content: str) -> List[str]:
        for line in content.splitlines():
            if line.startswith(LABELS_HEADER):
                labels = [l.strip() for l in line[len(LABELS_HEADER):].split(",") if l.strip()]
                if labels:
                    return labels
        return list(BINARY_LABELS)

    @staticmethod
    def _pick_label(text: str, labels: List[str]) -> str:
        return labels[zlib.crc32(text.encode("utf-8")) % len(labels)]

    def get_provider_name(self) -> str:
        return "demo"

    def get_model_name(self) -> str:
        return "demo"
