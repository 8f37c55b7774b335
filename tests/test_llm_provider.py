"""
Tests for the provider layer: SDK request shaping, error wrapping, the demo
provider, and provider selection from settings.
"""

import asyncio
import json
from types import SimpleNamespace

import anthropic
import openai
import pytest

from promptlab.core.config import Settings
from promptlab.core.dependencies import build_llm_provider
from promptlab.core.errors import ServiceError
from promptlab.models.llm import LLMMessage
from promptlab.services.llm_provider import ClaudeProvider, DemoProvider, OpenAIProvider
from promptlab.services.prompt_techniques import DATASET_HEADER, classification_system_prompt

MESSAGES = [
    LLMMessage(role="system", content="be brief"),
    LLMMessage(role="user", content="hello"),
    LLMMessage(role="assistant", content="hi"),
    LLMMessage(role="user", content="classify"),
]


class _Recorder:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return self.response


def _openai_provider(recorder):
    provider = OpenAIProvider(api_key="sk-test")
    provider._client = SimpleNamespace(chat=SimpleNamespace(completions=recorder))
    return provider


def _claude_provider(recorder):
    provider = ClaudeProvider(api_key="sk-ant-test")
    provider._client = SimpleNamespace(messages=recorder)
    return provider


def test_openai_request_and_usage():
    recorder = _Recorder(SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="[]"))],
        usage=SimpleNamespace(prompt_tokens=1000, completion_tokens=100, total_tokens=1100),
    ))
    response = asyncio.run(_openai_provider(recorder).complete(MESSAGES, temperature=0.0, max_tokens=4096))

    assert recorder.kwargs["model"] == "gpt-4o-mini"
    assert recorder.kwargs["max_tokens"] == 4096
    assert [m["role"] for m in recorder.kwargs["messages"]] == ["system", "user", "assistant", "user"]
    assert response.text == "[]"
    assert response.provider == "openai"
    assert response.usage.total_tokens == 1100
    assert response.cost_usd == pytest.approx((1000 * 0.15 + 100 * 0.60) / 1_000_000)


def test_openai_errors_become_service_errors():
    recorder = _Recorder(error=openai.OpenAIError("rate limited"))
    with pytest.raises(ServiceError):
        asyncio.run(_openai_provider(recorder).complete(MESSAGES))


def test_claude_moves_system_messages_out():
    recorder = _Recorder(SimpleNamespace(
        content=[SimpleNamespace(text="feedback")],
        usage=SimpleNamespace(input_tokens=200, output_tokens=50),
    ))
    response = asyncio.run(_claude_provider(recorder).complete(MESSAGES, temperature=0.7, max_tokens=500))

    assert recorder.kwargs["system"] == "be brief"
    assert [m["role"] for m in recorder.kwargs["messages"]] == ["user", "assistant", "user"]
    assert recorder.kwargs["max_tokens"] == 500
    assert response.text == "feedback"
    assert response.usage.total_tokens == 250
    assert response.provider == "anthropic"


def test_claude_errors_become_service_errors():
    recorder = _Recorder(error=anthropic.AnthropicError("overloaded"))
    with pytest.raises(ServiceError):
        asyncio.run(_claude_provider(recorder).complete(MESSAGES))


def _demo_classify(labels, items):
    messages = [
        LLMMessage(role="system", content=classification_system_prompt(labels)),
        LLMMessage(role="user", content=f"my prompt\n\n{DATASET_HEADER}\n{json.dumps(items)}"),
    ]
    return json.loads(asyncio.run(DemoProvider().complete(messages)).text)


def test_demo_classification_uses_allowed_labels():
    labels = ["infrastructure_and_utility_damage", "affected_individuals", "not_humanitarian"]
    items = [{"id": i, "text": f"tweet {i}"} for i in range(20)]
    predictions = _demo_classify(labels, items)

    assert [p["id"] for p in predictions] == list(range(20))
    assert {p["pred"] for p in predictions} <= set(labels)


def test_demo_classification_is_deterministic():
    items = [{"id": i, "text": f"tweet {i}"} for i in range(10)]
    labels = ["humanitarian", "not_humanitarian"]
    assert _demo_classify(labels, items) == _demo_classify(labels, items)


def test_demo_feedback_mentions_attempt():
    messages = [LLMMessage(role="user", content="CURRENT ATTEMPT: 3 of 3\nUSER'S PROMPT: ...")]
    response = asyncio.run(DemoProvider().complete(messages))

    assert response.text.startswith("Demo feedback for attempt 3")
    assert response.usage.total_tokens == 0
    assert DemoProvider.is_demo


def test_no_key_means_demo_mode():
    config = Settings(_env_file=None, llm_provider="openai", openai_api_key=None)
    assert isinstance(build_llm_provider(config), DemoProvider)


def test_provider_selection():
    openai_provider = build_llm_provider(Settings(_env_file=None, llm_provider="openai", openai_api_key="sk"))
    claude = build_llm_provider(Settings(_env_file=None, llm_provider="anthropic", anthropic_api_key="sk"))
    custom = build_llm_provider(
        Settings(_env_file=None, llm_provider="openai", openai_api_key="sk", llm_model="gpt-4o")
    )

    assert isinstance(openai_provider, OpenAIProvider)
    assert openai_provider.get_model_name() == "gpt-4o-mini"
    assert isinstance(claude, ClaudeProvider)
    assert claude.get_model_name() == "claude-haiku-4-5-20251001"
    assert custom.get_model_name() == "gpt-4o"
