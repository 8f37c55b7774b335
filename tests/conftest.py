"""
Shared fixtures: a scripted LLM provider and small in-memory pipelines.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import pytest

from promptlab.core.errors import ServiceError
from promptlab.models.dataset import Sample
from promptlab.models.llm import LLMMessage, LLMResponse, TokenUsage
from promptlab.services.attempt_coordinator import AttemptCoordinator
from promptlab.services.attempt_store import InMemoryAttemptStore
from promptlab.services.chunked_classifier import ChunkedClassifier
from promptlab.services.dataset_store import InMemoryDatasetStore
from promptlab.services.feedback import FeedbackOrchestrator
from promptlab.services.llm_provider import LLMProvider
from promptlab.services.prompt_techniques import DATASET_HEADER

DATA_DIR = Path(__file__).parent.parent / "promptlab" / "data"


class ScriptedProvider(LLMProvider):
    """
    Answers classification requests from a truth table and everything else
    with a fixed coaching line. Knobs make it skip ids, garble output, or fail.
    """

    is_demo = False

    def __init__(
        self,
        truth: Dict[str, str],
        skip_ids: Optional[Set[str]] = None,
        classify_text: Optional[Callable[[list], str]] = None,
        fail_classify: bool = False,
        fail_feedback: bool = False,
        feedback_text: str = "Tighten the label definitions.",
    ):
        self.truth = truth
        self.skip_ids = skip_ids or set()
        self.classify_text = classify_text
        self.fail_classify = fail_classify
        self.fail_feedback = fail_feedback
        self.feedback_text = feedback_text
        self.calls: List[List[LLMMessage]] = []

    async def complete(self, messages, temperature=0.0, max_tokens=None):
        self.calls.append(list(messages))
        last_user = messages[-1].content

        if DATASET_HEADER in last_user:
            if self.fail_classify:
                raise ServiceError("Language model request failed: rate limited")
            items = json.loads(last_user.split(DATASET_HEADER, 1)[1])
            if self.classify_text:
                text = self.classify_text(items)
            else:
                text = json.dumps([
                    {"id": item["id"], "pred": self.truth[str(item["id"])]}
                    for item in items
                    if str(item["id"]) not in self.skip_ids
                ])
            usage = TokenUsage(prompt_tokens=100, completion_tokens=20, total_tokens=120)
        else:
            if self.fail_feedback:
                raise ServiceError("Language model request failed: timeout")
            text = self.feedback_text
            usage = TokenUsage(prompt_tokens=50, completion_tokens=10, total_tokens=60)

        return LLMResponse(
            text=text,
            model="scripted",
            provider="scripted",
            usage=usage,
            timestamp=datetime.utcnow(),
        )

    def get_provider_name(self) -> str:
        return "scripted"

    def get_model_name(self) -> str:
        return "scripted"

    @property
    def classify_calls(self) -> List[List[LLMMessage]]:
        return [c for c in self.calls if DATASET_HEADER in c[-1].content]

    @property
    def feedback_calls(self) -> List[List[LLMMessage]]:
        return [c for c in self.calls if DATASET_HEADER not in c[-1].content]


def make_samples(n: int = 8) -> List[Sample]:
    labels = ["humanitarian", "not_humanitarian"]
    return [
        Sample(id=1000 + i, text=f"tweet number {i} about the storm", label=labels[i % 2])
        for i in range(n)
    ]


def build_pipeline(provider, samples=None, user_id="alice"):
    """Coordinator over in-memory stores; the user's dataset is `samples` if given."""
    attempt_store = InMemoryAttemptStore()
    dataset_store = InMemoryDatasetStore(DATA_DIR)
    if samples is not None:
        dataset_store.save_dataset(user_id, samples)
    coordinator = AttemptCoordinator(
        ChunkedClassifier(provider, num_chunks=4),
        FeedbackOrchestrator(provider),
        attempt_store,
        dataset_store,
    )
    return coordinator, attempt_store, dataset_store


@pytest.fixture
def samples():
    return make_samples(8)


@pytest.fixture
def truth(samples):
    return {s.key: s.label for s in samples}


@pytest.fixture
def data_dir():
    return DATA_DIR
