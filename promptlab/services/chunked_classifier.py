"""
Chunked parallel classification of a dataset under a user's prompt.

=== FAN-OUT / FAN-IN ===

    dataset (n labeled samples)
        │  strip labels → [{id, text}, ...]
        ▼
    chunk_dataset(): 4 contiguous chunks of ceil(n/4)
        │
        ├── chunk 1 ──► provider.complete() ──► parse ─┐
        ├── chunk 2 ──► provider.complete() ──► parse ─┤  concurrently
        ├── chunk 3 ──► provider.complete() ──► parse ─┤
        └── chunk 4 ──► provider.complete() ──► parse ─┘
                                                       │
        concatenate predictions (chunk order), sum token usage
                                                       ▼
        merge onto the original samples by str(id) → MergedRecord[]
                                                       ▼
        classification_report(true, predicted)

If any chunk call raises (ServiceError) or returns garbage (ParseError) the
other chunk tasks are cancelled and the error propagates. A classification
is all-or-nothing: partial results would produce misleading metrics.

Labels never leave this module: only id and text are serialized into the
request.
"""

import json
import math
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from promptlab.core.errors import ParseError, ValidationError
from promptlab.models.attempt import (
    ChatMessage,
    ClassificationResult,
    MergedRecord,
    PredictionRecord,
    ProgressEvent,
)
from promptlab.models.dataset import BINARY_LABELS, Sample, TaskType
from promptlab.models.llm import LLMMessage, TokenUsage
from promptlab.services.llm_provider import LLMProvider
from promptlab.services.llm_usage_logger import LLMUsageLogger
from promptlab.services.metrics import classification_report
from promptlab.services.prompt_techniques import DATASET_HEADER, classification_system_prompt
from promptlab.services.response_parser import normalize_binary_label, parse_predictions

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[ProgressEvent], None]


def emit_progress(on_progress: Optional[ProgressCallback], status: str, message: str, **fields):
    """Send a progress event to the observer, if there is one."""
    if on_progress is None:
        return
    try:
        on_progress(ProgressEvent(status=status, message=message, **fields))
    except Exception as e:
        # A broken observer (e.g. a closed stream) must not break the attempt
        logger.warning(f"Progress observer failed on '{status}': {e}")


def chunk_dataset(items: Sequence[T], num_chunks: int = 4) -> List[List[T]]:
    """
    Split items into exactly `num_chunks` contiguous chunks.

    Every chunk has at most ceil(n / num_chunks) items; trailing chunks may
    be shorter or empty (e.g. 5 items → [2, 2, 1, 0]).
    """
    if num_chunks < 1:
        raise ValidationError(f"num_chunks must be at least 1, got {num_chunks}")
    size = max(1, math.ceil(len(items) / num_chunks))
    return [list(items[i * size:(i + 1) * size]) for i in range(num_chunks)]


def label_vocabulary(task_type: str, dataset: Sequence[Sample]) -> List[str]:
    """
    Labels the model may answer with.

    The built-in binary task uses the canonical pair; any other dataset uses
    its own labels in first-appearance order.
    """
    seen: Dict[str, None] = {}
    for sample in dataset:
        seen.setdefault(sample.label, None)
    labels = list(seen)

    if task_type == TaskType.BINARY.value and set(labels) <= set(BINARY_LABELS):
        return list(BINARY_LABELS)
    return labels or list(BINARY_LABELS)


def uses_binary_normalization(task_type: str, dataset: Sequence[Sample]) -> bool:
    # The "not"/"non" heuristic only makes sense for the humanitarian label pair
    return task_type == TaskType.BINARY.value and all(s.label in BINARY_LABELS for s in dataset)


def merge_predictions(
    dataset: Sequence[Sample], predictions: Sequence[PredictionRecord]
) -> List[MergedRecord]:
    """
    Attach predictions to samples by id (type tolerant: 905 == "905").

    The first prediction for an id wins, so every sample gets at most one.
    """
    by_id: Dict[str, str] = {}
    for p in predictions:
        by_id.setdefault(str(p.id), p.pred)

    return [
        MergedRecord(
            id=s.id,
            text=s.text,
            label=s.label,
            predicted_label=by_id.get(s.key),
        )
        for s in dataset
    ]


class ChunkedClassifier:

    def __init__(
        self,
        provider: LLMProvider,
        num_chunks: int = 4,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        usage_logger: Optional[LLMUsageLogger] = None,
    ):
        self.provider = provider
        self.num_chunks = num_chunks
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.usage_logger = usage_logger

    async def classify(
        self,
        prompt: str,
        chat_history: Sequence[ChatMessage],
        task_type: str,
        dataset: Sequence[Sample],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ClassificationResult:
        """
        Classify every sample under `prompt` and score the result.

        Args:
            prompt: Classification instruction (already normalized)
            chat_history: Prior conversation, sent with every chunk
            task_type: "binary" | "multiclass" | ...
            dataset: Labeled samples
            on_progress: Optional observer for progress events

        Raises:
            ParseError: A chunk's response had no usable JSON array
            ServiceError: A chunk's model call failed
        """
        labels = label_vocabulary(task_type, dataset)
        normalizer = normalize_binary_label if uses_binary_normalization(task_type, dataset) else None

        unlabeled = [{"id": s.id, "text": s.text} for s in dataset]

        logger.info(f"Processing {len(unlabeled)} items with parallel chunking...")
        emit_progress(on_progress, "chunking", f"Splitting {len(unlabeled)} items into chunks...")

        chunks = chunk_dataset(unlabeled, self.num_chunks)
        logger.info(f"Split into {len(chunks)} chunks: {[len(c) for c in chunks]}")

        system_message = LLMMessage(role="system", content=classification_system_prompt(labels))
        history = [LLMMessage(role=m.role, content=m.content) for m in chat_history]

        work = [(i, c) for i, c in enumerate(chunks) if c]
        total = len(work)
        completed = 0

        emit_progress(
            on_progress, "processing",
            f"Processing {total} chunks in parallel...",
            current=0, total=total,
        )

        async def run_chunk(index: int, chunk: list):
            nonlocal completed
            result = await self._classify_chunk(
                index, chunk, prompt, system_message, history, normalizer
            )
            completed += 1
            emit_progress(
                on_progress, "processing",
                f"Chunk {index + 1}/{len(chunks)} completed",
                current=completed, total=total,
            )
            return result

        tasks = [asyncio.create_task(run_chunk(i, c)) for i, c in work]
        try:
            chunk_results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        emit_progress(on_progress, "merging", "Merging results from all chunks...")

        all_predictions: List[PredictionRecord] = []
        usage = TokenUsage()
        for predictions, chunk_usage in chunk_results:
            all_predictions.extend(predictions)
            usage = usage + chunk_usage

        logger.info(f"Merged {len(all_predictions)} predictions from {total} chunks")

        merged = merge_predictions(dataset, all_predictions)
        unmatched = sum(1 for m in merged if m.predicted_label is None)
        if unmatched:
            logger.warning(
                f"{unmatched}/{len(merged)} items got no prediction; "
                f"sample ids: {[m.id for m in merged if m.predicted_label is None][:3]}, "
                f"sample predicted ids: {[p.id for p in all_predictions[:3]]}"
            )

        emit_progress(on_progress, "calculating", "Calculating metrics...")
        report = classification_report(
            [m.label for m in merged],
            [m.predicted_label for m in merged],
        )

        emit_progress(on_progress, "complete", "Classification complete!")

        return ClassificationResult(
            merged=merged,
            report=report,
            usage=usage,
            unmatched_count=unmatched,
        )

    async def _classify_chunk(
        self,
        index: int,
        chunk: list,
        prompt: str,
        system_message: LLMMessage,
        history: List[LLMMessage],
        normalizer: Optional[Callable[[str], str]],
    ):
        messages = [
            system_message,
            *history,
            LLMMessage(
                role="user",
                content=f"{prompt}\n\n{DATASET_HEADER}\n{json.dumps(chunk, indent=2)}",
            ),
        ]

        response = await self.provider.complete(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        try:
            predictions = parse_predictions(response.text, label_normalizer=normalizer)
        except ParseError as e:
            logger.error(f"Chunk {index + 1} returned unparseable output: {(e.raw_text or '')[:200]!r}")
            self._log_usage(response, success=False, error="parse_error")
            raise

        self._log_usage(response)
        return predictions, response.usage

    def _log_usage(self, response, success: bool = True, error: Optional[str] = None):
        if self.usage_logger:
            self.usage_logger.log_call(response, operation="classify", success=success, error=error)
