"""
Attempt coordinator: one prompt submission, end to end.

=== STAGES ===

    normalize ─► load-history ─► classify ─► score ─► feedback ─► persist ─► done
        │             │              │          │          │           │
        └─────────────┴──────────────┴──────────┴──────────┴───────────┴──► failed

normalize     validate input, fold the attempt number into 1..3
load-history  earlier attempts' chat history + performance, and the dataset
classify      chunked parallel classification (includes the raw metrics)
score         format the report text the coach and the UI read
feedback      coaching text (model, canned, or none)
persist       replace the stored record for (user_id, attempt)

=== ATTEMPT NUMBERS CYCLE ===

Raw attempt numbers beyond 3 wrap around: 4 → 1, 5 → 2, 6 → 3, 7 → 1. A
fourth submission silently overwrites attempt 1. Callers that want a hard cap
of three attempts must enforce it before calling process_attempt().

=== ALL OR NOTHING ===

Nothing is written until the feedback exists, and the single write happens
last. A failure in any stage leaves the store untouched and raises exactly one
PromptLabError to the caller (and one "error" progress event).
"""

import logging
from pathlib import Path
from typing import List, Optional

from promptlab.core.errors import PromptLabError, ServiceError, ValidationError
from promptlab.models.attempt import (
    AttemptMetadata,
    AttemptRecord,
    AttemptResult,
    ChatMessage,
    PreviousAttempt,
)
from promptlab.models.dataset import TaskType
from promptlab.services.attempt_store import AttemptStore
from promptlab.services.chunked_classifier import (
    ChunkedClassifier,
    ProgressCallback,
    emit_progress,
    label_vocabulary,
)
from promptlab.services.dataset_store import DatasetStore
from promptlab.services.feedback import FeedbackOrchestrator
from promptlab.services.metrics import format_report, performance_summary
from promptlab.services.pipeline_logger import PipelineStageLogger
from promptlab.services.prompt_techniques import apply_technique, normalize, resolve_technique

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def normalize_attempt_number(raw: int) -> int:
    """Fold any positive attempt number into the 1..3 cycle."""
    return ((raw - 1) % MAX_ATTEMPTS) + 1


def _validate(user_id, prompt, attempt_number, task_type):
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("User ID is required")
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("Prompt is required")
    if isinstance(attempt_number, bool) or not isinstance(attempt_number, int) or attempt_number < 1:
        raise ValidationError("Attempt number must be a positive integer")
    if task_type not in {t.value for t in TaskType}:
        raise ValidationError("Task type must be binary, multiclass, or multilabel")


class AttemptCoordinator:

    def __init__(
        self,
        classifier: ChunkedClassifier,
        feedback: FeedbackOrchestrator,
        attempt_store: AttemptStore,
        dataset_store: DatasetStore,
        history_limit: int = 10,
        log_dir: Optional[Path] = None,
    ):
        self.classifier = classifier
        self.feedback = feedback
        self.attempt_store = attempt_store
        self.dataset_store = dataset_store
        self.history_limit = history_limit
        self.log_dir = log_dir

    async def process_attempt(
        self,
        user_id: str,
        prompt: str,
        attempt_number: int,
        task_type: str = "binary",
        feedback_level: str = "llm",
        technique: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AttemptResult:
        """
        Classify the dataset under `prompt`, coach, and store the attempt.

        Args:
            user_id: Free-form user identifier
            prompt: The user's prompt, verbatim
            attempt_number: Raw attempt number (>= 1, folded into 1..3)
            task_type: "binary" | "multiclass" | "multilabel"
            feedback_level: "llm" | "fixed" | anything else for no feedback
            technique: Optional prompting technique; None sends the prompt
                with only the output-format directive added
            on_progress: Optional observer for progress events

        Raises:
            ValidationError, NotFoundError, ParseError, ServiceError
        """
        stages = PipelineStageLogger(self.log_dir)
        provider = self.classifier.provider

        try:
            emit_progress(on_progress, "started", "Processing your prompt...")

            with stages.log_stage("normalize"):
                _validate(user_id, prompt, attempt_number, task_type)
                attempt = normalize_attempt_number(attempt_number)
                stages.run_metadata = {"user_id": user_id, "attempt": attempt}
                if attempt != attempt_number:
                    logger.info(f"Attempt {attempt_number} for user {user_id} recycled into slot {attempt}")

            logger.info(
                f"Processing attempt {attempt} for user {user_id} "
                f"(task={task_type}, feedback={feedback_level}, technique={technique})"
            )

            with stages.log_stage("load-history"):
                emit_progress(on_progress, "loading", "Loading previous attempts...")
                previous = [
                    r for r in self.attempt_store.list_attempts(user_id) if r.attempt < attempt
                ]
                chat_history = self._capped_history(previous)
                previous_context = [
                    PreviousAttempt(attempt=r.attempt, performance=performance_summary(r.metrics))
                    for r in previous
                ]
                dataset = self.dataset_store.load_dataset(user_id, task_type)
                labels = label_vocabulary(task_type, dataset)
                stages.update_stage({"previous_attempts": len(previous), "items": len(dataset)})

            with stages.log_stage("classify", {"items": len(dataset)}):
                if technique:
                    classification_prompt = apply_technique(prompt, technique, labels)
                else:
                    classification_prompt = normalize(prompt, labels)

                classification = await self.classifier.classify(
                    classification_prompt,
                    chat_history,
                    task_type,
                    dataset,
                    on_progress=on_progress,
                )
                stages.update_stage({
                    "unmatched": classification.unmatched_count,
                    "total_tokens": classification.usage.total_tokens,
                })

            with stages.log_stage("score"):
                report_text = format_report(classification.report, classification.unmatched_count)

            with stages.log_stage("feedback", {"feedback_level": feedback_level}):
                emit_progress(on_progress, "feedback", "Generating feedback...")
                feedback = await self.feedback.evaluate(
                    prompt,
                    report_text,
                    chat_history,
                    attempt,
                    task_type,
                    previous_context=previous_context or None,
                    technique=technique or "zero-shot",
                    feedback_level=feedback_level,
                    labels=labels,
                )

            with stages.log_stage("persist"):
                emit_progress(on_progress, "saving", "Saving attempt...")
                turn = [ChatMessage(role="user", content=prompt)]
                if feedback.feedback:
                    turn.append(ChatMessage(role="assistant", content=feedback.feedback))

                record = AttemptRecord(
                    user_id=user_id,
                    attempt=attempt,
                    prompt=prompt,
                    llm_output=report_text,
                    feedback=feedback.feedback,
                    chat_history=turn,
                    predictions=classification.merged,
                    metrics=classification.report,
                    metadata=AttemptMetadata(
                        classification_usage=classification.usage,
                        feedback_usage=feedback.usage,
                        total_usage=classification.usage + feedback.usage,
                        timings_ms=dict(stages.timings),
                        unmatched_count=classification.unmatched_count,
                        provider=provider.get_provider_name(),
                        model=provider.get_model_name(),
                        demo_mode=provider.is_demo,
                        technique=resolve_technique(technique) if technique else None,
                    ),
                    task_type=task_type,
                    feedback_level=feedback_level,
                    completed=True,
                )
                stored = self.attempt_store.upsert_attempt(user_id, attempt, record)

            logger.info(
                f"Attempt {attempt} saved for user {user_id}: "
                f"accuracy={stored.metrics.overall.accuracy:.3f}, "
                f"macro_f1={stored.metrics.overall.macro_f1:.3f}"
            )
            emit_progress(on_progress, "done", "Attempt processed")

            return AttemptResult(
                record=stored,
                raw_attempt_number=attempt_number,
                demo_mode=provider.is_demo,
            )

        except PromptLabError as e:
            logger.error(f"Attempt for user {user_id} failed: {e.message}")
            emit_progress(on_progress, "error", e.message)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error processing attempt for user {user_id}")
            error = ServiceError(f"Failed to process prompt attempt: {e}")
            emit_progress(on_progress, "error", error.message)
            raise error from e

    def _capped_history(self, previous: List[AttemptRecord]) -> List[ChatMessage]:
        history = [m for r in previous for m in r.chat_history]
        if not self.history_limit:
            return []
        return history[-self.history_limit:]

    def get_user_attempts(self, user_id: str) -> List[AttemptRecord]:
        return self.attempt_store.list_attempts(user_id)

    def get_chat_history(self, user_id: str, attempt_number: int) -> List[ChatMessage]:
        if not 1 <= attempt_number <= MAX_ATTEMPTS:
            raise ValidationError("Attempt number must be between 1-3")
        record = self.attempt_store.get_attempt(user_id, attempt_number)
        return list(record.chat_history) if record else []
