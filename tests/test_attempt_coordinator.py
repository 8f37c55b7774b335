"""
End-to-end tests of one attempt: classify, score, coach, store.
"""

import asyncio
import json

import pytest
from hypothesis import given, settings, strategies as st

from conftest import ScriptedProvider, build_pipeline
from promptlab.core.errors import ParseError, ServiceError, ValidationError
from promptlab.services.attempt_coordinator import normalize_attempt_number
from promptlab.services.feedback import FIXED_FEEDBACK
from promptlab.services.llm_provider import DemoProvider

PROMPT = "Label a tweet humanitarian if it helps disaster responders."


def _submit(coordinator, attempt=1, prompt=PROMPT, **kwargs):
    return asyncio.run(coordinator.process_attempt("alice", prompt, attempt, **kwargs))


@pytest.mark.parametrize("raw, slot", [(1, 1), (2, 2), (3, 3), (4, 1), (5, 2), (6, 3), (7, 1)])
def test_attempt_numbers_cycle(raw, slot):
    assert normalize_attempt_number(raw) == slot


@given(st.integers(min_value=1, max_value=10_000))
@settings(max_examples=200, deadline=None)
def test_normalized_attempt_is_always_a_slot(raw):
    slot = normalize_attempt_number(raw)
    assert 1 <= slot <= 3
    assert (raw - slot) % 3 == 0


def test_all_correct_attempt(samples, truth):
    coordinator, attempts, _ = build_pipeline(ScriptedProvider(truth), samples)
    result = _submit(coordinator)

    record = result.record
    assert record.attempt == 1
    assert result.raw_attempt_number == 1
    assert record.metrics.overall.accuracy == 1.0
    assert record.metrics.overall.macro_f1 == 1.0
    assert record.feedback == "Tighten the label definitions."
    assert [m.role for m in record.chat_history] == ["user", "assistant"]
    assert record.chat_history[0].content == PROMPT
    assert "Accuracy: 1.0000" in record.llm_output
    assert record.metadata.total_usage.total_tokens == 4 * 120 + 60
    assert record.metadata.provider == "scripted"
    assert set(record.metadata.timings_ms) == {"normalize", "load-history", "classify", "score", "feedback"}
    assert attempts.get_attempt("alice", 1) == record


def test_persist_timing_goes_to_the_stage_log(samples, truth, tmp_path):
    coordinator, _, _ = build_pipeline(ScriptedProvider(truth), samples)
    coordinator.log_dir = tmp_path
    record = _submit(coordinator).record

    lines = (tmp_path / "pipeline_metrics.jsonl").read_text().splitlines()
    logged = [json.loads(line)["stage"] for line in lines]
    assert logged == ["normalize", "load-history", "classify", "score", "feedback", "persist"]
    assert "persist" not in record.metadata.timings_ms


def test_missing_predictions_are_reported(samples, truth):
    skipped = {samples[1].key, samples[2].key, samples[6].key}
    coordinator, _, _ = build_pipeline(ScriptedProvider(truth, skip_ids=skipped), samples)
    record = _submit(coordinator).record

    assert sum(1 for p in record.predictions if p.predicted_label is None) == 3
    assert record.metadata.unmatched_count == 3
    assert "Items without a prediction: 3" in record.llm_output


def test_fourth_attempt_overwrites_the_first(samples, truth):
    coordinator, attempts, _ = build_pipeline(ScriptedProvider(truth), samples)
    _submit(coordinator, attempt=1, prompt="First prompt for the tweets")
    result = _submit(coordinator, attempt=4, prompt="Fourth prompt for the tweets")

    assert result.record.attempt == 1
    assert result.raw_attempt_number == 4
    stored = attempts.list_attempts("alice")
    assert len(stored) == 1
    assert stored[0].prompt == "Fourth prompt for the tweets"


def test_resubmitting_an_attempt_replaces_it(samples, truth):
    coordinator, attempts, _ = build_pipeline(ScriptedProvider(truth), samples)
    _submit(coordinator, attempt=2, prompt="Old prompt for attempt two")
    _submit(coordinator, attempt=2, prompt="New prompt for attempt two")

    assert [r.prompt for r in attempts.list_attempts("alice")] == ["New prompt for attempt two"]


def test_earlier_attempts_feed_the_coach(samples, truth):
    provider = ScriptedProvider(truth)
    coordinator, _, _ = build_pipeline(provider, samples)
    _submit(coordinator, attempt=1, prompt="My very first prompt")
    provider.calls.clear()
    _submit(coordinator, attempt=2, prompt="My second prompt")

    feedback_call = provider.feedback_calls[0]
    contents = [m.content for m in feedback_call]
    assert "My very first prompt" in contents
    assert "Tighten the label definitions." in contents
    assert "Attempt 1: Accuracy 100.0%" in feedback_call[-1].content
    # Classification sees the same history
    assert all("My very first prompt" in [m.content for m in c] for c in provider.classify_calls)


def test_later_attempts_are_not_history(samples, truth):
    provider = ScriptedProvider(truth)
    coordinator, _, _ = build_pipeline(provider, samples)
    _submit(coordinator, attempt=3, prompt="Prompt from attempt three")
    provider.calls.clear()
    _submit(coordinator, attempt=1)

    assert "PREVIOUS ATTEMPTS" not in provider.feedback_calls[0][-1].content
    assert len(provider.feedback_calls[0]) == 2


def test_classification_failure_stores_nothing(samples, truth):
    events = []
    coordinator, attempts, _ = build_pipeline(ScriptedProvider(truth, fail_classify=True), samples)

    with pytest.raises(ServiceError):
        _submit(coordinator, on_progress=events.append)

    assert attempts.list_attempts("alice") == []
    assert [e.status for e in events].count("error") == 1


def test_feedback_failure_stores_nothing(samples, truth):
    coordinator, attempts, _ = build_pipeline(ScriptedProvider(truth, fail_feedback=True), samples)

    with pytest.raises(ServiceError):
        _submit(coordinator)
    assert attempts.list_attempts("alice") == []


def test_unparseable_output_stores_nothing(samples):
    provider = ScriptedProvider({}, classify_text=lambda items: "These all look humanitarian to me.")
    coordinator, attempts, _ = build_pipeline(provider, samples)

    with pytest.raises(ParseError):
        _submit(coordinator)
    assert attempts.list_attempts("alice") == []


def test_unexpected_errors_become_service_errors(samples):
    def explode(items):
        raise RuntimeError("socket closed")

    coordinator, attempts, _ = build_pipeline(ScriptedProvider({}, classify_text=explode), samples)

    with pytest.raises(ServiceError) as exc_info:
        _submit(coordinator)
    assert "Failed to process prompt attempt" in exc_info.value.message
    assert attempts.list_attempts("alice") == []


@pytest.mark.parametrize("kwargs", [
    {"prompt": "   "},
    {"attempt": 0},
    {"attempt": True},
    {"task_type": "regression"},
])
def test_invalid_input_is_rejected_before_any_call(samples, truth, kwargs):
    provider = ScriptedProvider(truth)
    coordinator, attempts, _ = build_pipeline(provider, samples)

    with pytest.raises(ValidationError):
        _submit(coordinator, **kwargs)
    assert provider.calls == []
    assert attempts.list_attempts("alice") == []


def test_feedback_levels(samples, truth):
    provider = ScriptedProvider(truth)
    coordinator, _, _ = build_pipeline(provider, samples)

    fixed = _submit(coordinator, attempt=1, feedback_level="fixed").record
    silent = _submit(coordinator, attempt=2, feedback_level="none").record

    assert fixed.feedback == FIXED_FEEDBACK
    assert silent.feedback == ""
    assert [m.role for m in silent.chat_history] == ["user"]
    assert provider.feedback_calls == []


def test_technique_is_applied_and_recorded(samples, truth):
    provider = ScriptedProvider(truth)
    coordinator, _, _ = build_pipeline(provider, samples)
    record = _submit(coordinator, technique="few-shot").record

    assert record.metadata.technique == "few-shot"
    assert "Here are some examples of correctly classified tweets" in provider.classify_calls[0][-1].content
    # The stored prompt is what the user wrote
    assert record.prompt == PROMPT


def test_progress_runs_from_started_to_done(samples, truth):
    events = []
    coordinator, _, _ = build_pipeline(ScriptedProvider(truth), samples)
    _submit(coordinator, on_progress=events.append)

    statuses = [e.status for e in events]
    assert statuses[0] == "started"
    assert statuses[-1] == "done"
    assert "processing" in statuses
    assert statuses.index("feedback") < statuses.index("saving")


def test_chat_history_lookup(samples, truth):
    coordinator, _, _ = build_pipeline(ScriptedProvider(truth), samples)
    _submit(coordinator, attempt=1)

    assert len(coordinator.get_chat_history("alice", 1)) == 2
    assert coordinator.get_chat_history("alice", 2) == []
    with pytest.raises(ValidationError):
        coordinator.get_chat_history("alice", 4)


def test_demo_mode_runs_end_to_end():
    coordinator, attempts, _ = build_pipeline(DemoProvider())
    result = _submit(coordinator, attempt=2)

    assert result.demo_mode
    assert result.record.metadata.demo_mode
    assert result.record.metadata.unmatched_count == 0
    assert result.record.feedback.startswith("Demo feedback for attempt 2")
    assert {p.predicted_label for p in result.record.predictions} <= {"humanitarian", "not_humanitarian"}
    assert len(attempts.list_attempts("alice")) == 1
