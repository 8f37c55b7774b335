"""
Tests for the JSONL usage log and the per-stage pipeline log.
"""

import json
from datetime import datetime

import pytest

from promptlab.models.llm import LLMResponse, TokenUsage
from promptlab.services.llm_usage_logger import LLMUsageLogger
from promptlab.services.pipeline_logger import PipelineStageLogger


def _response():
    return LLMResponse(
        text="[]",
        model="gpt-4o-mini",
        provider="openai",
        usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        cost_usd=0.0001,
        latency_ms=120.0,
        timestamp=datetime.utcnow(),
    )


def test_usage_logger_appends_lines(tmp_path):
    usage = LLMUsageLogger(tmp_path / "logs")
    usage.log_call(_response(), operation="classify")
    usage.log_call(_response(), operation="classify", success=False, error="parse_error")

    lines = (tmp_path / "logs" / "llm_usage.jsonl").read_text().splitlines()
    records = [json.loads(line) for line in lines]
    assert len(records) == 2
    assert records[0]["operation"] == "classify"
    assert records[0]["input_tokens"] == 10
    assert records[1]["success"] is False
    assert records[1]["error"] == "parse_error"


def test_stage_timings_are_kept(tmp_path):
    stages = PipelineStageLogger(tmp_path, run_metadata={"user_id": "alice"})
    with stages.log_stage("classify", {"items": 8}):
        stages.update_stage({"unmatched": 0})
    with stages.log_stage("persist"):
        pass

    assert set(stages.timings) == {"classify", "persist"}
    records = [json.loads(line) for line in (tmp_path / "pipeline_metrics.jsonl").read_text().splitlines()]
    assert records[0]["stage"] == "classify"
    assert records[0]["items"] == 8
    assert records[0]["unmatched"] == 0
    assert records[0]["user_id"] == "alice"
    assert records[0]["failed"] is False


def test_failed_stage_is_recorded_and_reraised(tmp_path):
    stages = PipelineStageLogger(tmp_path)
    with pytest.raises(ValueError):
        with stages.log_stage("feedback"):
            raise ValueError("boom")

    record = json.loads((tmp_path / "pipeline_metrics.jsonl").read_text())
    assert record["failed"] is True
    assert "feedback" in stages.timings


def test_no_log_dir_writes_nothing(tmp_path):
    stages = PipelineStageLogger()
    with stages.log_stage("score"):
        pass

    assert "score" in stages.timings
    assert list(tmp_path.iterdir()) == []
