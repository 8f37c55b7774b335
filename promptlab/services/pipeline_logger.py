"""
Pipeline stage logger: timing for each stage of an attempt.

=== PURPOSE ===

LLMUsageLogger tracks per-LLM-call metrics (tokens, cost).
This logger tracks per-STAGE metrics of one attempt submission:

    normalize → load-history → classify → score → feedback → persist

Together they answer "why did attempt 2 take 14 seconds?": the classify
stage took 12.8s across four chunk calls.

=== HOW IT WORKS ===

A context manager wraps each stage:

    with stages.log_stage("classify", {"items": len(dataset)}):
        result = await classifier.classify(...)
        stages.update_stage({"unmatched": result.unmatched_count})

The stage's wall-clock time is kept in `timings` (copied into the stored
attempt's metadata while "persist" is still open, so the stored copy never
holds the persist time) and, when a log directory is configured, appended as a
JSONL record to logs/pipeline_metrics.jsonl. A stage that raises is still
recorded, with "failed": true.

One logger per submission: `timings` and the current stage are per-run state.
"""

import json
import time
import logging
from pathlib import Path
from datetime import datetime
from contextlib import contextmanager
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class PipelineStageLogger:

    def __init__(self, log_dir: Optional[Path] = None, run_metadata: Optional[dict] = None):
        self.log_dir = log_dir
        self.log_file = self.log_dir / "pipeline_metrics.jsonl" if self.log_dir else None
        self.run_metadata = run_metadata or {}
        self.timings: Dict[str, float] = {}
        self._current_stage: Optional[dict] = None

    @contextmanager
    def log_stage(self, stage_name: str, metadata: dict = None):
        """
        Context manager that times a pipeline stage and logs it.

        Args:
            stage_name: Identifier for the stage (classify, feedback, persist, ...)
            metadata: Optional dict of extra fields to include in the log record
        """
        self._current_stage = {
            "timestamp": datetime.utcnow().isoformat(),
            "stage": stage_name,
            **self.run_metadata,
            **(metadata or {}),
        }

        start = time.monotonic()
        failed = False
        try:
            yield
        except BaseException:
            failed = True
            raise
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000
            self.timings[stage_name] = round(elapsed_ms, 2)
            self._current_stage["latency_ms"] = round(elapsed_ms, 2)
            self._current_stage["failed"] = failed

            self._write(self._current_stage)

            if failed:
                logger.warning(f"Pipeline stage '{stage_name}' failed after {elapsed_ms:.0f}ms")
            else:
                logger.info(f"Pipeline stage '{stage_name}' completed in {elapsed_ms:.0f}ms")
            self._current_stage = None

    def update_stage(self, metadata: dict):
        """
        Add extra fields to the current stage's log record.

        Call this inside the log_stage context manager to add data
        that's only available after the stage runs (e.g., token counts).
        """
        if self._current_stage:
            self._current_stage.update(metadata)

    def _write(self, record: dict):
        if self.log_file is None:
            return
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Could not write pipeline metrics: {e}")
