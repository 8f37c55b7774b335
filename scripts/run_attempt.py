#!/usr/bin/env python3
"""
Run prompt attempts from the command line: no server, no database.

=== WHAT THIS DOES ===

Each --prompt is one attempt by the same user, in order (attempt 1, 2, 3...).
For every attempt it:

1. Classifies the dataset with your prompt (chunked, in parallel)
2. Scores the predictions against the ground-truth labels
3. Prints the metrics report and the coaching feedback

Attempts are kept in memory, so the coach sees the earlier attempts of the
same run exactly as it would through the API.

=== USAGE ===

# Demo mode (no API key set): canned predictions, free
python scripts/run_attempt.py --prompt "Classify each tweet as humanitarian or not"

# Three attempts on the multiclass sample with a technique
python scripts/run_attempt.py --task-type multiclass --technique few-shot \\
    --prompt "Label each tweet" --prompt "Label each tweet by its humanitarian category" \\
    --confirm-cost

# Your own CSV (id, text, label columns)
python scripts/run_attempt.py --csv my_tweets.csv --prompt "..." --confirm-cost

=== COST SAFETY ===

With a real API key configured every attempt makes NUM_CHUNKS classification
calls plus one feedback call. --confirm-cost is required in that case.
"""

import sys
import os
import asyncio
import argparse
import logging
from datetime import datetime
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from promptlab.core.config import settings
from promptlab.core.dependencies import build_coordinator, build_llm_provider
from promptlab.core.errors import PromptLabError
from promptlab.models.attempt import AttemptResult
from promptlab.models.dataset import TaskType
from promptlab.services.attempt_store import InMemoryAttemptStore
from promptlab.services.dataset_store import InMemoryDatasetStore, parse_dataset_csv
from promptlab.services.metrics import format_report

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
RESULTS_DIR = PROJECT_ROOT / "results"
CLI_USER = "cli"


def print_progress(event):
    if event.total:
        print(f"    [{event.status}] {event.message} ({event.current}/{event.total})")
    else:
        print(f"    [{event.status}] {event.message}")


def print_result(result: AttemptResult):
    record = result.record
    print(f"\n{'='*60}")
    print(f"  Attempt {record.attempt} (submitted as #{result.raw_attempt_number})")
    print(f"{'='*60}")
    print(format_report(record.metrics, record.metadata.unmatched_count if record.metadata else 0))
    if record.feedback:
        print(f"\n  Feedback:\n")
        print(record.feedback)
    if record.metadata:
        usage = record.metadata.total_usage
        print(f"\n  Tokens: {usage.total_tokens} ({usage.prompt_tokens} in / {usage.completion_tokens} out)")


def save_result(result: AttemptResult):
    RESULTS_DIR.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    filepath = RESULTS_DIR / f"attempt{result.record.attempt}_{timestamp}.json"
    with open(filepath, "w") as f:
        f.write(result.model_dump_json(indent=2))
    print(f"  Saved: {filepath}")


async def main():
    parser = argparse.ArgumentParser(
        description="Run classification prompt attempts and print metrics + feedback"
    )
    parser.add_argument(
        "--prompt",
        action="append",
        required=True,
        help="Prompt for one attempt; repeat for consecutive attempts",
    )
    parser.add_argument(
        "--task-type",
        choices=[t.value for t in TaskType],
        default=TaskType.BINARY.value,
    )
    parser.add_argument("--technique", default=None, help="Prompting technique, e.g. few-shot")
    parser.add_argument(
        "--feedback-level",
        choices=["llm", "fixed", "none"],
        default="llm",
    )
    parser.add_argument("--csv", type=Path, default=None, help="Custom dataset CSV")
    parser.add_argument("--save", action="store_true", help="Write each result to results/")
    parser.add_argument(
        "--confirm-cost",
        action="store_true",
        help="Required when a real LLM API key is configured",
    )
    args = parser.parse_args()

    provider = build_llm_provider(settings)
    if not provider.is_demo and not args.confirm_cost:
        print(f"\n  Provider: {provider.get_provider_name()} ({provider.get_model_name()})")
        print(f"  Each attempt makes {settings.num_chunks + 1} API calls.")
        print(f"  Add --confirm-cost to proceed.")
        sys.exit(1)

    dataset_store = InMemoryDatasetStore(settings.data_dir)
    if args.csv:
        try:
            samples = parse_dataset_csv(args.csv.read_bytes())
        except (OSError, PromptLabError) as e:
            print(f"Could not load {args.csv}: {e}")
            sys.exit(1)
        dataset_store.save_dataset(CLI_USER, samples, original_filename=args.csv.name)

    coordinator = build_coordinator(settings, provider, InMemoryAttemptStore(), dataset_store)

    print(f"\n  Provider: {provider.get_provider_name()}{' (demo mode)' if provider.is_demo else ''}")
    print(f"  Task: {args.task_type}  Technique: {args.technique or 'none'}  Feedback: {args.feedback_level}")

    for number, prompt in enumerate(args.prompt, 1):
        print(f"\n  Attempt {number}...")
        try:
            result = await coordinator.process_attempt(
                CLI_USER,
                prompt,
                number,
                task_type=args.task_type,
                feedback_level=args.feedback_level,
                technique=args.technique,
                on_progress=print_progress,
            )
        except PromptLabError as e:
            print(f"  Attempt {number} failed: {e.message}")
            sys.exit(1)

        print_result(result)
        if args.save:
            save_result(result)


if __name__ == "__main__":
    asyncio.run(main())
