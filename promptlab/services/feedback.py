"""
Coaching feedback for a prompt attempt.

=== THREE FEEDBACK LEVELS ===

    feedback_level   what happens
    ──────────────   ─────────────────────────────────────────────
    "llm"            the coach model critiques the prompt (default)
    "fixed"          a canned checklist, no model call, no cost
    anything else    empty feedback

=== WHAT THE COACH IS ASKED FOR ===

Attempts 1 and 2: a structured critique (technique used, what worked, what
needs improvement, why the score is what it is) plus an improved prompt
written as instructions to a human, with no JSON, no output-format talk.

Attempt 3: a cumulative learning summary instead of a rewrite.

When earlier attempts exist, their one-line performance summaries are
included and the coach must explain the improvement or regression.

Prompts are jinja2 templates so the conditional sections (previous
attempts, final attempt, binary principles) stay readable.
"""

import logging
from typing import List, Optional, Sequence

from jinja2 import Template

from promptlab.models.attempt import ChatMessage, FeedbackResult, PreviousAttempt
from promptlab.models.dataset import BINARY_LABELS, TaskType
from promptlab.models.llm import LLMMessage, TokenUsage
from promptlab.services.llm_provider import LLMProvider
from promptlab.services.llm_usage_logger import LLMUsageLogger
from promptlab.services.prompt_techniques import resolve_technique

logger = logging.getLogger(__name__)

FINAL_ATTEMPT = 3

TECHNIQUE_CONTEXT = {
    "zero-shot": "The user is using **Zero-Shot prompting**, which relies on clear instructions without examples. This works well for simple tasks but may need more guidance for nuanced classification.",
    "few-shot": "The user is using **Few-Shot Learning**, which provides labeled examples to guide the model. This is excellent for showing the model what good classifications look like.",
    "chain-of-thought": "The user is using **Chain-of-Thought prompting**, which asks the model to reason step-by-step. This helps with complex decisions but remember the output should still be just the labels.",
    "structured": "The user is using **Structured Reasoning**, which breaks classification into systematic steps. This ensures consistent evaluation across all items.",
}

FIXED_FEEDBACK = """### Guidance and Feedback

Review your prompt against this checklist:

• **Define each label**: say in one sentence what makes a tweet "humanitarian" and what makes it "not_humanitarian".
• **Focus on intent**: judge what the tweet is for (warning, request, offer, damage report) rather than which words it contains.
• **Cover the edge cases**: mention opinions, jokes, and news commentary about the storm explicitly.
• **Keep it short**: a few clear criteria beat a long list of keyword rules.
• **Show an example or two**: one labeled example per class often helps more than extra rules.

Compare your metrics with your previous attempt and change one thing at a time."""

SYSTEM_TEMPLATE = Template("""You are an expert prompt engineering coach. Your role is to provide clear, actionable feedback that helps users improve their prompts.

CRITICAL RULES FOR YOUR FEEDBACK:
1. DO NOT include technical implementation details like JSON formatting, code blocks, or API syntax in the improved prompt
2. Focus on the CLASSIFICATION LOGIC and DECISION CRITERIA
3. Your improved prompt should read like natural instructions a human would give to another human
4. Be concise and specific - avoid generic advice
5. Acknowledge the prompting technique being used ({{ technique }})

TASK CONTEXT:
{{ task_context }}
- {{ technique_context }}

GOOD FEEDBACK CHARACTERISTICS:
- Identifies specific issues with clarity, specificity, or logic
- Explains WHY something doesn't work (e.g., "too vague" vs "vague prompts work poorly")
- Provides concrete examples of improvements
- Balances encouragement with constructive criticism
- Improved prompts should be CLEAN and USER-FOCUSED (no JSON, no technical formatting instructions)

{% if is_last_attempt -%}
FINAL ATTEMPT - Provide a learning summary with key takeaways about prompt engineering principles.
{%- elif is_binary -%}
BINARY CLASSIFICATION PRINCIPLES:
- Clear definitions work better than exhaustive rules
- Focus on INTENT and IMPACT, not keyword matching
- Simple > Complex for most classification tasks
- Examples anchor the model (especially with few-shot learning)
- "humanitarian" = actionable disaster relief information (warnings, requests, damage reports, aid offers)
- "not_humanitarian" = everything else (opinions, commentary, unrelated content)
{%- else -%}
MULTI-CLASS CLASSIFICATION PRINCIPLES:
- Every label needs its own short, distinguishable definition
- Say how to break ties between labels that overlap
- Focus on INTENT and IMPACT, not keyword matching
- One example per label is often enough to anchor the model
{%- endif %}""")

USER_TEMPLATE = Template("""
CURRENT ATTEMPT: {{ attempt }} of 3
TECHNIQUE USED: {{ technique }}
USER'S PROMPT: "{{ user_prompt }}"
RESULTS:
{{ report_text }}
{% if previous_context %}
PREVIOUS ATTEMPTS:
{% for ctx in previous_context -%}
Attempt {{ ctx.attempt }}: {{ ctx.performance }}
{% endfor %}
Compare current performance with previous attempts. If performance declined, explain why. If improved, acknowledge what worked.
{% endif %}
{% if is_last_attempt %}
Provide a comprehensive learning summary:
1. Key lessons learned about prompt engineering
2. What techniques improved performance
3. Common mistakes to avoid
4. How to apply these principles to other tasks

Format with **bold headers** and bullet points (•).
{% else %}
Provide your feedback in this structure:

### Guidance and Feedback

**Technique Used**: Acknowledge they're using {{ technique }}

**What Worked**: Specific positive elements (if any)

**What Needs Improvement**: Specific issues with their prompt (e.g., vague language, missing context, unclear criteria)

**Why Performance Is X%**: Brief explanation tied to specific prompt weaknesses/strengths

### Improved Prompt

Provide a CLEAN, NATURAL improved version that:
- Reads like instructions to a human helper
- Focuses purely on the classification task and criteria
- Does NOT include JSON formatting, code syntax, or technical details
- Incorporates the {{ technique }} technique effectively
- Is clear, specific, and actionable

REMEMBER: The improved prompt should be the classification instructions ONLY. No JSON, no code blocks, no "output format" - just the decision logic.
{% endif %}""")


def task_context(task_type: str, labels: Optional[List[str]] = None) -> str:
    labels = labels or BINARY_LABELS
    if task_type == TaskType.BINARY.value and set(labels) <= set(BINARY_LABELS):
        return (
            'The user is learning to prompt an AI to classify Hurricane Irma tweets as '
            '"humanitarian" or "not_humanitarian".'
        )
    quoted = ", ".join(f'"{label}"' for label in labels)
    return f"The user is learning to prompt an AI to classify tweets into these labels: {quoted}."


class FeedbackOrchestrator:

    def __init__(
        self,
        provider: LLMProvider,
        temperature: float = 0.7,
        max_tokens: int = 500,
        history_limit: int = 10,
        usage_logger: Optional[LLMUsageLogger] = None,
    ):
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.history_limit = history_limit
        self.usage_logger = usage_logger

    async def evaluate(
        self,
        user_prompt: str,
        report_text: str,
        chat_history: Sequence[ChatMessage],
        attempt_number: int,
        task_type: str,
        previous_context: Optional[List[PreviousAttempt]] = None,
        technique: Optional[str] = "zero-shot",
        feedback_level: str = "llm",
        labels: Optional[List[str]] = None,
    ) -> FeedbackResult:
        """
        Produce coaching feedback for one attempt.

        Args:
            user_prompt: The prompt exactly as the user wrote it
            report_text: Formatted classification report for this attempt
            chat_history: Earlier coaching conversation (capped before sending)
            attempt_number: 1-3
            task_type: "binary" | "multiclass" | ...
            previous_context: Performance summaries of earlier attempts
            technique: Prompting technique id the user picked
            feedback_level: "llm", "fixed", or anything else for none
            labels: Label vocabulary of the dataset

        Raises:
            ServiceError: The coach model call failed
        """
        if feedback_level == "fixed":
            return FeedbackResult(feedback=FIXED_FEEDBACK)
        if feedback_level != "llm":
            return FeedbackResult(feedback="")

        messages = self.build_messages(
            user_prompt, report_text, chat_history, attempt_number,
            task_type, previous_context, technique, labels,
        )

        response = await self.provider.complete(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if self.usage_logger:
            self.usage_logger.log_call(response, operation="feedback")

        feedback = response.text.strip()
        if not feedback:
            logger.warning(f"Coach model returned empty feedback for attempt {attempt_number}")
            feedback = FIXED_FEEDBACK

        return FeedbackResult(feedback=feedback, usage=response.usage or TokenUsage())

    def build_messages(
        self,
        user_prompt: str,
        report_text: str,
        chat_history: Sequence[ChatMessage],
        attempt_number: int,
        task_type: str,
        previous_context: Optional[List[PreviousAttempt]] = None,
        technique: Optional[str] = "zero-shot",
        labels: Optional[List[str]] = None,
    ) -> List[LLMMessage]:
        technique = resolve_technique(technique)
        is_last_attempt = attempt_number == FINAL_ATTEMPT

        system = SYSTEM_TEMPLATE.render(
            technique=technique,
            technique_context=TECHNIQUE_CONTEXT[technique],
            task_context=task_context(task_type, labels),
            is_last_attempt=is_last_attempt,
            is_binary=task_type == TaskType.BINARY.value,
        )
        user = USER_TEMPLATE.render(
            attempt=attempt_number,
            technique=technique,
            user_prompt=user_prompt,
            report_text=report_text,
            previous_context=previous_context or [],
            is_last_attempt=is_last_attempt,
        )

        history = list(chat_history)[-self.history_limit:] if self.history_limit else []

        return [
            LLMMessage(role="system", content=system),
            *[LLMMessage(role=m.role, content=m.content) for m in history],
            LLMMessage(role="user", content=user),
        ]
