"""
Prompt normalization and prompting-technique templates.

Two ways to turn what the user typed into a classification instruction:

1. normalize(): the user's text verbatim + a strict output-format directive.
   No semantic help at all: the user's prompt stands or falls on its own.

2. apply_technique(): wrap the prompt in one of four instructional scaffolds

    zero-shot         role + prompt + output format
    few-shot          role + 4 worked examples + prompt + output format
    chain-of-thought  role + prompt + 4-point silent reasoning checklist
    structured        3-step evaluate-then-classify protocol

Everything here is a pure function of its arguments.
"""

from typing import Dict, List, Optional

from promptlab.models.dataset import BINARY_LABELS

# Markers shared with the chunked classifier (and the demo provider, which
# reads them back out of the request).
DATASET_HEADER = "Dataset to classify:"
LABELS_HEADER = "Allowed labels:"

DEFAULT_TECHNIQUE = "zero-shot"

ROLE_STATEMENT = "You are an expert disaster response classifier."

FEW_SHOT_EXAMPLES = [
    {
        "id": 905739273827004417,
        "text": "Miami-Dade orders coastal evacuation as Hurricane Irma threatens CLICK BELOW FOR FULL STORY",
        "label": "humanitarian",
        "reasoning": "Direct evacuation order - critical safety information",
    },
    {
        "id": 908752246543994881,
        "text": "@joenapoli7 @JohnKasich Look @ Moonbeams law on sex trafficked children! Opens flood gates wide open! #WeRAwake #WeRWatchingU #SaveOurChildren",
        "label": "not_humanitarian",
        "reasoning": "Political commentary unrelated to disaster relief",
    },
    {
        "id": 906519111278235649,
        "text": "Calling all nurses! Florida is in desperate need in assistance. #Irma",
        "label": "humanitarian",
        "reasoning": "Direct call for medical assistance - actionable aid request",
    },
    {
        "id": 908281118192832512,
        "text": "You are not alone there are plenty of rolling stones. There was a wave in 2014 expect Tsunami in 2019.",
        "label": "not_humanitarian",
        "reasoning": "General statement without specific disaster relief information",
    },
]

TECHNIQUES = [
    {
        "id": "zero-shot",
        "name": "Zero-Shot",
        "description": "Direct classification with clear role and output format",
        "best_for": "Simple, clear prompts with well-defined categories",
    },
    {
        "id": "few-shot",
        "name": "Few-Shot Learning",
        "description": "Includes labeled examples to guide the model",
        "best_for": "When you want to show the model what good classifications look like",
    },
    {
        "id": "chain-of-thought",
        "name": "Chain-of-Thought",
        "description": "Asks model to reason step-by-step before classifying",
        "best_for": "Complex classification requiring nuanced judgment",
    },
    {
        "id": "structured",
        "name": "Structured Reasoning",
        "description": "Breaks down classification into systematic evaluation steps",
        "best_for": "Ensuring consistent, methodical classification approach",
    },
]


def _label_choice(labels: List[str]) -> str:
    quoted = [f'"{label}"' for label in labels]
    if len(quoted) == 2:
        return f"{quoted[0]} or {quoted[1]}"
    return "one of " + ", ".join(quoted)


def output_format(labels: Optional[List[str]] = None) -> str:
    labels = labels or BINARY_LABELS
    return (
        "Output format: Return ONLY a JSON array with this structure, "
        "no explanations or other text:\n"
        f'[{{"id": <id>, "pred": {_label_choice(labels)}}}]'
    )


def normalize(raw_prompt: str, labels: Optional[List[str]] = None) -> str:
    """User's prompt, untouched, followed by the output-format directive."""
    return f"{raw_prompt.strip()}\n\n{output_format(labels)}"


def _zero_shot(prompt: str, labels: List[str]) -> str:
    return f"""{ROLE_STATEMENT}

{prompt}

{output_format(labels)}"""


def _few_shot(prompt: str, labels: List[str]) -> str:
    examples = "\n\n".join(
        f'Tweet: "{ex["text"]}"\nLabel: {ex["label"]}\nReasoning: {ex["reasoning"]}'
        for ex in FEW_SHOT_EXAMPLES
    )
    return f"""{ROLE_STATEMENT}

Here are some examples of correctly classified tweets:

{examples}

Now apply the same classification logic:
{prompt}

{output_format(labels)}"""


def _chain_of_thought(prompt: str, labels: List[str]) -> str:
    return f"""{ROLE_STATEMENT}

{prompt}

For each tweet, think through:
1. Does it provide actionable disaster relief information?
2. Does it request or offer help/aid/resources?
3. Does it contain safety warnings or damage reports?
4. Or is it just commentary, opinion, or unrelated content?

Based on your reasoning, classify each tweet. Do not include your reasoning in the output.
{output_format(labels)}"""


def _structured(prompt: str, labels: List[str]) -> str:
    return f"""{ROLE_STATEMENT} Follow this systematic approach:

STEP 1: Read the user's classification criteria
{prompt}

STEP 2: For each tweet, evaluate:
- Primary intent: Information sharing, help request, aid offer, or commentary?
- Action orientation: Does it enable disaster response actions?
- Humanitarian value: Useful for relief efforts?

STEP 3: Apply the classification, choosing {_label_choice(labels)}

Do not include your reasoning in the output.
{output_format(labels)}"""


_TECHNIQUE_BUILDERS = {
    "zero-shot": _zero_shot,
    "few-shot": _few_shot,
    "chain-of-thought": _chain_of_thought,
    "structured": _structured,
}


def apply_technique(
    raw_prompt: str,
    technique: Optional[str] = DEFAULT_TECHNIQUE,
    labels: Optional[List[str]] = None,
) -> str:
    """Wrap the prompt with the named technique; unknown names get zero-shot."""
    builder = _TECHNIQUE_BUILDERS.get(technique or DEFAULT_TECHNIQUE, _zero_shot)
    return builder(raw_prompt.strip(), labels or BINARY_LABELS)


def resolve_technique(technique: Optional[str]) -> str:
    return technique if technique in _TECHNIQUE_BUILDERS else DEFAULT_TECHNIQUE


def get_available_techniques() -> List[Dict[str, str]]:
    return [dict(t) for t in TECHNIQUES]


def classification_system_prompt(labels: Optional[List[str]] = None) -> str:
    """System message sent with every classification chunk."""
    labels = labels or BINARY_LABELS
    return f"""You are a tweet classification system. You MUST respond with ONLY a valid JSON array in this EXACT format:
[{{"id": 905739273827004417, "pred": "{labels[0]}"}}, {{"id": 908840266995466240, "pred": "{labels[-1]}"}}]

{LABELS_HEADER} {", ".join(labels)}

CRITICAL RULES:
- Response must be ONLY the JSON array, no other text before or after
- Use EXACTLY one of the allowed labels for pred values
- Include ALL ids from the dataset
- No explanations, no reasoning, no markdown code blocks, no additional text
- The response should start with [ and end with ]
- If the user's prompt is unclear, still return the JSON format with your best classification attempt

IMPORTANT: Follow the user's classification instructions carefully. Apply their prompt logic to decide the label of each tweet."""
