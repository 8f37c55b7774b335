"""
Turn free-form model text into typed predictions.

Models are told to answer with a bare JSON array, but in practice they wrap
it in ```json fences or add a friendly sentence after it. The repair is
deliberately simple and heuristic:

    1. fenced block present?  keep only the fenced content
    2. trim
    3. drop everything after the last "]"

then json.loads. Anything that still isn't a non-empty array is a ParseError
whose message tells the user what their prompt should have asked for.
"""

import json
import re
import logging
from typing import Callable, List, Optional

from promptlab.core.errors import ParseError
from promptlab.models.attempt import PredictionRecord
from promptlab.models.dataset import HUMANITARIAN, NOT_HUMANITARIAN

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FENCED_ANY = re.compile(r"```[a-zA-Z0-9_-]*\s*([\s\S]*?)\s*```")

_ID_KEYS = ("id", "tweet_id")
_LABEL_KEYS = ("pred", "predicted_label", "class_label", "label")

SNIPPET_LENGTH = 200


def extract_json_array(text: str) -> str:
    """Best-effort isolation of the JSON array inside model output."""
    content = text or ""

    match = _FENCED_JSON.search(content) or _FENCED_ANY.search(content)
    if match:
        content = match.group(1)

    content = content.strip()
    if "]" in content:
        content = content[: content.rindex("]") + 1]
    return content


def _parse_error(text: str, reason: str) -> ParseError:
    snippet = (text or "").strip()[:SNIPPET_LENGTH]
    message = (
        f"The model's response could not be read as classification results ({reason}). "
        "Make sure your prompt:\n"
        "1. Asks the model to classify each tweet with one of the two labels "
        f'("{HUMANITARIAN}" or "{NOT_HUMANITARIAN}")\n'
        "2. Requests JSON-only output, without explanations\n"
        "3. Is clear and unambiguous about what each label means\n"
        f"Model response started with: {snippet!r}"
    )
    return ParseError(message, raw_text=text)


def normalize_binary_label(value: str) -> str:
    """
    Map label variants onto the canonical binary labels.

    "Humanitarian" -> humanitarian, "Not Humanitarian" / "non-humanitarian"
    -> not_humanitarian. Anything else is returned exactly as given and will
    count as a miss downstream.
    """
    label = value.lower().strip()
    if "not" in label or "non" in label:
        return NOT_HUMANITARIAN
    if HUMANITARIAN in label:
        return HUMANITARIAN
    return value


def parse_predictions(
    text: str,
    label_normalizer: Optional[Callable[[str], str]] = None,
) -> List[PredictionRecord]:
    """
    Parse model output into PredictionRecords.

    Args:
        text: Raw model output
        label_normalizer: Applied to every predicted label (binary task only)

    Raises:
        ParseError: No non-empty JSON array could be recovered
    """
    content = extract_json_array(text)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise _parse_error(text, f"invalid JSON: {e.msg}") from e

    if not isinstance(data, list) or not data:
        raise _parse_error(text, "expected a non-empty JSON array")

    records = []
    for item in data:
        if not isinstance(item, dict):
            logger.debug(f"Skipping non-object prediction entry: {item!r}")
            continue

        item_id = next((item[k] for k in _ID_KEYS if item.get(k) is not None), None)
        label = next((item[k] for k in _LABEL_KEYS if item.get(k) is not None), None)
        if item_id is None or label is None:
            logger.debug(f"Skipping prediction without id/label: {item!r}")
            continue

        label = str(label).strip()
        if label_normalizer:
            label = label_normalizer(label)

        records.append(PredictionRecord(id=item_id, pred=label))

    if not records:
        raise _parse_error(text, "no entries with an id and a predicted label")

    return records
