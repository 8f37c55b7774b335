"""
Tests for reading predictions out of model output.
"""

import pytest

from promptlab.core.errors import ParseError
from promptlab.services.response_parser import (
    extract_json_array,
    normalize_binary_label,
    parse_predictions,
)


def test_bare_array():
    records = parse_predictions('[{"id": 1, "pred": "humanitarian"}, {"id": 2, "pred": "not_humanitarian"}]')

    assert [(r.id, r.pred) for r in records] == [(1, "humanitarian"), (2, "not_humanitarian")]


def test_json_fence_is_unwrapped():
    text = 'Sure!\n```json\n[{"id": "7", "pred": "humanitarian"}]\n```\nLet me know.'
    records = parse_predictions(text)

    assert records[0].id == "7"
    assert records[0].pred == "humanitarian"


def test_plain_fence_is_unwrapped():
    text = '```\n[{"id": 3, "pred": "x"}]\n```'
    assert parse_predictions(text)[0].pred == "x"


def test_trailing_prose_is_dropped():
    text = '[{"id": 3, "pred": "x"}]\n\nHope this helps!'
    assert extract_json_array(text) == '[{"id": 3, "pred": "x"}]'
    assert len(parse_predictions(text)) == 1


def test_alternative_keys_are_accepted():
    text = '[{"tweet_id": 5, "predicted_label": "a"}, {"id": 6, "class_label": "b"}, {"id": 7, "label": "c"}]'
    records = parse_predictions(text)

    assert [(r.id, r.pred) for r in records] == [(5, "a"), (6, "b"), (7, "c")]


def test_entries_without_id_or_label_are_skipped():
    text = '[{"id": 1}, {"pred": "a"}, "junk", 4, {"id": 2, "pred": "b"}]'
    records = parse_predictions(text)

    assert [(r.id, r.pred) for r in records] == [(2, "b")]


def test_normalizer_is_applied():
    text = '[{"id": 1, "pred": "Humanitarian"}, {"id": 2, "pred": "Not Humanitarian"}]'
    records = parse_predictions(text, label_normalizer=normalize_binary_label)

    assert [r.pred for r in records] == ["humanitarian", "not_humanitarian"]


def test_invalid_json_raises_with_guidance():
    with pytest.raises(ParseError) as exc_info:
        parse_predictions("I think most of these tweets are humanitarian.")

    error = exc_info.value
    assert "JSON" in error.message
    assert "I think most" in error.message
    assert error.raw_text == "I think most of these tweets are humanitarian."


def test_snippet_is_truncated():
    text = "x" * 1000
    with pytest.raises(ParseError) as exc_info:
        parse_predictions(text)
    assert "x" * 201 not in exc_info.value.message


@pytest.mark.parametrize("text", [
    "[]",
    '{"id": 1, "pred": "a"}',
    '[{"id": 1}, {"name": "a"}]',
    "",
])
def test_unusable_output_raises(text):
    with pytest.raises(ParseError):
        parse_predictions(text)


@pytest.mark.parametrize("raw, expected", [
    ("humanitarian", "humanitarian"),
    ("Humanitarian", "humanitarian"),
    (" HUMANITARIAN ", "humanitarian"),
    ("not_humanitarian", "not_humanitarian"),
    ("Not Humanitarian", "not_humanitarian"),
    ("non-humanitarian", "not_humanitarian"),
    ("irrelevant", "irrelevant"),
    (" Maybe ", " Maybe "),
    ("Unclear", "Unclear"),
])
def test_normalize_binary_label(raw, expected):
    assert normalize_binary_label(raw) == expected
