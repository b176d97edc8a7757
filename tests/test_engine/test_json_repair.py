"""Tests for extraction and repair of JSON in model responses."""

from __future__ import annotations

import json

import pytest

from splitledger.engine.json_repair import (
    extract_json_block,
    parse_model_json,
    repair_json,
    salvage_splits,
)
from splitledger.exceptions import MalformedModelOutput

# ── extract_json_block tests ──────────────────────────────────────────────────


class TestExtractJsonBlock:
    """Locating the JSON object inside model prose."""

    def test_prefers_fenced_block(self) -> None:
        text = 'Sure! {"ignored": 1}\n```json\n{"splits": []}\n```\nDone.'
        assert extract_json_block(text) == '{"splits": []}'

    def test_first_balanced_span(self) -> None:
        text = 'Here you go: {"a": {"b": 1}} and also {"c": 2}'
        assert extract_json_block(text) == '{"a": {"b": 1}}'

    def test_braces_inside_strings_do_not_count(self) -> None:
        text = 'x {"description": "a } b", "n": 1} y'
        assert extract_json_block(text) == '{"description": "a } b", "n": 1}'

    def test_truncated_object_cut_at_last_brace(self) -> None:
        text = '{"splits": [{"userId": "1"}, {"userId": "2"'
        assert extract_json_block(text) == '{"splits": [{"userId": "1"}'

    def test_no_object(self) -> None:
        assert extract_json_block("I cannot help with that.") is None


# ── repair_json tests ─────────────────────────────────────────────────────────


def test_repair_javascript_style_object() -> None:
    """Unquoted keys, single quotes and trailing commas are all fixed."""
    repaired = repair_json("{description: 'Lunch', splits: [{userId:'1',amount:10.00,},]}")
    assert repaired == '{"description": "Lunch", "splits": [{"userId":"1","amount":10.00}]}'
    assert json.loads(repaired) == {
        "description": "Lunch",
        "splits": [{"userId": "1", "amount": 10.0}],
    }


def test_repair_is_idempotent() -> None:
    text = "{description: 'Lunch', splits: [{userId:'1',amount:10.00,},]}"
    once = repair_json(text)
    assert repair_json(once) == once


def test_repair_smart_quotes() -> None:
    repaired = repair_json("{“description”: “Taxi”}")
    assert json.loads(repaired) == {"description": "Taxi"}


def test_repair_literal_tokens() -> None:
    repaired = repair_json('{"a": undefined, "b": NaN, "c": None, "d": True}')
    assert json.loads(repaired) == {"a": None, "b": 0, "c": None, "d": True}


def test_repair_decimal_spacing() -> None:
    repaired = repair_json('{"a": 25. 50, "b": .5, "c": 12.}')
    assert json.loads(repaired) == {"a": 25.5, "b": 0.5, "c": 12.0}


def test_repair_adjacent_objects() -> None:
    repaired = repair_json('[{"a": 1} {"a": 2}]')
    assert json.loads(repaired) == [{"a": 1}, {"a": 2}]


def test_repair_leaves_string_contents_alone() -> None:
    text = '{"description": "Pizza, drinks: it\'s Bob\'s treat,}", "n": 1}'
    assert json.loads(repair_json(text)) == json.loads(text)


def test_repair_single_quoted_value_containing_double_quotes() -> None:
    """A JS-style string keeps its embedded double quotes as escaped characters."""
    text = "{description: 'Dinner at \"Joe\"', splits: [{userId:'u1',amount:10}]}"
    repaired = repair_json(text)

    assert repaired == '{"description": "Dinner at \\"Joe\\"", "splits": [{"userId":"u1","amount":10}]}'
    assert json.loads(repaired) == {
        "description": 'Dinner at "Joe"',
        "splits": [{"userId": "u1", "amount": 10}],
    }
    assert repair_json(repaired) == repaired


def test_repair_escaped_apostrophe_in_single_quotes() -> None:
    repaired = repair_json("{note: 'Bob\\'s treat'}")
    assert json.loads(repaired) == {"note": "Bob's treat"}


# ── salvage_splits tests ──────────────────────────────────────────────────────


def test_salvage_discards_broken_objects() -> None:
    text = '{"splits": [{"userId": "1", "amount": 5}, {"userId": "2", amount: }, {"userId": "3"}]'
    assert salvage_splits(text) == [
        {"userId": "1", "amount": 5},
        {"userId": "3"},
    ]


def test_salvage_without_splits_array() -> None:
    assert salvage_splits('{"description": "x"}') == []


# ── parse_model_json tests ────────────────────────────────────────────────────


class TestParseModelJson:
    """The full extract → repair → parse → salvage pipeline."""

    def test_clean_json(self) -> None:
        data, salvaged = parse_model_json('{"description": "Lunch", "splits": []}')
        assert data == {"description": "Lunch", "splits": []}
        assert salvaged is False

    def test_repaired_json(self) -> None:
        data, salvaged = parse_model_json(
            "```json\n{description: 'Lunch', splits: [{userId:'1',amount:10.00,},]}\n```"
        )
        assert data["splits"] == [{"userId": "1", "amount": 10.0}]
        assert salvaged is False

    def test_single_quoted_description_with_double_quotes(self) -> None:
        data, salvaged = parse_model_json(
            "{description: 'Dinner at \"Joe\"', splits: [{userId:'u1',amount:10}]}"
        )
        assert salvaged is False
        assert data["description"] == 'Dinner at "Joe"'
        assert data["splits"] == [{"userId": "u1", "amount": 10}]

    def test_salvaged_json(self) -> None:
        text = '{"description": "x" "splits": [{"userId": "1", "amount": 5}]}'
        data, salvaged = parse_model_json(text)
        assert salvaged is True
        assert data["splits"] == [{"userId": "1", "amount": 5}]
        assert data["reasoning"] == "Parsed from malformed JSON"

    def test_unrecoverable_raises_with_texts(self) -> None:
        with pytest.raises(MalformedModelOutput) as exc_info:
            parse_model_json("no json here at all")
        assert exc_info.value.raw_text == "no json here at all"
        assert exc_info.value.repaired_text == "no json here at all"
