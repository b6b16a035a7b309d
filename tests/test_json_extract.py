"""Tests for best-effort JSON extraction from LLM text."""

from __future__ import annotations

import pytest

from journeyflow.json_extract import JSONExtractionError, extract_json_object


class TestExtractJsonObject:
    def test_bare_object(self):
        assert extract_json_object('{"completed": true}') == {"completed": True}

    def test_ignores_prose_and_code_fences(self):
        text = 'Sure thing!\n```json\n{"summary": "ok", "n": {"x": 1}}\n```\nAnything else?'
        assert extract_json_object(text) == {"summary": "ok", "n": {"x": 1}}

    @pytest.mark.parametrize("text", ["", "no json here", "} backwards {"])
    def test_no_object(self, text: str):
        with pytest.raises(JSONExtractionError, match="No JSON object"):
            extract_json_object(text)

    def test_malformed_object(self):
        with pytest.raises(JSONExtractionError, match="Malformed"):
            extract_json_object('{"completed": tru}')

    def test_two_objects_are_not_merged(self):
        with pytest.raises(JSONExtractionError):
            extract_json_object('{"a": 1} and then {"b": 2}')

    def test_is_a_value_error(self):
        assert issubclass(JSONExtractionError, ValueError)
