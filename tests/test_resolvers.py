"""Tests for ``@variable`` template resolution."""

from __future__ import annotations

import pytest

from journeyflow.messages import RuntimeVariable
from journeyflow.resolvers import merge_variables, resolve_node_prompt, resolve_template


class TestResolveTemplate:
    def test_replaces_known_keys(self):
        assert resolve_template("Hi @name, welcome to @brand!", {"name": "Ada", "brand": "Acme"}) == (
            "Hi Ada, welcome to Acme!"
        )

    def test_leaves_unknown_keys_verbatim(self):
        assert resolve_template("Hi @name and @other", {"name": "Ada"}) == "Hi Ada and @other"

    @pytest.mark.parametrize("template", ["", "plain text", "email me @ noon", "@name"])
    def test_empty_variables_is_a_no_op(self, template: str):
        assert resolve_template(template, {}) == template

    def test_no_known_marker_survives(self):
        out = resolve_template("@a @b @a@b", {"a": "1", "b": "2"})
        assert "@a" not in out and "@b" not in out

    def test_marker_ends_at_first_non_word_character(self):
        assert resolve_template("@name's book", {"name": "Ada"}) == "Ada's book"

    def test_email_addresses_only_touch_matching_keys(self):
        assert resolve_template("write to ada@acme.com", {"acme": "X"}) == "write to adaX.com"

    def test_replacement_values_are_not_rescanned(self):
        assert resolve_template("@a", {"a": "@b", "b": "nope"}) == "@b"

    def test_non_ascii_word_characters_are_not_part_of_a_key(self):
        assert resolve_template("@naïve", {"na": "X"}) == "Xïve"


class TestMergeVariables:
    def test_runtime_wins_on_collision(self):
        merged = merge_variables(
            {"name": "A", "brand": "Acme"},
            {"name": RuntimeVariable(value="B", question_text="Name?")},
        )
        assert merged == {"name": "B", "brand": "Acme"}

    def test_accepts_stored_dicts_and_bare_values(self):
        merged = merge_variables({}, {"a": {"value": "x", "questionText": "A?"}, "b": "y"})
        assert merged == {"a": "x", "b": "y"}

    def test_list_values_are_joined(self):
        merged = merge_variables({}, {"tags": RuntimeVariable(value=["red", "blue"], question_text="Tags?")})
        assert merged["tags"] == "red, blue"


class TestResolveNodePrompt:
    def test_runtime_variable_beats_project_variable(self):
        out = resolve_node_prompt(
            "Hello @name",
            {"name": "A"},
            {"name": RuntimeVariable(value="B", question_text="Name?")},
        )
        assert out == "Hello B"

    def test_none_template_renders_empty(self):
        assert resolve_node_prompt(None, {"a": "1"}, {}) == ""
