"""Tests for {{var}} template helpers."""

import pytest

from conduit.core.template import (
    TemplateVariableError,
    escape_html,
    extract_value,
    extract_variable_references,
    replace_variables,
    validate_variables,
)


class TestExtractValue:
    """Tests for dotted-path extraction."""

    def test_nested_dict(self):
        """Dotted paths walk nested dicts."""
        assert extract_value({"a": {"b": {"c": 3}}}, "a.b.c") == 3

    def test_list_index(self):
        """Numeric segments index lists."""
        assert extract_value({"items": [{"name": "x"}, {"name": "y"}]}, "items.1.name") == "y"

    def test_missing_returns_none(self):
        """Missing segments yield None."""
        assert extract_value({"a": {}}, "a.b.c") is None
        assert extract_value({"items": []}, "items.0") is None
        assert extract_value(None, "a") is None


class TestReplaceVariables:
    """Tests for recursive substitution."""

    def test_simple_string(self):
        """Placeholders in strings are replaced."""
        assert replace_variables("Hello {{name}}", {"name": "Ada"}) == "Hello Ada"

    def test_dotted_path(self):
        """Placeholders may use dotted paths."""
        assert replace_variables("/users/{{user.id}}", {"user": {"id": 7}}) == "/users/7"

    def test_missing_renders_empty(self):
        """Missing variables render as an empty string by default."""
        assert replace_variables("a{{missing}}b", {}) == "ab"

    def test_none_renders_empty(self):
        """None values render as an empty string."""
        assert replace_variables("a{{x}}b", {"x": None}) == "ab"

    def test_throw_on_missing(self):
        """Strict mode raises on missing variables."""
        with pytest.raises(TemplateVariableError, match='Variable "missing" is not defined'):
            replace_variables("{{missing}}", {}, throw_on_missing=True)

    def test_renders_scalars_and_containers(self):
        """Booleans render lowercase, containers render as JSON."""
        assert replace_variables("{{flag}}", {"flag": True}) == "true"
        assert replace_variables("{{n}}", {"n": 3.5}) == "3.5"
        assert replace_variables("{{obj}}", {"obj": {"a": 1}}) == '{"a": 1}'

    def test_recurses_into_dicts_and_lists(self):
        """Dicts and lists are walked; other values are preserved."""
        template = {"url": "/{{id}}", "tags": ["{{tag}}", 5], "retry": True}
        assert replace_variables(template, {"id": 9, "tag": "x"}) == {
            "url": "/9",
            "tags": ["x", 5],
            "retry": True,
        }

    def test_expressions_are_not_evaluated(self):
        """Anything other than a dotted name is left untouched."""
        assert replace_variables("{{ 1 + 1 }}", {}) == "{{ 1 + 1 }}"
        assert replace_variables("{{__import__('os')}}", {}) == "{{__import__('os')}}"

    def test_escape_html(self):
        """escape_html escapes substituted values only."""
        result = replace_variables("<b>{{v}}</b>", {"v": "<script>"}, escape_html=True)
        assert result == "<b>&lt;script&gt;</b>"


class TestReferences:
    """Tests for reference discovery and validation."""

    def test_extract_references_dedupes_in_order(self):
        """References are distinct and keep first-seen order."""
        template = {"a": "{{x}} {{y}}", "b": ["{{x}}", "{{z.w}}"]}
        assert extract_variable_references(template) == ["x", "y", "z.w"]

    def test_validate_variables(self):
        """validate_variables lists what is missing."""
        assert validate_variables("{{a}} {{b.c}}", {"a": 1, "b": {}}) == ["b.c"]

    def test_escape_html_function(self):
        """escape_html handles all special characters."""
        assert escape_html("&<>\"'/") == "&amp;&lt;&gt;&quot;&#39;&#x2F;"
