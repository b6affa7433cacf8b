"""Template variable substitution for handler request templates.

Only ``{{name}}`` placeholders are substituted, where ``name`` is a dotted
path of letters, digits and underscores. Nothing is evaluated: a template
is data, and the substitution is a lookup.

Example:
    >>> replace_variables({"url": "https://api/{{user.id}}"}, {"user": {"id": 7}})
    {'url': 'https://api/7'}
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

VARIABLE_PATTERN = re.compile(r"\{\{([A-Za-z0-9_.]+)\}\}")

_MISSING = object()

_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
    "/": "&#x2F;",
}


class TemplateVariableError(KeyError):
    """Raised when a referenced variable is missing and strict mode is on."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Variable "{name}" is not defined')

    def __str__(self) -> str:
        return self.args[0]


def _lookup(obj: Any, path: str) -> Any:
    current = obj
    for part in path.split("."):
        if current is None:
            return _MISSING
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list | tuple):
            if not part.isdigit() or int(part) >= len(current):
                return _MISSING
            current = current[int(part)]
        else:
            return _MISSING
    return current


def extract_value(obj: Any, path: str) -> Any:
    """Extract a value by dotted path (``items.0.name``).

    Returns None when any segment is missing.
    """
    value = _lookup(obj, path)
    return None if value is _MISSING else value


def escape_html(text: str) -> str:
    """Escape HTML special characters."""
    return "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def replace_variables(
    template: Any,
    variables: Mapping[str, Any],
    *,
    throw_on_missing: bool = False,
    escape_html: bool = False,
) -> Any:
    """Substitute ``{{var}}`` placeholders recursively.

    Strings are rendered, dicts and lists are walked, every other value is
    returned unchanged. Missing variables render as an empty string unless
    ``throw_on_missing`` is set.

    Raises:
        TemplateVariableError: missing variable with ``throw_on_missing=True``
    """
    if isinstance(template, str):
        def substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            value = _lookup(variables, name)
            if value is _MISSING or value is None:
                if throw_on_missing:
                    raise TemplateVariableError(name)
                return ""
            rendered = _render(value)
            return _escape(rendered) if escape_html else rendered

        return VARIABLE_PATTERN.sub(substitute, template)

    if isinstance(template, dict):
        return {
            key: replace_variables(
                value, variables, throw_on_missing=throw_on_missing, escape_html=escape_html
            )
            for key, value in template.items()
        }

    if isinstance(template, list):
        return [
            replace_variables(
                item, variables, throw_on_missing=throw_on_missing, escape_html=escape_html
            )
            for item in template
        ]

    return template


# keyword argument shadows the function inside replace_variables
_escape = escape_html


def extract_variable_references(template: Any) -> list[str]:
    """List distinct variable names referenced by a template, in order."""
    seen: dict[str, None] = {}

    def walk(node: Any) -> None:
        if isinstance(node, str):
            for name in VARIABLE_PATTERN.findall(node):
                seen.setdefault(name, None)
        elif isinstance(node, dict):
            for value in node.values():
                walk(value)
        elif isinstance(node, list):
            for item in node:
                walk(item)

    walk(template)
    return list(seen)


def validate_variables(template: Any, variables: Mapping[str, Any]) -> list[str]:
    """Return referenced variable names that ``variables`` does not provide."""
    return [
        name
        for name in extract_variable_references(template)
        if _lookup(variables, name) is _MISSING
    ]


__all__ = [
    "VARIABLE_PATTERN",
    "TemplateVariableError",
    "extract_value",
    "escape_html",
    "replace_variables",
    "extract_variable_references",
    "validate_variables",
]
