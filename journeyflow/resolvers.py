"""``@variable`` substitution for prompt templates.

A marker is ``@`` followed by one or more word characters.  Known keys are
replaced; unknown ones are left verbatim so a missing variable is visible in
the rendered prompt.  There is no escape syntax: ``@word`` that happens to
match no variable simply passes through.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_MARKER_RE = re.compile(r"@(\w+)", re.ASCII)


def resolve_template(template: str, variables: Mapping[str, str]) -> str:
    """Replace every ``@key`` whose key is in *variables*."""
    if not template or not variables:
        return template

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return variables[key]
        return match.group(0)

    return _MARKER_RE.sub(_substitute, template)


def _flatten(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def merge_variables(
    project_variables: Mapping[str, str],
    runtime_variables: Mapping[str, Any],
) -> dict[str, str]:
    """Merge both scopes into one string map; runtime entries win.

    Runtime entries may be ``RuntimeVariable`` objects, ``{"value": ...}``
    dicts (as stored in journeys) or bare values.
    """
    merged = dict(project_variables)
    for key, entry in runtime_variables.items():
        if hasattr(entry, "value"):
            raw = entry.value
        elif isinstance(entry, Mapping) and "value" in entry:
            raw = entry["value"]
        else:
            raw = entry
        merged[key] = _flatten(raw)
    return merged


def resolve_node_prompt(
    template: str,
    project_variables: Mapping[str, str],
    runtime_variables: Mapping[str, Any],
) -> str:
    """Render a node or edge template against project + runtime variables."""
    return resolve_template(template or "", merge_variables(project_variables, runtime_variables))
