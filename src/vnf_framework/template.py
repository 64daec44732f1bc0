"""Placeholder substitution for dictionary templates.

Templates use ``${name}`` markers. Rendering is plain string substitution:
no expressions, no function calls, no evaluation of any kind.
"""
import re
from typing import Any, Mapping, Optional, Union

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.\-]*)\}")
MARKER_START = "${"


class TemplateContext:
    """Variable bag used while rendering templates."""

    def __init__(self, variables: Optional[Mapping[str, Any]] = None):
        self._variables: dict[str, Any] = dict(variables or {})

    def set(self, key: str, value: Any) -> None:
        self._variables[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._variables.get(key, default)

    def update(self, values: Mapping[str, Any]) -> None:
        self._variables.update(values)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._variables)

    def __contains__(self, key: str) -> bool:
        return key in self._variables

    def __repr__(self) -> str:
        return f"TemplateContext({sorted(self._variables)})"


ContextLike = Union[TemplateContext, Mapping[str, Any]]


def to_template_string(value: Any) -> str:
    """String form of a context value.

    None renders empty, booleans render lowercase so JSON bodies stay valid,
    lists render comma-separated.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(to_template_string(v) for v in value)
    return str(value)


def render(template: Optional[str], context: ContextLike) -> str:
    """Substitute every ``${name}`` marker in ``template``.

    Missing keys substitute the empty string; this never raises.
    """
    if not template:
        return ""

    variables = context.as_dict() if isinstance(context, TemplateContext) else context

    def _replace(match: re.Match) -> str:
        return to_template_string(variables.get(match.group(1)))

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def has_unresolved_placeholders(text: Optional[str]) -> bool:
    """True if ``text`` still contains a well-formed ``${name}`` marker."""
    if not text:
        return False
    return PLACEHOLDER_PATTERN.search(text) is not None


def placeholder_names(template: Optional[str]) -> list[str]:
    """Names referenced by ``template``, in order of first appearance."""
    if not template:
        return []
    seen: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(template):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


def find_malformed_placeholders(template: Optional[str]) -> list[str]:
    """
    Return fragments that open a marker but are not well-formed.

    Examples:
        "${a" -> ["${a"]
        "x ${} y" -> ["${}"]
        "${bad name}" -> ["${bad name}"]
    """
    if not template:
        return []

    malformed = []
    start = template.find(MARKER_START)
    while start != -1:
        match = PLACEHOLDER_PATTERN.match(template, start)
        if match:
            start = template.find(MARKER_START, match.end())
            continue

        end = template.find("}", start)
        next_start = template.find(MARKER_START, start + 2)
        if end == -1 or (next_start != -1 and next_start < end):
            malformed.append(template[start:start + 20])
        else:
            malformed.append(template[start:end + 1])
        start = next_start

    return malformed
