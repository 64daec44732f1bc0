"""Small path-expression matcher over generic structured values.

Works on any tree of mappings, sequences and scalars, regardless of the
document format it came from. Supported syntax:

    $                 the root value
    $.data.id         mapping keys
    $['odd key']      quoted keys
    $.items[0]        sequence index (negative counts from the end)
    $.items[*].id     wildcard over a sequence or mapping values
    data.id           a leading "$." is optional
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterator, Mapping, Sequence, Union


class PathSyntaxError(ValueError):
    """Path expression could not be compiled."""
    pass


@dataclass(frozen=True)
class _Key:
    name: str


@dataclass(frozen=True)
class _Index:
    index: int


@dataclass(frozen=True)
class _Wildcard:
    pass


_Step = Union[_Key, _Index, _Wildcard]

_DOT_KEY = re.compile(r"\.([A-Za-z0-9_\-@$]+|\*)")
_BRACKET = re.compile(r"""\[\s*(?:(-?\d+)|\*|'([^']*)'|"([^"]*)")\s*\]""")
_BARE_KEY = re.compile(r"([A-Za-z0-9_\-@]+)")


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


class PathExpression:
    """A compiled path expression."""

    def __init__(self, path: str):
        self.path = path
        self._steps = _compile(path)

    def find_all(self, document: Any) -> list[Any]:
        """Every value the path resolves to, in document order."""
        current = [document]
        for step in self._steps:
            current = [found for value in current for found in _apply(step, value)]
            if not current:
                break
        return current

    def find_first(self, document: Any, default: Any = None) -> Any:
        """First resolved value, or ``default`` when nothing matches."""
        matches = self.find_all(document)
        return matches[0] if matches else default

    @property
    def is_definite(self) -> bool:
        """True if the path can resolve to at most one value."""
        return not any(isinstance(step, _Wildcard) for step in self._steps)

    def __repr__(self) -> str:
        return f"PathExpression({self.path!r})"


def _apply(step: _Step, value: Any) -> Iterator[Any]:
    if isinstance(step, _Key):
        if isinstance(value, Mapping) and step.name in value:
            yield value[step.name]
        elif _is_sequence(value) and step.name.lstrip("-").isdigit():
            yield from _apply(_Index(int(step.name)), value)
    elif isinstance(step, _Index):
        if _is_sequence(value) and -len(value) <= step.index < len(value):
            yield value[step.index]
    else:
        if isinstance(value, Mapping):
            yield from value.values()
        elif _is_sequence(value):
            yield from value


@lru_cache(maxsize=256)
def _compile(path: str) -> tuple[_Step, ...]:
    if path is None or not str(path).strip():
        raise PathSyntaxError("Empty path expression")

    text = str(path).strip()
    pos = 0
    steps: list[_Step] = []

    if text.startswith("$"):
        pos = 1
    else:
        # Relative form: "data.id" is read as "$.data.id"
        match = _BARE_KEY.match(text)
        if not match:
            raise PathSyntaxError(f"Invalid path expression '{path}' at position 0")
        steps.append(_Key(match.group(1)))
        pos = match.end()

    while pos < len(text):
        char = text[pos]
        if char == ".":
            match = _DOT_KEY.match(text, pos)
            if not match:
                raise PathSyntaxError(
                    f"Invalid path expression '{path}' at position {pos}"
                )
            name = match.group(1)
            steps.append(_Wildcard() if name == "*" else _Key(name))
        elif char == "[":
            match = _BRACKET.match(text, pos)
            if not match:
                raise PathSyntaxError(
                    f"Invalid path expression '{path}' at position {pos}"
                )
            index, single, double = match.groups()
            if index is not None:
                steps.append(_Index(int(index)))
            elif single is not None:
                steps.append(_Key(single))
            elif double is not None:
                steps.append(_Key(double))
            else:
                steps.append(_Wildcard())
        else:
            raise PathSyntaxError(
                f"Invalid path expression '{path}' at position {pos}"
            )
        pos = match.end()

    return tuple(steps)


def compile_path(path: str) -> PathExpression:
    """Compile ``path``, raising PathSyntaxError when it is invalid."""
    return PathExpression(path)


def resolve(document: Any, path: str, default: Any = None) -> Any:
    """Shortcut for ``PathExpression(path).find_first(document, default)``."""
    return PathExpression(path).find_first(document, default)
