"""Batch pattern placeholder matching.

Responsibilities:
- Compile `%x` placeholder patterns into anchored regular expressions.
- Match normalized directory paths and expose captured placeholder values.
- Format patterns back into paths from captured values.

A placeholder never spans a path separator and captures the longest value
that still lets the rest of the pattern match. `%%` is a literal percent sign
and a repeated placeholder must capture the same value every time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
import re
from typing import Iterable, Mapping

PLACEHOLDER_OPTIONS: Mapping[str, str] = {
    "title": "n",
    "sort_title": "N",
    "album": "m",
    "sort_album": "M",
    "artist": "a",
    "sort_artist": "A",
    "genre": "g",
    "writer": "w",
    "album_artist": "t",
    "year": "y",
    "description": "d",
    "long_description": "D",
    "comment": "c",
    "copyright": "C",
    "encoded_by": "e",
    "series": "s",
    "series_part": "p",
}

_PLACEHOLDER_PREFIX = "%"


def normalize_path(path: object) -> str:
    """Unify path separators to `/` and drop trailing separators."""

    return str(path).replace("\\", "/").rstrip("/")


@dataclass(frozen=True, slots=True)
class _Token:
    """One literal or placeholder token of a batch pattern."""

    text: str
    is_placeholder: bool


@dataclass(frozen=True, slots=True)
class PlaceholderMatch:
    """Result of matching one candidate path against a pattern.

    Attributes:
        matched: Whether the whole candidate path matched.
        values: Captured value per placeholder name (single letter).
    """

    matched: bool
    values: Mapping[str, str] = field(default_factory=dict)

    def value(self, placeholder: str) -> str:
        """Return one captured value, or an empty string when unset."""

        return self.values.get(placeholder, "")

    def option_values(self) -> dict[str, str]:
        """Return captured values keyed by tag option name, in option order."""

        return {
            option: self.values[placeholder]
            for option, placeholder in PLACEHOLDER_OPTIONS.items()
            if self.values.get(placeholder)
        }


def _tokenize(pattern: str, placeholders: frozenset[str]) -> tuple[_Token, ...]:
    """Split a pattern into literal and placeholder tokens."""

    tokens: list[_Token] = []
    literal: list[str] = []
    index = 0
    while index < len(pattern):
        character = pattern[index]
        following = pattern[index + 1] if index + 1 < len(pattern) else ""
        if character == _PLACEHOLDER_PREFIX and following == _PLACEHOLDER_PREFIX:
            literal.append(_PLACEHOLDER_PREFIX)
            index += 2
            continue
        if character == _PLACEHOLDER_PREFIX and following in placeholders:
            if literal:
                tokens.append(_Token("".join(literal), is_placeholder=False))
                literal = []
            tokens.append(_Token(following, is_placeholder=True))
            index += 2
            continue
        literal.append(character)
        index += 1
    if literal:
        tokens.append(_Token("".join(literal), is_placeholder=False))
    return tuple(tokens)


@lru_cache(maxsize=256)
def _compile(pattern: str, placeholders: frozenset[str]) -> re.Pattern[str]:
    """Compile a normalized pattern anchored to the end of a path.

    A match starts at the beginning of the path or right after a `/`, so
    extra leading directories of the candidate are allowed.
    """

    parts: list[str] = ["(?:^|/)"]
    seen: set[str] = set()
    for token in _tokenize(pattern, placeholders):
        if not token.is_placeholder:
            parts.append(re.escape(token.text))
            continue
        group = _group_name(token.text)
        if token.text in seen:
            parts.append(f"(?P={group})")
        else:
            seen.add(token.text)
            parts.append(f"(?P<{group}>[^/]+)")
    parts.append("$")
    return re.compile("".join(parts))


def _group_name(placeholder: str) -> str:
    """Map a placeholder letter to a case-preserving regex group name."""

    return f"p_{placeholder}"


class PlaceholderMatcher:
    """Match and format batch patterns built from `%x` placeholders."""

    def __init__(self, placeholders: Iterable[str] | None = None) -> None:
        """Initialize with the recognized placeholder letters."""

        letters = PLACEHOLDER_OPTIONS.values() if placeholders is None else placeholders
        self._placeholders = frozenset(letters)

    def match(self, pattern: str, candidate_path: object) -> PlaceholderMatch:
        """Match a candidate path against a pattern.

        Both sides are normalized first. The pattern has to cover the trailing
        segments of the candidate, so extra leading segments are ignored. A
        candidate with fewer path segments than the pattern, or with a
        mismatching literal, does not match.
        """

        compiled = _compile(normalize_path(pattern), self._placeholders)
        found = compiled.search(normalize_path(candidate_path))
        if found is None:
            return PlaceholderMatch(matched=False)
        values = {
            placeholder: found.group(_group_name(placeholder))
            for placeholder in sorted(self._placeholders)
            if _group_name(placeholder) in compiled.groupindex
        }
        return PlaceholderMatch(matched=True, values=values)

    def format(self, pattern: str, values: Mapping[str, str]) -> str:
        """Substitute captured values into a pattern; unknown ones become empty."""

        return "".join(
            values.get(token.text, "") if token.is_placeholder else token.text
            for token in _tokenize(pattern, self._placeholders)
        )

    def trim_separator_prefix(self, pattern: str) -> str:
        """Drop literal leading directories that precede the first placeholder.

        `input/%g/%a/` becomes `%g/%a/`; `books/prefix-%n` becomes `prefix-%n`.
        """

        tokens = _tokenize(pattern.replace("\\", "/"), self._placeholders)
        if not tokens or not any(token.is_placeholder for token in tokens):
            return pattern
        first = tokens[0]
        if first.is_placeholder:
            return pattern.replace("\\", "/")
        separator_position = first.text.rfind("/")
        remaining_literal = first.text[separator_position + 1 :]
        rebuilt = [remaining_literal.replace("%", "%%")]
        for token in tokens[1:]:
            if token.is_placeholder:
                rebuilt.append(f"{_PLACEHOLDER_PREFIX}{token.text}")
            else:
                rebuilt.append(token.text.replace("%", "%%"))
        return "".join(rebuilt)
