"""Shared parsing helpers for option and sidecar value normalization."""

from __future__ import annotations

import re


_TRUE_BOOLEAN_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_BOOLEAN_TOKENS = frozenset({"0", "false", "no", "off"})
_TIMESTAMP_PATTERN = re.compile(
    r"^(?:(?P<hours>\d+):)?(?P<minutes>\d{1,2}):(?P<seconds>\d{1,2})(?:[.,](?P<fraction>\d{1,3}))?$"
)
_NATURAL_SPLIT_PATTERN = re.compile(r"(\d+)")


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_permissive_boolean(value: object) -> bool | None:
    """Parse a permissive boolean token and return `None` for invalid values."""

    if isinstance(value, bool):
        return value

    normalized = normalize_optional_string(value)
    if normalized is None:
        return None

    token = normalized.lower()
    if token in _TRUE_BOOLEAN_TOKENS:
        return True
    if token in _FALSE_BOOLEAN_TOKENS:
        return False
    return None


def parse_csv_list(value: object) -> tuple[str, ...]:
    """Split a comma separated option into stripped, non-empty tokens."""

    normalized = normalize_optional_string(value)
    if normalized is None:
        return tuple()
    return tuple(
        token for token in (part.strip() for part in normalized.split(",")) if token
    )


def parse_extension_list(value: object) -> tuple[str, ...]:
    """Parse an extension allowlist into lowercase extensions without dots."""

    extensions: list[str] = []
    for token in parse_csv_list(value):
        extension = token.lower().lstrip(".")
        if extension and extension not in extensions:
            extensions.append(extension)
    return tuple(extensions)


def parse_duration_ms(value: str) -> int:
    """Parse `HH:MM:SS.mmm`, `MM:SS` or plain seconds into milliseconds.

    Raises:
        ValueError: If the value is neither a timestamp nor a number.
    """

    text = value.strip()
    match = _TIMESTAMP_PATTERN.match(text)
    if match is not None:
        hours = int(match.group("hours") or 0)
        minutes = int(match.group("minutes"))
        seconds = int(match.group("seconds"))
        fraction = (match.group("fraction") or "0").ljust(3, "0")
        return ((hours * 60 + minutes) * 60 + seconds) * 1000 + int(fraction)
    try:
        seconds_value = float(text)
    except ValueError as exc:
        raise ValueError(f"Invalid duration value `{value}`.") from exc
    if seconds_value < 0:
        raise ValueError(f"Invalid duration value `{value}`.")
    return int(round(seconds_value * 1000))


def format_duration_ms(milliseconds: int) -> str:
    """Format milliseconds as `HH:MM:SS.mmm`."""

    total_seconds, millis = divmod(max(0, int(milliseconds)), 1000)
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def natural_sort_key(text: str) -> tuple[object, ...]:
    """Return a sort key that orders embedded numbers numerically."""

    return tuple(
        int(part) if part.isdigit() else part.lower()
        for part in _NATURAL_SPLIT_PATTERN.split(text)
    )
