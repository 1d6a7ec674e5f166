"""Tag record accumulator and chapter datatype.

Responsibilities:
- Represent the merged metadata of one output artifact.
- Provide overwrite and fill-missing merge operations used by the composite.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping

from ..config import TAG_FIELD_NAMES
from ..parsing import normalize_optional_string


@dataclass(frozen=True, slots=True)
class Chapter:
    """One chapter mark.

    Attributes:
        start_ms: Offset from the start of the merged output.
        length_ms: Chapter duration, `0` when unknown.
        name: Chapter title.
    """

    start_ms: int
    length_ms: int
    name: str

    @property
    def end_ms(self) -> int:
        """Return the chapter end offset."""

        return self.start_ms + self.length_ms


@dataclass(slots=True)
class TagRecord:
    """Mutable tag accumulator; `None` or empty means the field is unset."""

    title: str | None = None
    sort_title: str | None = None
    album: str | None = None
    sort_album: str | None = None
    artist: str | None = None
    sort_artist: str | None = None
    album_artist: str | None = None
    genre: str | None = None
    writer: str | None = None
    year: str | None = None
    description: str | None = None
    long_description: str | None = None
    comment: str | None = None
    copyright: str | None = None
    encoded_by: str | None = None
    series: str | None = None
    series_part: str | None = None
    cover: Path | None = None
    chapters: list[Chapter] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> TagRecord:
        """Build a record from text fields, ignoring blanks and unknown keys."""

        record = cls()
        for name in TAG_FIELD_NAMES:
            value = normalize_optional_string(values.get(name))
            if value is not None:
                setattr(record, name, value)
        return record

    def is_set(self, name: str) -> bool:
        """Return whether a field holds a value."""

        value = getattr(self, name)
        if name == "chapters":
            return len(value) > 0
        if isinstance(value, str):
            return value.strip() != ""
        return value is not None

    def set_field_names(self) -> list[str]:
        """Return names of all fields that hold a value."""

        return [item.name for item in fields(self) if self.is_set(item.name)]

    def is_empty(self) -> bool:
        """Return whether no field is set."""

        return not self.set_field_names()

    def merge_overwrite(self, other: TagRecord) -> TagRecord:
        """Copy every field `other` sets onto this record and return it."""

        for name in other.set_field_names():
            value = getattr(other, name)
            setattr(self, name, list(value) if name == "chapters" else value)
        return self

    def merge_missing(self, other: TagRecord) -> TagRecord:
        """Fill only fields that are still unset here and return this record."""

        for name in other.set_field_names():
            if not self.is_set(name):
                value = getattr(other, name)
                setattr(self, name, list(value) if name == "chapters" else value)
        return self

    def text_fields(self) -> dict[str, str]:
        """Return set text fields keyed by field name."""

        return {
            name: getattr(self, name)
            for name in TAG_FIELD_NAMES
            if self.is_set(name)
        }
