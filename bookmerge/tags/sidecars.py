"""Metadata sidecar readers and chapter serializers.

Each `parse_*` function is pure: it turns the text of one sidecar into a
partial `TagRecord` holding only the fields that file defines. Sidecars are
looked up by conventional file names inside the input directory.
"""

from __future__ import annotations

from collections.abc import Callable
import html
import json
from pathlib import Path
import re
from typing import Any, Mapping
from xml.etree import ElementTree

from ..parsing import format_duration_ms, normalize_optional_string, parse_duration_ms
from .record import Chapter, TagRecord

SidecarParser = Callable[[str], TagRecord]

FFMETADATA_FILENAME = "ffmetadata.txt"
CHAPTERS_FILENAME = "chapters.txt"
OPF_FILENAME = "metadata.opf"
AUDIBLE_FILENAME = "audible.txt"
DESCRIPTION_FILENAME = "description.txt"
CONTENT_METADATA_GLOB = "content_metadata_*.json"

_SHORT_DESCRIPTION_CHARS = 255
_TAG_PATTERN = re.compile(r"<[^>]+>")
_YEAR_PATTERN = re.compile(r"(\d{4})")
_CHAPTER_LINE_PATTERN = re.compile(r"^(\S+)\s+(.*)$")

_FFMETADATA_KEYS = {
    "title": "title",
    "sort_name": "sort_title",
    "album": "album",
    "sort_album": "sort_album",
    "artist": "artist",
    "sort_artist": "sort_artist",
    "album_artist": "album_artist",
    "genre": "genre",
    "composer": "writer",
    "date": "year",
    "description": "description",
    "synopsis": "long_description",
    "comment": "comment",
    "copyright": "copyright",
    "encoded_by": "encoded_by",
    "series": "series",
    "series-part": "series_part",
}
_OPF_NAMESPACES = {
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
}


def read_sidecar(path: Path, parser: SidecarParser) -> TagRecord | None:
    """Parse one sidecar file, returning `None` when it does not exist."""

    if not path.is_file():
        return None
    return parser(path.read_text(encoding="utf-8-sig"))


def find_content_metadata(directory: Path) -> Path | None:
    """Return the first `content_metadata_*.json` sidecar in a directory."""

    matches = sorted(directory.glob(CONTENT_METADATA_GLOB))
    return matches[0] if matches else None


def short_description(text: str) -> str:
    """Return a tag-sized description from longer text."""

    collapsed = " ".join(text.split())
    if len(collapsed) <= _SHORT_DESCRIPTION_CHARS:
        return collapsed
    return collapsed[: _SHORT_DESCRIPTION_CHARS - 3].rstrip() + "..."


def _strip_markup(text: str) -> str:
    """Remove HTML tags and entities from description payloads."""

    return html.unescape(_TAG_PATTERN.sub(" ", text)).strip()


def _year_of(value: object) -> str | None:
    """Extract a four digit year from a date-like value."""

    normalized = normalize_optional_string(value)
    if normalized is None:
        return None
    match = _YEAR_PATTERN.search(normalized)
    return match.group(1) if match else None


def _with_lengths(starts: list[tuple[int, str]], total_ms: int | None = None) -> list[Chapter]:
    """Turn ordered `(start, name)` marks into chapters with lengths."""

    chapters: list[Chapter] = []
    for position, (start_ms, name) in enumerate(starts):
        if position + 1 < len(starts):
            length_ms = starts[position + 1][0] - start_ms
        elif total_ms is not None:
            length_ms = max(0, total_ms - start_ms)
        else:
            length_ms = 0
        chapters.append(Chapter(start_ms=start_ms, length_ms=length_ms, name=name))
    return chapters


def _unescape_ffmetadata(value: str) -> str:
    """Undo ffmetadata backslash escaping."""

    return re.sub(r"\\(.)", r"\1", value)


def parse_ffmetadata(text: str) -> TagRecord:
    """Parse an ffmpeg metadata file with optional `[CHAPTER]` sections."""

    record = TagRecord()
    values: dict[str, str] = {}
    chapters: list[Chapter] = []
    section: dict[str, str] | None = None
    in_global_section = True

    def _close_chapter(current: dict[str, str] | None) -> None:
        if current is None:
            return
        numerator, _, denominator = current.get("timebase", "1/1000").partition("/")
        scale = 1000 * int(numerator or 1) / int(denominator or 1000)
        start_ms = int(round(int(current.get("start", "0")) * scale))
        end_ms = int(round(int(current.get("end", current.get("start", "0"))) * scale))
        chapters.append(
            Chapter(
                start_ms=start_ms,
                length_ms=max(0, end_ms - start_ms),
                name=current.get("title", ""),
            )
        )

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith((";", "#")):
            continue
        if line.startswith("["):
            _close_chapter(section)
            section = {} if line.upper() == "[CHAPTER]" else None
            in_global_section = False
            continue
        key, separator, value = line.partition("=")
        if not separator:
            continue
        if section is not None:
            section[key.strip().lower()] = _unescape_ffmetadata(value.strip())
        elif in_global_section:
            values[key.strip().lower()] = _unescape_ffmetadata(value.strip())
    _close_chapter(section)

    for source_key, field_name in _FFMETADATA_KEYS.items():
        value = normalize_optional_string(values.get(source_key))
        if value is not None:
            setattr(record, field_name, value)
    if record.year is not None:
        record.year = _year_of(record.year) or record.year
    record.chapters = chapters
    return record


def parse_chapters_txt(text: str) -> TagRecord:
    """Parse `HH:MM:SS.mmm title` chapter lines."""

    starts: list[tuple[int, str]] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = _CHAPTER_LINE_PATTERN.match(line)
        if match is None:
            continue
        try:
            start_ms = parse_duration_ms(match.group(1))
        except ValueError:
            continue
        starts.append((start_ms, match.group(2).strip()))
    starts.sort(key=lambda item: item[0])
    return TagRecord(chapters=_with_lengths(starts))


def parse_opf(text: str) -> TagRecord:
    """Parse an OPF package description (Dublin Core plus calibre series)."""

    root = ElementTree.fromstring(text)
    metadata = root.find("opf:metadata", _OPF_NAMESPACES)
    if metadata is None:
        metadata = root.find("metadata")
    if metadata is None:
        return TagRecord()

    def _texts(tag: str) -> list[str]:
        return [
            value
            for value in (
                normalize_optional_string(element.text)
                for element in metadata.findall(f"dc:{tag}", _OPF_NAMESPACES)
            )
            if value is not None
        ]

    authors: list[str] = []
    narrators: list[str] = []
    role_attribute = f"{{{_OPF_NAMESPACES['opf']}}}role"
    for element in metadata.findall("dc:creator", _OPF_NAMESPACES):
        name = normalize_optional_string(element.text)
        if name is None:
            continue
        role = element.get(role_attribute) or element.get("role") or "aut"
        (narrators if role == "nrt" else authors).append(name)

    record = TagRecord()
    titles = _texts("title")
    if titles:
        record.title = titles[0]
        record.album = titles[0]
    if authors:
        record.artist = ", ".join(authors)
        record.album_artist = record.artist
    if narrators:
        record.writer = ", ".join(narrators)
    subjects = _texts("subject")
    if subjects:
        record.genre = subjects[0]
    dates = _texts("date")
    if dates:
        record.year = _year_of(dates[0])
    descriptions = _texts("description")
    if descriptions:
        record.long_description = _strip_markup(descriptions[0])
        record.description = short_description(record.long_description)

    for element in metadata.findall("opf:meta", _OPF_NAMESPACES) + metadata.findall("meta"):
        name = element.get("name")
        content = normalize_optional_string(element.get("content"))
        if content is None:
            continue
        if name == "calibre:series":
            record.series = content
        elif name == "calibre:series_index":
            record.series_part = content
    return record


def _names(entries: object) -> list[str]:
    """Extract `name` values from a list of audible person objects."""

    if not isinstance(entries, list):
        return []
    names: list[str] = []
    for entry in entries:
        if isinstance(entry, Mapping):
            name = normalize_optional_string(entry.get("name"))
            if name is not None:
                names.append(name)
    return names


def parse_audible_txt(text: str) -> TagRecord:
    """Parse an audible product JSON sidecar (bare or wrapped in `product`)."""

    payload: Any = json.loads(text)
    if isinstance(payload, Mapping) and isinstance(payload.get("product"), Mapping):
        payload = payload["product"]
    if not isinstance(payload, Mapping):
        return TagRecord()

    record = TagRecord()
    title = normalize_optional_string(payload.get("title"))
    if title is not None:
        record.title = title
        record.album = title
    authors = _names(payload.get("authors"))
    if authors:
        record.artist = ", ".join(authors)
        record.album_artist = record.artist
    narrators = _names(payload.get("narrators"))
    if narrators:
        record.writer = ", ".join(narrators)
    series = payload.get("series")
    if isinstance(series, list) and series and isinstance(series[0], Mapping):
        record.series = normalize_optional_string(series[0].get("title"))
        record.series_part = normalize_optional_string(series[0].get("sequence"))
    summary = normalize_optional_string(payload.get("publisher_summary"))
    if summary is not None:
        record.long_description = _strip_markup(summary)
        record.description = short_description(record.long_description)
    record.year = _year_of(payload.get("release_date"))
    record.copyright = normalize_optional_string(payload.get("publisher_name"))
    return record


def parse_description_txt(text: str) -> TagRecord:
    """Use a plain text file as long description."""

    long_description = normalize_optional_string(text)
    if long_description is None:
        return TagRecord()
    return TagRecord(
        description=short_description(long_description),
        long_description=long_description,
    )


def _flatten_chapters(entries: object, collected: list[Chapter]) -> None:
    """Collect nested chapter_info entries depth-first."""

    if not isinstance(entries, list):
        return
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        name = normalize_optional_string(entry.get("title")) or ""
        start_ms = int(entry.get("start_offset_ms", 0))
        length_ms = int(entry.get("length_ms", 0))
        collected.append(Chapter(start_ms=start_ms, length_ms=length_ms, name=name))
        _flatten_chapters(entry.get("chapters"), collected)


def parse_content_metadata_json(text: str) -> TagRecord:
    """Parse chapters from an audible `content_metadata_*.json` sidecar."""

    payload: Any = json.loads(text)
    if not isinstance(payload, Mapping):
        return TagRecord()
    content = payload.get("content_metadata", payload)
    chapter_info = content.get("chapter_info", {}) if isinstance(content, Mapping) else {}
    chapters: list[Chapter] = []
    if isinstance(chapter_info, Mapping):
        _flatten_chapters(chapter_info.get("chapters"), chapters)
    chapters.sort(key=lambda chapter: chapter.start_ms)
    return TagRecord(chapters=chapters)


def format_chapters_txt(chapters: list[Chapter]) -> str:
    """Serialize chapters into the `chapters.txt` line format."""

    return "".join(f"{format_duration_ms(chapter.start_ms)} {chapter.name}\n" for chapter in chapters)


def _escape_ffmetadata(value: str) -> str:
    return re.sub(r"([=;#\\\n])", r"\\\1", value)


def format_ffmetadata_chapters(chapters: list[Chapter], total_ms: int | None = None) -> str:
    """Serialize chapters into ffmetadata `[CHAPTER]` blocks with a 1/1000 timebase.

    A chapter without a length ends where the next one starts, or at
    `total_ms` when it is the last one.
    """

    blocks: list[str] = []
    for index, chapter in enumerate(chapters):
        end_ms = chapter.end_ms
        if chapter.length_ms == 0:
            following = chapters[index + 1].start_ms if index + 1 < len(chapters) else total_ms
            end_ms = max(chapter.start_ms, following or 0)
        blocks.append(
            f"[CHAPTER]\nTIMEBASE=1/1000\nSTART={chapter.start_ms}\nEND={end_ms}\n"
            f"title={_escape_ffmetadata(chapter.name)}\n"
        )
    return ";FFMETADATA1\n" + "".join(blocks)
