"""Tag providers chained by `TagMergeComposite`.

Every provider exposes `produce(current)`: it inspects the accumulated
record and returns a partial `TagRecord` holding only the fields it wants
to set. Providers never mutate `current`; the composite merges partials.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
import json
from pathlib import Path
from typing import Protocol
from xml.etree.ElementTree import ParseError

from ..config import parse_equate_instruction
from ..errors import MergeStageError
from ..models.datatypes import MergeSequence, Silence
from ..telemetry.logger import RunLogger
from .lookup import ChapterLookupError, MusicBrainzClient
from .record import Chapter, TagRecord
from .sidecars import SidecarParser, read_sidecar

DurationProbe = Callable[[Path], "int | None"]
SilenceDetector = Callable[[Path, int], "list[Silence]"]
TitleLookup = Callable[[Path], "str | None"]


class TagProvider(Protocol):
    """Capability interface for one metadata source."""

    def produce(self, current: TagRecord) -> TagRecord:
        """Return a partial record to merge over `current`."""


class SidecarTagProvider:
    """Read one sidecar file; a missing file contributes nothing."""

    def __init__(self, path: Path, parser: SidecarParser) -> None:
        self.path = path
        self.parser = parser

    def produce(self, current: TagRecord) -> TagRecord:
        try:
            record = read_sidecar(self.path, self.parser)
        except (ParseError, json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
            raise MergeStageError(
                stage="tag",
                detail=f"Could not parse metadata file `{self.path}`.",
                hint="Fix or remove the malformed metadata file and retry.",
                diagnostic=str(exc),
            ) from exc
        return record if record is not None else TagRecord()


class ChaptersFromFileTracks:
    """Derive one chapter per merged item when no chapters are known yet.

    Silence inserted after an item is attributed to that item's chapter so
    chapter starts line up with the first audible frame of every item.
    """

    def __init__(
        self,
        sequence: MergeSequence,
        source_items: Sequence[Path],
        probe_duration_ms: DurationProbe,
        title_lookup: TitleLookup,
        *,
        use_filenames: bool = False,
    ) -> None:
        self.sequence = sequence
        self.source_items = list(source_items)
        self.probe_duration_ms = probe_duration_ms
        self.title_lookup = title_lookup
        self.use_filenames = use_filenames

    def produce(self, current: TagRecord) -> TagRecord:
        if current.chapters or len(self.sequence) == 0:
            return TagRecord()

        durations: dict[Path, int] = {}
        chapters: list[Chapter] = []
        cursor_ms = 0
        for entry in self.sequence.entries:
            if entry.path not in durations:
                duration = self.probe_duration_ms(entry.path)
                if duration is None:
                    return TagRecord()
                durations[entry.path] = duration
            length_ms = durations[entry.path]
            if entry.is_silence and chapters:
                previous = chapters[-1]
                chapters[-1] = Chapter(
                    start_ms=previous.start_ms,
                    length_ms=previous.length_ms + length_ms,
                    name=previous.name,
                )
            elif not entry.is_silence:
                chapters.append(
                    Chapter(start_ms=cursor_ms, length_ms=length_ms, name=self._name_for(entry.index))
                )
            cursor_ms += length_ms
        return TagRecord(chapters=chapters)

    def _name_for(self, index: int) -> str:
        """Return the chapter title for the item at `index`."""

        if index < len(self.source_items):
            source = self.source_items[index]
            if not self.use_filenames:
                title = self.title_lookup(source)
                if title:
                    return title
            return source.stem
        return str(index + 1)


class ChaptersFromLookup:
    """Fetch chapters for a release id; lookup failures only warn."""

    def __init__(
        self,
        release_id: str,
        client: MusicBrainzClient | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.release_id = release_id
        self.client = client or MusicBrainzClient()
        self.run_logger = run_logger

    def produce(self, current: TagRecord) -> TagRecord:
        try:
            chapters = self.client.chapters_for_release(self.release_id)
        except ChapterLookupError as exc:
            if self.run_logger is not None:
                self.run_logger.warning(f"chapter lookup failed: {exc}")
            return TagRecord()
        return TagRecord(chapters=chapters)


class ChapterLengthNormalizer:
    """Split chapters longer than the configured maximum.

    Split points prefer the midpoint of a detected silence nearest to the
    desired length. Without a usable silence the chapter is cut hard at the
    desired length and a warning is emitted.
    """

    def __init__(
        self,
        merged_path: Path,
        limits: tuple[int, int],
        detect_silences: SilenceDetector,
        *,
        silence_min_length_ms: int,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.merged_path = merged_path
        self.desired_ms, self.max_ms = limits
        self.detect_silences = detect_silences
        self.silence_min_length_ms = silence_min_length_ms
        self.run_logger = run_logger

    def produce(self, current: TagRecord) -> TagRecord:
        if not any(chapter.length_ms > self.max_ms for chapter in current.chapters):
            return TagRecord()

        silences: list[Silence] = []
        if self.silence_min_length_ms > 0:
            silences = [
                silence
                for silence in self.detect_silences(self.merged_path, self.silence_min_length_ms)
                if silence.length_ms >= self.silence_min_length_ms
            ]

        normalized: list[Chapter] = []
        for chapter in current.chapters:
            if chapter.length_ms <= self.max_ms:
                normalized.append(chapter)
            else:
                normalized.extend(self._split(chapter, silences))
        return TagRecord(chapters=normalized)

    def _split(self, chapter: Chapter, silences: Sequence[Silence]) -> list[Chapter]:
        """Split one chapter into pieces no longer than the maximum."""

        boundaries = [chapter.start_ms]
        cursor = chapter.start_ms
        while chapter.end_ms - cursor > self.max_ms:
            target = cursor + self.desired_ms
            candidates = [
                silence.midpoint_ms
                for silence in silences
                if cursor < silence.midpoint_ms <= cursor + self.max_ms
                and silence.midpoint_ms < chapter.end_ms
            ]
            if candidates:
                cursor = min(candidates, key=lambda point: abs(point - target))
            else:
                if self.run_logger is not None:
                    self.run_logger.warning(
                        f"no silence found to split chapter `{chapter.name}`, cutting at {target} ms"
                    )
                cursor = target
            boundaries.append(cursor)
        boundaries.append(chapter.end_ms)

        return [
            Chapter(
                start_ms=start,
                length_ms=end - start,
                name=f"{chapter.name} ({position})",
            )
            for position, (start, end) in enumerate(zip(boundaries, boundaries[1:]), start=1)
        ]


class OptionsTagProvider:
    """Apply tag fields set explicitly by the caller, plus an explicit cover."""

    def __init__(self, tag_options: Mapping[str, str], cover: Path | None = None) -> None:
        self.tag_options = dict(tag_options)
        self.cover = cover

    def produce(self, current: TagRecord) -> TagRecord:
        record = TagRecord.from_mapping(self.tag_options)
        if self.cover is not None and self.cover.is_file():
            record.cover = self.cover
        return record


class EquateProvider:
    """Copy one field's value into other fields (`artist,album_artist`)."""

    def __init__(self, instructions: Sequence[str]) -> None:
        self.rules = [parse_equate_instruction(instruction) for instruction in instructions]

    def produce(self, current: TagRecord) -> TagRecord:
        record = TagRecord()
        for source, targets in self.rules:
            if not current.is_set(source):
                continue
            value = getattr(current, source)
            for target in targets:
                setattr(record, target, value)
        return record
