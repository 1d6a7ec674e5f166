"""Embedded tag access for source items and the merged artifact.

Responsibilities:
- Read fallback tags from the first source item with `mutagen`.
- Write the final tag record into the merged temp artifact.
- Write the chapters sidecar next to the merged temp artifact.
"""

from __future__ import annotations

from pathlib import Path

import mutagen
from mutagen.id3 import APIC, ID3, ID3NoHeaderError
from mutagen.mp4 import MP4, MP4Cover

from ..parsing import normalize_optional_string
from ..telemetry.logger import RunLogger
from .record import TagRecord
from .sidecars import format_chapters_txt

CHAPTERS_SIDECAR_SUFFIX = ".chapters.txt"

_EASY_KEYS = {
    "title": "title",
    "sort_title": "titlesort",
    "album": "album",
    "sort_album": "albumsort",
    "artist": "artist",
    "sort_artist": "artistsort",
    "album_artist": "albumartist",
    "genre": "genre",
    "writer": "composer",
    "year": "date",
    "description": "description",
    "comment": "comment",
    "copyright": "copyright",
    "encoded_by": "encodedby",
}
_MP4_ATOMS = {
    "title": "\xa9nam",
    "sort_title": "sonm",
    "album": "\xa9alb",
    "sort_album": "soal",
    "artist": "\xa9ART",
    "sort_artist": "soar",
    "album_artist": "aART",
    "genre": "\xa9gen",
    "writer": "\xa9wrt",
    "year": "\xa9day",
    "description": "desc",
    "long_description": "ldes",
    "comment": "\xa9cmt",
    "copyright": "cprt",
    "encoded_by": "\xa9too",
    "series": "----:com.apple.iTunes:SERIES",
    "series_part": "----:com.apple.iTunes:SERIES-PART",
}


def chapters_sidecar_path(audio_path: Path) -> Path:
    """Return the chapters sidecar path sharing the audio file's base name."""

    return audio_path.with_name(f"{audio_path.stem}{CHAPTERS_SIDECAR_SUFFIX}")


class SourceTagReader:
    """Read the embedded tags of one source item."""

    def __init__(self, run_logger: RunLogger | None = None) -> None:
        """Initialize with an optional logger for unreadable files."""

        self._run_logger = run_logger

    def read(self, path: Path) -> TagRecord:
        """Return the file's embedded tags, or an empty record when unreadable."""

        try:
            audio = mutagen.File(str(path), easy=True)
        except mutagen.MutagenError as exc:
            self._debug(f"could not read tags from {path}: {exc}")
            return TagRecord()
        if audio is None or audio.tags is None:
            return TagRecord()

        values: dict[str, object] = {}
        for field_name, easy_key in _EASY_KEYS.items():
            try:
                raw = audio.tags.get(easy_key)
            except (KeyError, ValueError):
                continue
            if raw:
                values[field_name] = raw[0] if isinstance(raw, list) else raw
        return TagRecord.from_mapping(values)

    def title_of(self, path: Path) -> str | None:
        """Return only the embedded title of a file."""

        return self.read(path).title

    def _debug(self, message: str) -> None:
        if self._run_logger is not None:
            self._run_logger.debug(message)


class TagWriter:
    """Write the final tag record and chapters sidecar for a merged file."""

    def __init__(self, run_logger: RunLogger | None = None) -> None:
        """Initialize with an optional logger for skipped tag fields."""

        self._run_logger = run_logger

    def write(self, audio_path: Path, tag: TagRecord) -> Path | None:
        """Tag the audio file and write its chapters sidecar.

        Returns:
            The chapters sidecar path, or `None` when the record has no chapters.
        """

        try:
            if audio_path.suffix.lower() in {".m4b", ".m4a", ".mp4"}:
                self._write_mp4(audio_path, tag)
            else:
                self._write_easy(audio_path, tag)
        except mutagen.MutagenError as exc:
            self._warning(f"could not write embedded tags to {audio_path.name}: {exc}")

        if not tag.chapters:
            return None
        sidecar = chapters_sidecar_path(audio_path)
        sidecar.write_text(format_chapters_txt(tag.chapters), encoding="utf-8")
        return sidecar

    def _write_mp4(self, audio_path: Path, tag: TagRecord) -> None:
        """Write MP4 atoms, including long description and cover art."""

        audio = MP4(str(audio_path))
        if audio.tags is None:
            audio.add_tags()
        for field_name, value in tag.text_fields().items():
            atom = _MP4_ATOMS.get(field_name)
            if atom is None:
                continue
            if atom.startswith("----:"):
                audio.tags[atom] = [value.encode("utf-8")]
            else:
                audio.tags[atom] = [value]
        cover = self._cover_bytes(tag)
        if cover is not None:
            image_format = (
                MP4Cover.FORMAT_PNG if tag.cover and tag.cover.suffix.lower() == ".png"
                else MP4Cover.FORMAT_JPEG
            )
            audio.tags["covr"] = [MP4Cover(cover, imageformat=image_format)]
        audio.save()

    def _write_easy(self, audio_path: Path, tag: TagRecord) -> None:
        """Write tags through mutagen's format-neutral easy interface."""

        audio = mutagen.File(str(audio_path), easy=True)
        if audio is None:
            self._warning(f"unsupported container for tagging: {audio_path.name}")
            return
        if audio.tags is None:
            audio.add_tags()
        if isinstance(audio.tags, ID3):
            # only a raw ID3 frame store is available, no text key mapping
            self._warning(f"unsupported container for tagging: {audio_path.name}")
            return
        for field_name, value in tag.text_fields().items():
            easy_key = _EASY_KEYS.get(field_name)
            if easy_key is None:
                self._debug(f"skipping tag {field_name} for {audio_path.name}")
                continue
            try:
                audio.tags[easy_key] = [value]
            except (KeyError, ValueError):
                self._debug(f"tag {field_name} is not supported by {audio_path.name}")
        audio.save()

        if audio_path.suffix.lower() == ".mp3":
            self._embed_id3_cover(audio_path, tag)

    def _embed_id3_cover(self, audio_path: Path, tag: TagRecord) -> None:
        """Attach the cover as an ID3 front-cover picture."""

        cover = self._cover_bytes(tag)
        if cover is None:
            return
        try:
            id3 = ID3(str(audio_path))
        except ID3NoHeaderError:
            id3 = ID3()
        mime = "image/png" if tag.cover and tag.cover.suffix.lower() == ".png" else "image/jpeg"
        id3.add(APIC(encoding=3, mime=mime, type=3, desc="Cover", data=cover))
        id3.save(str(audio_path))

    def _cover_bytes(self, tag: TagRecord) -> bytes | None:
        """Return cover image bytes when the record references an existing file."""

        if tag.cover is None or not tag.cover.is_file():
            return None
        data = tag.cover.read_bytes()
        return data or None

    def _warning(self, message: str) -> None:
        if self._run_logger is not None:
            self._run_logger.warning(message)

    def _debug(self, message: str) -> None:
        if self._run_logger is not None:
            self._run_logger.debug(message)


def describe_tag(tag: TagRecord) -> str:
    """Return a compact one-line tag summary for reports."""

    artist = normalize_optional_string(tag.artist) or "-"
    title = normalize_optional_string(tag.title) or "-"
    return f"artist: {artist}, name: {title}, chapters: {len(tag.chapters)}"
